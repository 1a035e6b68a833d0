"""Payload environment contract.

The runner exports, for the payload process:

- JOB_ID, TASK_ID
- RUN_DIR, RESULT_DIR, PROVENANCE_DIR (task level)
- every thread variable set to the project's num_threads
- <NAME>_DIR for each input directory
- JOBKIT_INPUT_DIRS, the colon-separated list of those <NAME>_DIR names

``PayloadEnv`` is the reading side for Python payloads.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from slurm_jobkit.core import die

if TYPE_CHECKING:
    from slurm_jobkit.bootlog import BootstrapLog
    from slurm_jobkit.config import ProjectConfig
    from slurm_jobkit.identity import JobIdentity, JobLayout

INPUT_DIRS_VAR = "JOBKIT_INPUT_DIRS"


def input_dir_var(name: str) -> str:
    """Environment variable name for an input directory.

    Examples: ``data`` -> ``DATA_DIR``, ``raw-data/v2`` -> ``RAW_DATA_V2_DIR``.
    """
    return re.sub(r"[^A-Z0-9_]", "_", name.upper()) + "_DIR"


def validate_inputs(
    project_root: str,
    input_dirs: tuple[str, ...],
    entrypoint: str,
    log: BootstrapLog | None = None,
) -> None:
    """Check that input directories and the entrypoint exist.

    Args:
        project_root: Directory inputs are relative to.
        input_dirs: Required directories.
        entrypoint: Required payload script.
        log: Bootstrap log for empty-directory warnings.

    Raises:
        JobkitError: On a missing directory or entrypoint.
    """
    for name in input_dirs:
        path = os.path.join(project_root, name)
        if not os.path.isdir(path):
            die(f"missing input dir: {name}/")
        if log is not None:
            if os.listdir(path):
                log.info("input directory OK: %s/", name)
            else:
                log.warning("input directory is empty: %s/", name)

    if not os.path.isfile(os.path.join(project_root, entrypoint)):
        die(f"missing entrypoint: {entrypoint}")


def build_payload_env(
    base: Mapping[str, str],
    identity: JobIdentity,
    layout: JobLayout,
    project: ProjectConfig,
    thread_vars: tuple[str, ...],
) -> tuple[dict[str, str], list[str]]:
    """Build the payload environment.

    Args:
        base: Inherited environment (not modified).
        identity: Resolved identity.
        layout: Job layout.
        project: Loaded project.
        thread_vars: Thread variables to pin.

    Returns:
        Tuple of (new environment, exported names in export order).
    """
    exports: dict[str, str] = {
        "JOB_ID": identity.job_id,
        "TASK_ID": identity.task_id,
        "RUN_DIR": layout.run_dir,
        "RESULT_DIR": layout.result_dir,
        "PROVENANCE_DIR": layout.task_provenance_dir,
    }
    for var in thread_vars:
        exports[var] = str(project.num_threads)
    exports[INPUT_DIRS_VAR] = ":".join(input_dir_var(n) for n in project.input_dirs)
    for name in project.input_dirs:
        exports[input_dir_var(name)] = os.path.join(identity.project_root, name)

    env = dict(base)
    env.update(exports)
    return env, list(exports)


_PAYLOAD_STR_VARS = {
    "run_dir": "RUN_DIR",
    "result_dir": "RESULT_DIR",
    "provenance_dir": "PROVENANCE_DIR",
    "job_id": "JOB_ID",
}

_PAYLOAD_INT_VARS = {
    "task_id": "TASK_ID",
    "n_nodes": "SLURM_JOB_NUM_NODES",
    "n_tasks_per_node": "SLURM_NTASKS_PER_NODE",
    "n_cpus_per_task": "SLURM_CPUS_PER_TASK",
    "num_threads": "OMP_NUM_THREADS",
}


@dataclass(frozen=True)
class PayloadEnv:
    """Runtime constants a Python payload reads from its environment.

    Attributes:
        run_dir: Per-task run directory (also the payload's cwd).
        result_dir: Where task results go.
        provenance_dir: Task-level provenance directory.
        job_id: Job id (array master id for array tasks).
        task_id: Array task id, 0 for non-array jobs.
        n_nodes: Allocated nodes.
        n_tasks_per_node: Tasks per node.
        n_cpus_per_task: CPUs per task.
        num_threads: Thread policy exported by the runner.
        input_dirs: ``<NAME>_DIR`` variables listed in JOBKIT_INPUT_DIRS,
            keyed by variable name.
    """

    run_dir: str
    result_dir: str
    provenance_dir: str
    job_id: str
    task_id: int
    n_nodes: int
    n_tasks_per_node: int
    n_cpus_per_task: int
    num_threads: int
    input_dirs: dict[str, str]

    @property
    def n_tasks(self) -> int:
        return self.n_nodes * self.n_tasks_per_node

    def result_path(self, stem: str, suffix: str) -> str:
        """Task-unique result file path, e.g. ``fit_task003.rds``."""
        return os.path.join(self.result_dir, f"{stem}_task{self.task_id:03d}{suffix}")

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> PayloadEnv:
        """Read and coerce the payload environment.

        Every variable must be present and non-empty; integer variables must
        parse as integers.

        Args:
            environ: Environment (defaults to os.environ).

        Returns:
            PayloadEnv.

        Raises:
            JobkitError: Naming the first missing or malformed variable.
        """
        environ = os.environ if environ is None else environ

        values: dict[str, object] = {}
        for field_name, var in {**_PAYLOAD_STR_VARS, **_PAYLOAD_INT_VARS}.items():
            raw = environ.get(var, "")
            if not raw:
                die(f"payload environment: {var} not set")
            values[field_name] = raw

        for field_name, var in _PAYLOAD_INT_VARS.items():
            try:
                values[field_name] = int(str(values[field_name]))
            except ValueError:
                raw = values[field_name]
                die(f"payload environment: {var} is not an integer: {raw!r}")

        input_vars = [v for v in environ.get(INPUT_DIRS_VAR, "").split(":") if v]
        for var in input_vars:
            if not environ.get(var, ""):
                die(f"payload environment: {var} not set")
        values["input_dirs"] = {var: environ[var] for var in input_vars}
        return cls(**values)  # type: ignore[arg-type]
