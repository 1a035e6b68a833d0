"""TOML configuration loading and layering.

Priority (low to high):
  1. config/defaults.toml (shipped site defaults)
  2. Project file (jobkit.toml): [project] and [sbatch] tables
  3. CLI arguments
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from typing import Any

from slurm_jobkit.core import die, validate_array_spec, validate_memory

DEFAULT_THREAD_VARS = (
    "OMP_NUM_THREADS",
    "MKL_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "NUMEXPR_NUM_THREADS",
    "STAN_NUM_THREADS",
)

DEFAULT_ENV_PATTERN = (
    r"^(SLURM_|OMP_|MKL_|OPENBLAS_|NUMEXPR_|STAN_"
    r"|TASK_ID=|JOB_ID=|PATH=|LANG=|LC_|TZ=)"
)

PROJECT_FILE_NAME = "jobkit.toml"


@dataclass(frozen=True)
class Defaults:
    """Shipped default values loaded from defaults.toml."""

    jobs_dir_name: str = "jobs"
    last_link: str = "lastjob"
    python: str = "python3"
    terminate_grace_seconds: int = 10
    signal_seconds: int = 30
    open_mode: str = "append"
    thread_vars: tuple[str, ...] = DEFAULT_THREAD_VARS
    env_pattern: str = DEFAULT_ENV_PATTERN


@dataclass(frozen=True)
class ProjectConfig:
    """What a job runs, loaded from the [project] table.

    Attributes:
        name: Project name (recorded in run.txt).
        root: Directory holding the project file.
        project_file: Absolute path of the project file.
        input_dirs: Directories below root that must exist.
        entrypoint: Payload script relative to root.
        payload_prefix: Command prefix; the entrypoint path is appended.
        modules: Environment modules to load, in order.
        snapshot_items: Files/directories copied once per job.
        num_threads: Value exported to every thread variable.
    """

    name: str
    root: str
    project_file: str
    entrypoint: str
    input_dirs: tuple[str, ...] = ()
    payload_prefix: tuple[str, ...] = ()
    modules: tuple[str, ...] = ()
    snapshot_items: tuple[str, ...] = ()
    num_threads: int = 1


@dataclass
class SbatchOptions:
    """Mutable sbatch resource request: project [sbatch] table + CLI args."""

    job_name: str = ""
    time: str = ""
    mem: str = ""
    partition: str = ""
    nodes: int = 1
    ntasks: int = 0
    ntasks_per_node: int = 1
    cpus_per_task: int = 1
    hint: str = ""
    mail_type: str = ""
    array: str = ""
    signal_seconds: int = 30
    open_mode: str = "append"
    extra: dict[str, str] = field(default_factory=dict)


def find_config_dir() -> str:
    """Locate the config directory.

    Search order:
      1. JOBKIT_CONFIG env var
      2. Relative to package source (../../config from this file)

    Returns:
        Path to config directory, or "" if none found.
    """
    env_path = os.environ.get("JOBKIT_CONFIG")
    if env_path and os.path.isdir(env_path):
        return env_path

    pkg_dir = os.path.dirname(os.path.abspath(__file__))
    candidates = [
        os.path.join(pkg_dir, "..", "..", "config"),
        os.path.join(pkg_dir, "config"),
    ]
    for candidate in candidates:
        resolved = os.path.realpath(candidate)
        if os.path.isdir(resolved):
            return resolved

    return ""


def load_defaults(config_dir: str) -> Defaults:
    """Load defaults.toml from config_dir.

    Args:
        config_dir: Path to config directory ("" for built-ins).

    Returns:
        Defaults dataclass.
    """
    assert isinstance(config_dir, str), "config_dir must be a string"

    path = os.path.join(config_dir, "defaults.toml") if config_dir else ""
    if not path or not os.path.isfile(path):
        return Defaults()

    with open(path, "rb") as fh:
        data = tomllib.load(fh)

    return Defaults(
        jobs_dir_name=_get(data, "jobs", "dir_name", "jobs"),
        last_link=_get(data, "jobs", "last_link", "lastjob"),
        python=_get(data, "runtime", "python", "python3"),
        terminate_grace_seconds=_get(data, "runtime", "terminate_grace_seconds", 10),
        signal_seconds=_get(data, "sbatch", "signal_seconds", 30),
        open_mode=_get(data, "sbatch", "open_mode", "append"),
        thread_vars=tuple(_get(data, "threads", "vars", DEFAULT_THREAD_VARS)),
        env_pattern=_get(data, "provenance", "env_pattern", DEFAULT_ENV_PATTERN),
    )


def load_project(path: str) -> tuple[ProjectConfig, dict[str, Any]]:
    """Load a project file.

    Args:
        path: Path to the project TOML file.

    Returns:
        Tuple of (ProjectConfig, raw [sbatch] table).

    Raises:
        JobkitError: If the file is missing or malformed.
    """
    assert isinstance(path, str), "path must be a string"

    if not os.path.isfile(path):
        die(f"Project file not found: {path}")

    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        die(f"Invalid TOML in {path}: {exc}")

    project_file = os.path.realpath(path)
    root = os.path.dirname(project_file)
    section = data.get("project", {})

    entrypoint = section.get("entrypoint", "")
    if not isinstance(entrypoint, str) or not entrypoint:
        die(f"{path}: [project] entrypoint is required")

    num_threads = section.get("num_threads", 1)
    if not isinstance(num_threads, int) or num_threads < 1:
        die(f"{path}: [project] num_threads must be a positive integer")

    project = ProjectConfig(
        name=section.get("name", "") or os.path.basename(root),
        root=root,
        project_file=project_file,
        entrypoint=entrypoint,
        input_dirs=_str_tuple(section, "input_dirs", path),
        payload_prefix=_str_tuple(section, "payload_prefix", path),
        modules=_str_tuple(section, "modules", path),
        snapshot_items=_str_tuple(section, "snapshot_items", path),
        num_threads=num_threads,
    )
    return project, dict(data.get("sbatch", {}))


def init_sbatch_options(
    project: ProjectConfig,
    sbatch_table: dict[str, Any],
    defaults: Defaults,
) -> SbatchOptions:
    """Build SbatchOptions from defaults and the project [sbatch] table.

    Unknown keys are kept in ``extra`` and emitted verbatim
    (underscores become dashes).

    Args:
        project: Loaded project.
        sbatch_table: Raw [sbatch] table.
        defaults: Loaded defaults.

    Returns:
        Mutable SbatchOptions.

    Raises:
        JobkitError: If an integer field is not a positive integer.
    """
    assert isinstance(project, ProjectConfig), "project must be a ProjectConfig"

    path = project.project_file
    table = dict(sbatch_table)
    options = SbatchOptions(
        job_name=str(table.pop("job_name", project.name)),
        time=str(table.pop("time", "")),
        mem=str(table.pop("mem", "")),
        partition=str(table.pop("partition", "")),
        nodes=_pop_positive_int(table, "nodes", 1, path),
        ntasks=_pop_positive_int(table, "ntasks", 0, path),
        ntasks_per_node=_pop_positive_int(table, "ntasks_per_node", 1, path),
        cpus_per_task=_pop_positive_int(table, "cpus_per_task", 1, path),
        hint=str(table.pop("hint", "")),
        mail_type=str(table.pop("mail_type", "")),
        array=str(table.pop("array", "")),
        signal_seconds=_pop_positive_int(
            table, "signal_seconds", defaults.signal_seconds, path
        ),
        open_mode=str(table.pop("open_mode", defaults.open_mode)),
    )
    options.extra = {key.replace("_", "-"): str(value) for key, value in table.items()}

    validate_memory(options.mem)
    validate_array_spec(options.array)
    return options


def _pop_positive_int(table: dict[str, Any], key: str, default: int, path: str) -> int:
    """Pop an optional positive-integer key from an [sbatch] table."""
    if key not in table:
        return default
    value = table.pop(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        die(f"{path}: [sbatch] {key} must be a positive integer")
    return value


def _str_tuple(section: dict[str, Any], key: str, path: str) -> tuple[str, ...]:
    """Read a list-of-strings key as a tuple.

    Args:
        section: Parsed table.
        key: Key name.
        path: File path for error messages.

    Returns:
        Tuple of strings (empty if absent).
    """
    value = section.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        die(f"{path}: [project] {key} must be a list of strings")
    return tuple(value)


def _get(data: dict[str, Any], section: str, key: str, default: Any) -> Any:
    """Safely get a nested config value."""
    return data.get(section, {}).get(key, default)
