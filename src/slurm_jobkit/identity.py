"""Job identity (array vs non-array) and per-job directory layout.

Layout below the project root::

    jobs/
    ├── lastjob -> <JOB_ID>
    └── <JOB_ID>/                    JOB_ROOT
        ├── provenance/              once per job (platform, job, script.sh)
        ├── snapshots/               once per job
        └── a<TASK_ID>/              RUN_DIR (array tasks; JOB_ROOT otherwise)
            ├── STATUS
            ├── bootstrap.{stdout,stderr}.log
            ├── payload.{stdout,stderr}.log
            ├── provenance/          per task (task, run, env)
            └── results/
"""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from slurm_jobkit.core import die

logger = logging.getLogger("slurm_jobkit")


@dataclass(frozen=True)
class JobIdentity:
    """Who this run is.

    Attributes:
        job_id: Array master id, or plain job id.
        task_id: Array task id, "0" for non-array jobs.
        is_array: Whether this run is an array task.
        project_root: Submit directory.
        under_slurm: False when running with debug fallbacks.
        slurm_job_id: Concrete SLURM_JOB_ID (differs from job_id in arrays).
    """

    job_id: str
    task_id: str
    is_array: bool
    project_root: str
    under_slurm: bool = True
    slurm_job_id: str = ""

    @property
    def label(self) -> str:
        """Short id for log lines."""
        if self.is_array:
            return f"{self.job_id}.a{self.task_id}"
        return self.job_id


def resolve_identity(
    environ: Mapping[str, str],
    debug: bool = False,
    cwd: str = "",
) -> tuple[JobIdentity, list[str]]:
    """Resolve job identity from the Slurm environment.

    Args:
        environ: Process environment.
        debug: Allow running outside Slurm with fallback values.
        cwd: Fallback project root in debug mode (defaults to os.getcwd()).

    Returns:
        Tuple of (JobIdentity, warnings produced by fallbacks).

    Raises:
        JobkitError: If required Slurm variables are missing.
    """
    warnings: list[str] = []
    under_slurm = True

    project_root = environ.get("SLURM_SUBMIT_DIR", "")
    if not project_root:
        if not debug:
            die("SLURM_SUBMIT_DIR not set")
        project_root = cwd or os.getcwd()
        under_slurm = False
        warnings.append(
            f"project root: SLURM_SUBMIT_DIR not set; using PWD ({project_root})"
        )

    slurm_job_id = environ.get("SLURM_JOB_ID", "")
    array_job_id = environ.get("SLURM_ARRAY_JOB_ID", "")
    array_task_id = environ.get("SLURM_ARRAY_TASK_ID", "")

    if array_job_id and array_task_id:
        identity = JobIdentity(
            job_id=array_job_id,
            task_id=array_task_id,
            is_array=True,
            project_root=project_root,
            under_slurm=under_slurm,
            slurm_job_id=slurm_job_id or array_job_id,
        )
        return identity, warnings

    if not slurm_job_id:
        if not debug:
            die("SLURM_JOB_ID not set")
        slurm_job_id = "debug_" + datetime.now().strftime("%Y%m%d-%H%M%S")
        under_slurm = False
        warnings.append(
            "execution environment: outside slurm; using fallback "
            f"(SLURM_JOB_ID={slurm_job_id})"
        )

    identity = JobIdentity(
        job_id=slurm_job_id,
        task_id="0",
        is_array=False,
        project_root=project_root,
        under_slurm=under_slurm,
        slurm_job_id=slurm_job_id,
    )
    return identity, warnings


@dataclass(frozen=True)
class JobLayout:
    """Absolute paths of every file and directory a run touches."""

    job_dir: str
    job_root: str
    run_dir: str
    job_provenance_dir: str
    snapshot_dir: str
    job_lock: str
    task_provenance_dir: str
    result_dir: str
    status_file: str
    bootstrap_stdout: str
    bootstrap_stderr: str
    payload_stdout: str
    payload_stderr: str

    @classmethod
    def build(cls, identity: JobIdentity, jobs_dir_name: str = "jobs") -> JobLayout:
        """Compute the layout for identity.

        Args:
            identity: Resolved identity.
            jobs_dir_name: Name of the jobs directory below the project root.

        Returns:
            JobLayout.
        """
        assert jobs_dir_name, "jobs_dir_name must not be empty"

        job_dir = os.path.join(identity.project_root, jobs_dir_name)
        job_root = os.path.join(job_dir, identity.job_id)
        if identity.is_array:
            run_dir = os.path.join(job_root, f"a{identity.task_id}")
        else:
            run_dir = job_root
        job_provenance_dir = os.path.join(job_root, "provenance")

        return cls(
            job_dir=job_dir,
            job_root=job_root,
            run_dir=run_dir,
            job_provenance_dir=job_provenance_dir,
            snapshot_dir=os.path.join(job_root, "snapshots"),
            job_lock=os.path.join(job_provenance_dir, ".written"),
            task_provenance_dir=os.path.join(run_dir, "provenance"),
            result_dir=os.path.join(run_dir, "results"),
            status_file=os.path.join(run_dir, "STATUS"),
            bootstrap_stdout=os.path.join(run_dir, "bootstrap.stdout.log"),
            bootstrap_stderr=os.path.join(run_dir, "bootstrap.stderr.log"),
            payload_stdout=os.path.join(run_dir, "payload.stdout.log"),
            payload_stderr=os.path.join(run_dir, "payload.stderr.log"),
        )


def create_layout(layout: JobLayout, last_link: str = "lastjob") -> None:
    """Create all layout directories and point the last-job link.

    Safe to call concurrently from every task of an array.

    Args:
        layout: Layout to materialize.
        last_link: Name of the convenience symlink in the jobs dir
            ("" disables it).
    """
    for path in (
        layout.run_dir,
        layout.job_provenance_dir,
        layout.snapshot_dir,
        layout.task_provenance_dir,
        layout.result_dir,
    ):
        os.makedirs(path, exist_ok=True)
    logger.debug("Job layout ready: %s", layout.run_dir)

    if last_link:
        update_last_link(layout.job_dir, os.path.basename(layout.job_root), last_link)


def update_last_link(job_dir: str, target: str, link_name: str) -> None:
    """Atomically (re)point job_dir/link_name at the relative target.

    Args:
        job_dir: Jobs directory.
        target: Link target, relative to job_dir.
        link_name: Symlink name.
    """
    link_path = os.path.join(job_dir, link_name)
    # array tasks on different nodes share the jobs dir
    tmp_path = f"{link_path}.{socket.gethostname()}.{os.getpid()}.tmp"
    if os.path.lexists(tmp_path):
        os.remove(tmp_path)
    os.symlink(target, tmp_path)
    os.replace(tmp_path, link_path)
