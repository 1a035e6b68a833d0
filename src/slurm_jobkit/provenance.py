"""Provenance records: where, what Slurm did, what ran, in which environment.

Job level (written once per job): platform.txt, job.txt.
Task level (written by every run): task.txt, run.txt, env.txt.
"""

from __future__ import annotations

import platform
import re
import shlex
import shutil
import socket
import subprocess
from typing import TYPE_CHECKING, Mapping

from slurm_jobkit.core import iso_now

if TYPE_CHECKING:
    from slurm_jobkit.config import ProjectConfig
    from slurm_jobkit.identity import JobIdentity, JobLayout

OS_RELEASE = "/etc/os-release"


def read_os_pretty_name(path: str = OS_RELEASE) -> str:
    """Return PRETTY_NAME from an os-release file, or "".

    Args:
        path: os-release file.
    """
    try:
        with open(path) as fh:
            for line in fh:
                key, sep, value = line.strip().partition("=")
                if sep and key == "PRETTY_NAME":
                    return value.strip().strip('"').strip("'")
    except OSError:
        return ""
    return ""


def platform_lines(os_release: str = OS_RELEASE) -> list[str]:
    """Describe the node this job runs on."""
    uname = platform.uname()
    lines = [
        f"Time: {iso_now()}",
        f"Node: {socket.gethostname()}",
        f"Arch: {uname.machine}",
        f"Kernel: {uname.system} {uname.release} {uname.machine}",
    ]
    pretty_name = read_os_pretty_name(os_release)
    if pretty_name:
        lines.append(f"Operating system: {pretty_name}")
    return lines


def slurm_env_lines(environ: Mapping[str, str]) -> list[str]:
    """Sorted ``SLURM_*=value`` lines."""
    return sorted(f"{k}={v}" for k, v in environ.items() if k.startswith("SLURM_"))


def scontrol_show_job(job_id: str, environ: Mapping[str, str]) -> str:
    """Return ``scontrol show job`` output, falling back to SLURM_* vars.

    Args:
        job_id: Job to describe.
        environ: Environment used for the fallback.

    Returns:
        Record text (newline terminated).
    """
    record = ""
    if shutil.which("scontrol"):
        try:
            result = subprocess.run(
                ["scontrol", "show", "job", job_id],
                capture_output=True,
                text=True,
                check=True,
            )
            record = result.stdout
        except (OSError, subprocess.CalledProcessError):
            record = ""

    if not record:
        return "".join(line + "\n" for line in slurm_env_lines(environ))
    return record if record.endswith("\n") else record + "\n"


def write_platform(path: str) -> None:
    """Write platform.txt."""
    _write_lines(path, platform_lines())


def write_job_record(path: str, job_id: str, environ: Mapping[str, str]) -> None:
    """Write job.txt (in arrays this describes the array master)."""
    with open(path, "w") as fh:
        fh.write(f"Time: {iso_now()}\n")
        fh.write(scontrol_show_job(job_id, environ))


def write_task_record(
    path: str, identity: JobIdentity, environ: Mapping[str, str]
) -> None:
    """Write task.txt for the concrete task job."""
    with open(path, "w") as fh:
        fh.write(scontrol_show_job(identity.slurm_job_id or identity.job_id, environ))


def run_lines(
    identity: JobIdentity,
    layout: JobLayout,
    project: ProjectConfig,
    command: list[str],
) -> list[str]:
    """Describe what this run executes.

    Args:
        identity: Resolved identity.
        layout: Job layout.
        project: Loaded project.
        command: Full payload command.

    Returns:
        Lines of run.txt.
    """
    lines = [
        f"Start time: {iso_now()}",
        f"Project name: {project.name}",
        f"Job ID: {identity.job_id}",
        f"Task ID: {identity.task_id}",
        f"Entrypoint: {shlex.quote(project.entrypoint)}",
        f"Command: {shlex.join(command)}",
        f"Threads: {project.num_threads}",
    ]
    if project.modules:
        lines.append(f"Requested modules: {' '.join(project.modules)}")
    lines += [
        f"Project root: {identity.project_root}",
        f"Job root: {layout.job_root}",
        f"Run directory: {layout.run_dir}",
    ]
    return lines


def write_run_record(
    path: str,
    identity: JobIdentity,
    layout: JobLayout,
    project: ProjectConfig,
    command: list[str],
) -> None:
    """Write run.txt."""
    _write_lines(path, run_lines(identity, layout, project, command))


def loaded_modules(environ: Mapping[str, str]) -> list[str]:
    """Modules loaded by Lmod/Environment Modules, from LOADEDMODULES."""
    return [m for m in environ.get("LOADEDMODULES", "").split(":") if m]


def env_lines(environ: Mapping[str, str], pattern: str) -> list[str]:
    """Describe the effective runtime environment.

    Args:
        environ: Environment to record.
        pattern: Regex matched against ``NAME=value`` lines.

    Returns:
        Lines of env.txt.
    """
    modules = loaded_modules(environ)
    lines = modules if modules else ["(modules not available)"]
    regex = re.compile(pattern)
    matched = sorted(
        f"{k}={v}" for k, v in environ.items() if regex.search(f"{k}={v}")
    )
    return [*lines, "", "Environment variables:", *matched]


def write_env_record(path: str, environ: Mapping[str, str], pattern: str) -> None:
    """Write env.txt."""
    _write_lines(path, env_lines(environ, pattern))


def _write_lines(path: str, lines: list[str]) -> None:
    with open(path, "w") as fh:
        for line in lines:
            fh.write(line + "\n")

