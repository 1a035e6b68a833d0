"""Payload command assembly and execution."""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Mapping

from slurm_jobkit.core import JobInterrupted

logger = logging.getLogger("slurm_jobkit")


def build_command(
    prefix: tuple[str, ...],
    project_root: str,
    entrypoint: str,
) -> list[str]:
    """Return prefix + absolute entrypoint.

    Args:
        prefix: Command prefix, e.g. ("srun", "Rscript", "--vanilla").
        project_root: Directory the entrypoint is relative to.
        entrypoint: Payload script.

    Returns:
        Full command as argv list.
    """
    return [*prefix, os.path.join(project_root, entrypoint)]


def run_payload(
    cmd: list[str],
    cwd: str,
    env: Mapping[str, str],
    stdout_path: str,
    stderr_path: str,
    grace_seconds: float = 10,
) -> int:
    """Run the payload with its output in the payload log files.

    If the wait is interrupted by a trapped signal, the child is terminated
    (then killed after grace_seconds) and the interruption re-raised.

    Args:
        cmd: Payload argv.
        cwd: Working directory (the run directory).
        env: Payload environment.
        stdout_path: payload.stdout.log.
        stderr_path: payload.stderr.log.
        grace_seconds: Time between SIGTERM and SIGKILL.

    Returns:
        Payload exit code (negative signal number if killed by a signal).

    Raises:
        JobInterrupted: Re-raised after the child has been stopped.
        OSError: If the command cannot be started.
    """
    assert cmd, "cmd must not be empty"

    with open(stdout_path, "w") as out, open(stderr_path, "w") as err:
        proc = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=err,
        )
        try:
            return proc.wait()
        except JobInterrupted:
            stop_process(proc, grace_seconds)
            raise


def stop_process(proc: subprocess.Popen, grace_seconds: float) -> int:
    """Terminate proc, escalating to SIGKILL after grace_seconds.

    Args:
        proc: Running child.
        grace_seconds: Time to wait after SIGTERM.

    Returns:
        Child exit code.
    """
    if proc.poll() is not None:
        return proc.returncode
    proc.terminate()
    try:
        return proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.debug("payload did not exit after SIGTERM; killing pid %d", proc.pid)
        proc.kill()
        return proc.wait()
