"""STATUS file state machine and signal traps.

    RUNNING ──▶ COMPLETED
       │
       ├──▶ FAILED
       ├──▶ TIMEOUT   (USR1: nearing walltime)
       └──▶ KILLED    (TERM/INT)

Only the first transition out of RUNNING is recorded.
"""

from __future__ import annotations

import logging
import os
import re
import signal
from types import FrameType
from typing import TYPE_CHECKING, Any

from slurm_jobkit.core import JobInterrupted

if TYPE_CHECKING:
    from slurm_jobkit.bootlog import BootstrapLog

logger = logging.getLogger("slurm_jobkit")

RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
TIMEOUT = "TIMEOUT"
KILLED = "KILLED"

ALL_STATUSES = (RUNNING, COMPLETED, FAILED, TIMEOUT, KILLED)

TIMEOUT_EXIT_CODE = 99
KILLED_EXIT_CODE = 143

# signal -> (status, exit code, reason)
_TRAPS: dict[int, tuple[str, int, str]] = {
    signal.SIGUSR1: (TIMEOUT, TIMEOUT_EXIT_CODE, "USR1: nearing walltime"),
    signal.SIGTERM: (KILLED, KILLED_EXIT_CODE, "termination signal"),
    signal.SIGINT: (KILLED, KILLED_EXIT_CODE, "termination signal"),
}


def write_status(status_file: str, status: str) -> None:
    """Overwrite the status file.

    Args:
        status_file: Path to STATUS.
        status: One of ALL_STATUSES.
    """
    assert status in ALL_STATUSES, f"unknown status: {status}"
    with open(status_file, "w") as fh:
        fh.write(status + "\n")


def read_status(status_file: str) -> str:
    """Return the first line of the status file, or "" if unreadable."""
    try:
        with open(status_file) as fh:
            return fh.readline().strip()
    except OSError:
        return ""


def set_final_status(status_file: str, status: str) -> bool:
    """Record a terminal status, but only while the run is RUNNING.

    Args:
        status_file: Path to STATUS.
        status: Terminal status to record.

    Returns:
        True if the file was changed.
    """
    assert status != RUNNING, "final status must be terminal"
    if read_status(status_file) != RUNNING:
        return False
    write_status(status_file, status)
    return True


def finalize_status(status_file: str, exit_code: int) -> str:
    """Settle the status on exit.

    A RUNNING (or missing/empty) status becomes COMPLETED for exit code 0
    and FAILED otherwise; an already terminal status is kept.

    Args:
        status_file: Path to STATUS.
        exit_code: Process exit code.

    Returns:
        The final status.
    """
    current = read_status(status_file)
    if current in ("", RUNNING):
        current = COMPLETED if exit_code == 0 else FAILED
        write_status(status_file, current)
    return current


class SignalTraps:
    """Install status-recording handlers for USR1, TERM and INT.

    Each handler records the terminal status and raises JobInterrupted in
    the main thread. Later signals are logged and ignored so cleanup can
    finish. Previous handlers are restored on exit.

    Args:
        status_file: Path to STATUS.
        log: Bootstrap log for the warning line.
    """

    def __init__(self, status_file: str, log: BootstrapLog | None = None) -> None:
        self.status_file = status_file
        self.log = log
        self.interrupted: JobInterrupted | None = None
        self._previous: dict[int, Any] = {}

    def __enter__(self) -> SignalTraps:
        for signum in _TRAPS:
            self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc_info: object) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        status, exit_code, reason = _TRAPS[signum]
        if self.interrupted is not None:
            self._warn("ignoring %s during shutdown", signal.Signals(signum).name)
            return
        set_final_status(self.status_file, status)
        self._warn("status: %s (%s)", status, reason)
        self.interrupted = JobInterrupted(status, exit_code)
        raise self.interrupted

    def _warn(self, msg: str, *args: object) -> None:
        if self.log is not None:
            self.log.warning(msg, *args)
        else:
            logger.warning(msg, *args)


def collect_statuses(job_root: str) -> list[tuple[str, str]]:
    """List the status of every run below a job root.

    Args:
        job_root: jobs/<JOB_ID> directory.

    Returns:
        List of (run name, status) pairs; array tasks sorted by task id.
    """
    runs: list[tuple[str, str]] = []
    own = os.path.join(job_root, "STATUS")
    if os.path.isfile(own):
        runs.append((os.path.basename(job_root), read_status(own)))

    tasks = []
    for entry in os.listdir(job_root):
        match = re.fullmatch(r"a([0-9]+)", entry)
        if match and os.path.isdir(os.path.join(job_root, entry)):
            tasks.append((int(match.group(1)), entry))

    for _, entry in sorted(tasks):
        status = read_status(os.path.join(job_root, entry, "STATUS"))
        runs.append((entry, status or "UNKNOWN"))
    return runs
