"""Bootstrap logging for the compute-node lifecycle.

STEP/INFO records go to the "out" stream, WARN/ERROR to the "err" stream.
Until the run directory exists both streams are the process stdout/stderr
(Slurm's --output/--error files); afterwards they are append-mode files in
the run directory.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import IO, Mapping

STEP = 25
logging.addLevelName(STEP, "STEP")

_SHORT_NAMES = {logging.WARNING: "WARN", logging.CRITICAL: "ERROR"}

BOOTSTRAP_LOGGER_NAME = "slurm_jobkit.bootstrap"


class BootstrapFormatter(logging.Formatter):
    """``[<iso ts>] <LEVEL> <run id> | <message>``"""

    def __init__(self, run_id: str = "") -> None:
        super().__init__()
        self.run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).astimezone()
        level = _SHORT_NAMES.get(record.levelno, record.levelname)
        message = record.getMessage().replace("\r", "")
        return (
            f"[{ts.isoformat(timespec='seconds')}] "
            f"{level:<5} {self.run_id:<10} | {message}"
        )


class _BelowWarning(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.WARNING


class BootstrapLog:
    """Split-stream logger used by the runner.

    Args:
        stdout: Stream for STEP/INFO before files are attached.
        stderr: Stream for WARN/ERROR before files are attached.
    """

    def __init__(self, stdout: IO[str] | None = None, stderr: IO[str] | None = None):
        self.logger = logging.getLogger(BOOTSTRAP_LOGGER_NAME)
        self.logger.propagate = False
        self.logger.setLevel(logging.DEBUG)
        self._formatter = BootstrapFormatter()
        self._handlers: list[logging.Handler] = []
        self._reset_handlers()
        self._attach(
            logging.StreamHandler(stdout or sys.stdout),
            logging.StreamHandler(stderr or sys.stderr),
        )

    @property
    def run_id(self) -> str:
        """Label printed after the level (``<job>.a<task>``)."""
        return self._formatter.run_id

    @run_id.setter
    def run_id(self, value: str) -> None:
        self._formatter.run_id = value

    def to_files(self, stdout_path: str, stderr_path: str) -> None:
        """Switch both streams to append-mode log files.

        Args:
            stdout_path: File for STEP/INFO.
            stderr_path: File for WARN/ERROR.
        """
        self._reset_handlers()
        self._attach(
            logging.FileHandler(stdout_path, mode="a", encoding="utf-8"),
            logging.FileHandler(stderr_path, mode="a", encoding="utf-8"),
        )

    def close(self) -> None:
        """Flush and detach all handlers."""
        self._reset_handlers()

    def step(self, msg: str, *args: object) -> None:
        self.logger.log(STEP, msg, *args)

    def info(self, msg: str, *args: object) -> None:
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args: object) -> None:
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args: object) -> None:
        self.logger.error(msg, *args)

    def export(self, env: Mapping[str, str], names: list[str]) -> None:
        """Log ``export: NAME=value`` for each name."""
        for name in names:
            self.info("export: %s=%s", name, env.get(name, ""))

    def _attach(self, out: logging.Handler, err: logging.Handler) -> None:
        out.addFilter(_BelowWarning())
        err.setLevel(logging.WARNING)
        for handler in (out, err):
            handler.setFormatter(self._formatter)
            self.logger.addHandler(handler)
            self._handlers.append(handler)

    def _reset_handlers(self) -> None:
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.flush()
            if isinstance(handler, logging.FileHandler):
                handler.close()
        self._handlers = []
