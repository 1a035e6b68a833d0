"""Tests for the bootstrap log."""

from __future__ import annotations

import io
import logging
import os
import re

from slurm_jobkit.bootlog import STEP, BootstrapFormatter, BootstrapLog


def _record(level: int, msg: str) -> logging.LogRecord:
    return logging.LogRecord("t", level, __file__, 1, msg, None, None)


class TestBootstrapFormatter:
    """Tests for BootstrapFormatter."""

    def test_line_format(self) -> None:
        """Line is `[ts] LEVEL id | msg` with padded columns."""
        line = BootstrapFormatter("777.a3").format(_record(STEP, "validate inputs"))
        assert re.fullmatch(
            r"\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}\] "
            r"STEP  777\.a3     \| validate inputs",
            line,
        )

    def test_warning_is_short(self) -> None:
        """WARNING is printed as WARN."""
        line = BootstrapFormatter("1").format(_record(logging.WARNING, "x"))
        assert "] WARN  1" in line

    def test_carriage_returns_dropped(self) -> None:
        """Carriage returns are stripped from messages."""
        line = BootstrapFormatter("1").format(_record(logging.INFO, "a\r\nb"))
        assert "\r" not in line


class TestBootstrapLog:
    """Tests for BootstrapLog stream splitting."""

    def test_split_streams(self) -> None:
        """STEP/INFO go to out, WARN/ERROR go to err."""
        out, err = io.StringIO(), io.StringIO()
        log = BootstrapLog(out, err)
        log.run_id = "42"
        log.step("initialize infrastructure")
        log.info("JOB_ID=42")
        log.warning("careful")
        log.error("broken")
        log.close()

        assert "STEP  42" in out.getvalue()
        assert "JOB_ID=42" in out.getvalue()
        assert "careful" not in out.getvalue()
        assert "WARN  42" in err.getvalue()
        assert "ERROR 42" in err.getvalue()
        assert "JOB_ID" not in err.getvalue()

    def test_to_files_appends(self, tmp_path: object) -> None:
        """After to_files records land in the log files, appended."""
        stdout_path = os.path.join(str(tmp_path), "bootstrap.stdout.log")
        stderr_path = os.path.join(str(tmp_path), "bootstrap.stderr.log")
        with open(stdout_path, "w") as fh:
            fh.write("earlier line\n")

        out = io.StringIO()
        log = BootstrapLog(out, io.StringIO())
        log.to_files(stdout_path, stderr_path)
        log.info("in file")
        log.warning("warned")
        log.close()

        with open(stdout_path) as fh:
            content = fh.read()
        assert content.startswith("earlier line\n")
        assert "in file" in content
        with open(stderr_path) as fh:
            assert "warned" in fh.read()
        assert out.getvalue() == ""

    def test_export_lines(self) -> None:
        """export logs NAME=value for each name in order."""
        out = io.StringIO()
        log = BootstrapLog(out, io.StringIO())
        log.export({"A": "1", "B": "2"}, ["B", "A"])
        log.close()
        lines = out.getvalue().splitlines()
        assert lines[0].endswith("| export: B=2")
        assert lines[1].endswith("| export: A=1")

    def test_new_log_replaces_handlers(self) -> None:
        """A second BootstrapLog does not write to the first one's streams."""
        first = io.StringIO()
        BootstrapLog(first, io.StringIO())
        second = BootstrapLog(io.StringIO(), io.StringIO())
        second.info("only once")
        second.close()
        assert first.getvalue() == ""
