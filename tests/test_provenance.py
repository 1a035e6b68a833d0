"""Tests for provenance records."""

from __future__ import annotations

import os
import subprocess
from unittest.mock import patch

from slurm_jobkit.config import ProjectConfig
from slurm_jobkit.identity import JobIdentity, JobLayout
from slurm_jobkit.provenance import (
    env_lines,
    loaded_modules,
    platform_lines,
    read_os_pretty_name,
    run_lines,
    scontrol_show_job,
    write_job_record,
    write_task_record,
)


class TestPlatform:
    """Tests for platform records."""

    def test_pretty_name(self, tmp_path: object) -> None:
        """PRETTY_NAME is read and unquoted."""
        path = os.path.join(str(tmp_path), "os-release")
        with open(path, "w") as fh:
            fh.write('NAME="Rocky Linux"\nPRETTY_NAME="Rocky Linux 9.3 (Blue Onyx)"\n')
        assert read_os_pretty_name(path) == "Rocky Linux 9.3 (Blue Onyx)"

    def test_missing_os_release(self) -> None:
        """Unreadable os-release gives empty string and no OS line."""
        assert read_os_pretty_name("/nonexistent/os-release") == ""
        lines = platform_lines("/nonexistent/os-release")
        assert [line.split(":")[0] for line in lines] == [
            "Time",
            "Node",
            "Arch",
            "Kernel",
        ]


class TestScontrolShowJob:
    """Tests for scontrol_show_job."""

    @patch("slurm_jobkit.provenance.subprocess.run")
    @patch("slurm_jobkit.provenance.shutil.which", return_value="/usr/bin/scontrol")
    def test_uses_scontrol(self, _which: object, mock_run: object) -> None:
        """scontrol output is returned newline terminated."""
        result = mock_run.return_value  # type: ignore[union-attr]
        result.stdout = "JobId=42 JobName=demo"
        record = scontrol_show_job("42", {})
        assert record == "JobId=42 JobName=demo\n"
        args = mock_run.call_args[0][0]  # type: ignore[union-attr]
        assert args == ["scontrol", "show", "job", "42"]

    @patch("slurm_jobkit.provenance.shutil.which", return_value=None)
    def test_env_fallback(self, _which: object) -> None:
        """Without scontrol, sorted SLURM_* vars are used."""
        env = {"SLURM_JOB_ID": "42", "HOME": "/h", "SLURM_CPUS_PER_TASK": "2"}
        record = scontrol_show_job("42", env)
        assert record == "SLURM_CPUS_PER_TASK=2\nSLURM_JOB_ID=42\n"

    @patch("slurm_jobkit.provenance.subprocess.run")
    @patch("slurm_jobkit.provenance.shutil.which", return_value="/usr/bin/scontrol")
    def test_scontrol_failure_falls_back(
        self, _which: object, mock_run: object
    ) -> None:
        """A failing scontrol falls back to the environment."""
        error = subprocess.CalledProcessError(1, "scontrol")
        mock_run.side_effect = error  # type: ignore[union-attr]
        record = scontrol_show_job("42", {"SLURM_JOB_ID": "42"})
        assert record == "SLURM_JOB_ID=42\n"


class TestRecordFiles:
    """Tests for job.txt and task.txt."""

    @patch("slurm_jobkit.provenance.shutil.which", return_value=None)
    def test_job_record_has_time(self, _which: object, tmp_path: object) -> None:
        """job.txt starts with a Time line."""
        path = os.path.join(str(tmp_path), "job.txt")
        write_job_record(path, "777", {"SLURM_JOB_ID": "780"})
        with open(path) as fh:
            lines = fh.read().splitlines()
        assert lines[0].startswith("Time: ")
        assert lines[1] == "SLURM_JOB_ID=780"

    @patch("slurm_jobkit.provenance.scontrol_show_job", return_value="JobId=780\n")
    def test_task_record_uses_concrete_job(
        self, mock_show: object, tmp_path: object
    ) -> None:
        """task.txt describes the concrete task job, not the array master."""
        path = os.path.join(str(tmp_path), "task.txt")
        identity = JobIdentity("777", "3", True, "/p", slurm_job_id="780")
        write_task_record(path, identity, {})
        mock_show.assert_called_once_with("780", {})  # type: ignore[union-attr]
        with open(path) as fh:
            assert fh.read() == "JobId=780\n"


class TestRunLines:
    """Tests for run_lines."""

    def test_contents(self) -> None:
        """run.txt names the command, threads and directories."""
        identity = JobIdentity("777", "3", True, "/p")
        layout = JobLayout.build(identity)
        project = ProjectConfig(
            name="demo",
            root="/p",
            project_file="/p/jobkit.toml",
            entrypoint="fit model.R",
            modules=("R/4.3.2",),
            num_threads=4,
        )
        lines = run_lines(
            identity, layout, project, ["Rscript", "--vanilla", "/p/fit model.R"]
        )
        assert lines[0].startswith("Start time: ")
        assert "Project name: demo" in lines
        assert "Task ID: 3" in lines
        assert "Entrypoint: 'fit model.R'" in lines
        assert "Command: Rscript --vanilla '/p/fit model.R'" in lines
        assert "Threads: 4" in lines
        assert "Requested modules: R/4.3.2" in lines
        assert lines[-1] == "Run directory: /p/jobs/777/a3"

    def test_no_modules_line(self) -> None:
        """Requested modules line is omitted when none are set."""
        identity = JobIdentity("1", "0", False, "/p")
        project = ProjectConfig("d", "/p", "/p/jobkit.toml", "a.py")
        lines = run_lines(identity, JobLayout.build(identity), project, ["a.py"])
        assert not any(line.startswith("Requested modules") for line in lines)


class TestEnvLines:
    """Tests for env_lines and loaded_modules."""

    def test_loaded_modules(self) -> None:
        """LOADEDMODULES is split on colons."""
        assert loaded_modules({"LOADEDMODULES": "R/4.3.2:gcc/12::"}) == [
            "R/4.3.2",
            "gcc/12",
        ]

    def test_filters_and_sorts(self) -> None:
        """Only matching variables are listed, sorted."""
        env = {
            "SLURM_JOB_ID": "1",
            "OMP_NUM_THREADS": "2",
            "HOME": "/h",
            "TASK_ID": "3",
        }
        lines = env_lines(env, r"^(SLURM_|OMP_|TASK_ID=)")
        assert lines == [
            "(modules not available)",
            "",
            "Environment variables:",
            "OMP_NUM_THREADS=2",
            "SLURM_JOB_ID=1",
            "TASK_ID=3",
        ]
