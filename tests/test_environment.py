"""Tests for the payload environment contract."""

from __future__ import annotations

import os

import pytest

from slurm_jobkit.bootlog import BootstrapLog
from slurm_jobkit.config import DEFAULT_THREAD_VARS, ProjectConfig
from slurm_jobkit.core import JobkitError
from slurm_jobkit.environment import (
    PayloadEnv,
    build_payload_env,
    input_dir_var,
    validate_inputs,
)
from slurm_jobkit.identity import JobIdentity, JobLayout


class TestInputDirVar:
    """Tests for input_dir_var."""

    def test_names(self) -> None:
        """Names are upper-cased and sanitized."""
        assert input_dir_var("data") == "DATA_DIR"
        assert input_dir_var("raw-data/v2") == "RAW_DATA_V2_DIR"
        assert input_dir_var("code") == "CODE_DIR"


class TestValidateInputs:
    """Tests for validate_inputs."""

    def test_ok(self, project_dir: str) -> None:
        """Existing dirs and entrypoint pass."""
        validate_inputs(project_dir, ("data",), "run.py")

    def test_missing_dir(self, project_dir: str) -> None:
        """A missing input dir raises JobkitError."""
        with pytest.raises(JobkitError, match="missing input dir: code/"):
            validate_inputs(project_dir, ("data", "code"), "run.py")

    def test_missing_entrypoint(self, project_dir: str) -> None:
        """A missing entrypoint raises JobkitError."""
        with pytest.raises(JobkitError, match="missing entrypoint: fit.R"):
            validate_inputs(project_dir, ("data",), "fit.R")

    def test_empty_dir_only_warns(
        self, project_dir: str, quiet_log: BootstrapLog
    ) -> None:
        """An empty input dir is accepted."""
        os.mkdir(os.path.join(project_dir, "empty"))
        validate_inputs(project_dir, ("empty",), "run.py", quiet_log)


class TestBuildPayloadEnv:
    """Tests for build_payload_env."""

    def test_exports(self, project: ProjectConfig) -> None:
        """Identity, directories, threads and input dirs are exported."""
        identity = JobIdentity("777", "3", True, project.root)
        layout = JobLayout.build(identity)
        base = {"PATH": "/usr/bin", "OMP_NUM_THREADS": "64"}

        env, names = build_payload_env(
            base, identity, layout, project, DEFAULT_THREAD_VARS
        )
        assert env["JOB_ID"] == "777"
        assert env["TASK_ID"] == "3"
        assert env["RUN_DIR"] == layout.run_dir
        assert env["RESULT_DIR"] == layout.result_dir
        assert env["PROVENANCE_DIR"] == layout.task_provenance_dir
        assert env["DATA_DIR"] == os.path.join(project.root, "data")
        assert env["PATH"] == "/usr/bin"
        for var in DEFAULT_THREAD_VARS:
            assert env[var] == "2"
        assert names[:2] == ["JOB_ID", "TASK_ID"]
        assert names[-1] == "DATA_DIR"
        assert env["JOBKIT_INPUT_DIRS"] == "DATA_DIR"
        assert base["OMP_NUM_THREADS"] == "64"


def _payload_environ() -> dict[str, str]:
    return {
        "RUN_DIR": "/p/jobs/777/a3",
        "RESULT_DIR": "/p/jobs/777/a3/results",
        "PROVENANCE_DIR": "/p/jobs/777/a3/provenance",
        "JOB_ID": "777",
        "TASK_ID": "3",
        "SLURM_JOB_NUM_NODES": "1",
        "SLURM_NTASKS_PER_NODE": "2",
        "SLURM_CPUS_PER_TASK": "4",
        "OMP_NUM_THREADS": "4",
        "JOBKIT_INPUT_DIRS": "DATA_DIR",
        "DATA_DIR": "/p/data",
        "SLURM_SUBMIT_DIR": "/p",
        "XDG_RUNTIME_DIR": "/run/user/1",
    }


class TestPayloadEnv:
    """Tests for PayloadEnv.from_environ."""

    def test_reads_and_coerces(self) -> None:
        """Integers are coerced; only the listed input dirs are collected."""
        penv = PayloadEnv.from_environ(_payload_environ())
        assert penv.job_id == "777"
        assert penv.task_id == 3
        assert penv.n_tasks == 2
        assert penv.n_cpus_per_task == 4
        assert penv.input_dirs == {"DATA_DIR": "/p/data"}

    def test_result_path(self) -> None:
        """Result paths carry a zero-padded task id."""
        penv = PayloadEnv.from_environ(_payload_environ())
        path = penv.result_path("fit", ".rds")
        assert path == "/p/jobs/777/a3/results/fit_task003.rds"

    def test_debug_job_id(self) -> None:
        """Debug job ids are accepted as strings."""
        environ = dict(_payload_environ(), JOB_ID="debug_20260101-120000")
        assert PayloadEnv.from_environ(environ).job_id == "debug_20260101-120000"

    def test_missing_variable(self) -> None:
        """A missing variable is named in the error."""
        environ = _payload_environ()
        del environ["SLURM_CPUS_PER_TASK"]
        with pytest.raises(JobkitError, match="SLURM_CPUS_PER_TASK not set"):
            PayloadEnv.from_environ(environ)

    def test_listed_input_dir_missing(self) -> None:
        """A listed input dir variable must be set."""
        environ = dict(_payload_environ(), JOBKIT_INPUT_DIRS="DATA_DIR:CODE_DIR")
        with pytest.raises(JobkitError, match="CODE_DIR not set"):
            PayloadEnv.from_environ(environ)

    def test_no_input_dirs(self) -> None:
        """Without the list no variables are picked up."""
        environ = _payload_environ()
        del environ["JOBKIT_INPUT_DIRS"]
        assert PayloadEnv.from_environ(environ).input_dirs == {}

    def test_non_integer(self) -> None:
        """A malformed integer is named in the error."""
        environ = dict(_payload_environ(), TASK_ID="three")
        with pytest.raises(JobkitError, match="TASK_ID is not an integer"):
            PayloadEnv.from_environ(environ)
