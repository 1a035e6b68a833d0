"""Shared test fixtures."""

from __future__ import annotations

import io
import sys

import pytest

from slurm_jobkit.bootlog import BootstrapLog
from slurm_jobkit.config import Defaults, ProjectConfig, load_project

PAYLOAD_SCRIPT = """\
import os
import sys

with open(os.path.join(os.environ["RESULT_DIR"], "out.txt"), "w") as fh:
    fh.write(os.environ["TASK_ID"])
print("payload ran in", os.getcwd())
sys.exit(int(os.environ.get("PAYLOAD_RC", "0")))
"""


@pytest.fixture
def defaults() -> Defaults:
    """Create built-in Defaults.

    Returns:
        Default Defaults.
    """
    return Defaults()


@pytest.fixture
def project_dir(tmp_path: object) -> str:
    """Create a project with jobkit.toml, an input dir and a payload.

    Args:
        tmp_path: Pytest tmp_path fixture.

    Returns:
        Path to the project root.
    """
    root = tmp_path / "proj"  # type: ignore[operator]
    root.mkdir()
    (root / "data").mkdir()
    (root / "data" / "input.csv").write_text("x,y\n1,2\n")
    (root / "run.py").write_text(PAYLOAD_SCRIPT)
    (root / "jobkit.toml").write_text(
        "[project]\n"
        'name = "demo"\n'
        'input_dirs = ["data"]\n'
        'entrypoint = "run.py"\n'
        f'payload_prefix = ["{sys.executable}"]\n'
        'snapshot_items = ["run.py", "data/"]\n'
        "num_threads = 2\n"
        "\n"
        "[sbatch]\n"
        'time = "0-01:00:00"\n'
        'mem = "2G"\n'
        "cpus_per_task = 2\n"
        'qos = "short"\n'
    )
    return str(root)


@pytest.fixture
def project(project_dir: str) -> ProjectConfig:
    """Load the project from project_dir.

    Args:
        project_dir: Project root fixture.

    Returns:
        Loaded ProjectConfig.
    """
    loaded, _ = load_project(f"{project_dir}/jobkit.toml")
    return loaded


@pytest.fixture
def slurm_env(project_dir: str) -> dict[str, str]:
    """Environment of a plain (non-array) batch job.

    Args:
        project_dir: Project root fixture.

    Returns:
        Environment mapping.
    """
    return {
        "SLURM_SUBMIT_DIR": project_dir,
        "SLURM_JOB_ID": "4242",
        "SLURM_JOB_NUM_NODES": "1",
        "SLURM_NTASKS_PER_NODE": "1",
        "SLURM_CPUS_PER_TASK": "2",
    }


@pytest.fixture
def array_env(project_dir: str) -> dict[str, str]:
    """Environment of array task 3 of job 777.

    Args:
        project_dir: Project root fixture.

    Returns:
        Environment mapping.
    """
    return {
        "SLURM_SUBMIT_DIR": project_dir,
        "SLURM_JOB_ID": "780",
        "SLURM_ARRAY_JOB_ID": "777",
        "SLURM_ARRAY_TASK_ID": "3",
    }


@pytest.fixture
def quiet_log() -> BootstrapLog:
    """Bootstrap log writing to in-memory streams.

    Returns:
        BootstrapLog.
    """
    return BootstrapLog(io.StringIO(), io.StringIO())
