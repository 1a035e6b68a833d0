"""Compute-node job lifecycle (``jobkit run``).

Steps: initialize infrastructure, install status tracking and traps,
validate inputs, configure the runtime environment, check modules, capture
snapshots and job-level provenance once per job, capture task-level
provenance, execute the payload, finalize STATUS.
"""

from __future__ import annotations

import os
import shlex
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from slurm_jobkit.bootlog import BootstrapLog
from slurm_jobkit.config import Defaults, ProjectConfig
from slurm_jobkit.core import JobInterrupted, JobkitError
from slurm_jobkit.environment import build_payload_env, validate_inputs
from slurm_jobkit.identity import (
    JobIdentity,
    JobLayout,
    create_layout,
    resolve_identity,
)
from slurm_jobkit.payload import build_command, run_payload
from slurm_jobkit.provenance import (
    loaded_modules,
    write_env_record,
    write_job_record,
    write_platform,
    write_run_record,
    write_task_record,
)
from slurm_jobkit.snapshot import acquire_once, save_script, snapshot_items
from slurm_jobkit.status import (
    FAILED,
    RUNNING,
    SignalTraps,
    finalize_status,
    set_final_status,
    write_status,
)

BOOTSTRAP_EXIT_CODE = 2
NOT_EXECUTABLE_EXIT_CODE = 126
COMMAND_NOT_FOUND_EXIT_CODE = 127


@dataclass(frozen=True)
class RunOptions:
    """Flags of ``jobkit run``.

    Attributes:
        script_path: Batch script to save as provenance/script.sh.
        debug: Allow running outside Slurm with fallback identity.
        execute_payload: False runs bookkeeping only.
    """

    script_path: str = ""
    debug: bool = False
    execute_payload: bool = True


def run_job(
    project: ProjectConfig,
    defaults: Defaults,
    options: RunOptions,
    environ: Mapping[str, str] | None = None,
    log: BootstrapLog | None = None,
) -> int:
    """Run the full lifecycle for one job or array task.

    Args:
        project: Loaded project.
        defaults: Loaded defaults.
        options: Run flags.
        environ: Environment (defaults to os.environ).
        log: Bootstrap log (defaults to one on stdout/stderr).

    Returns:
        Exit code: payload exit code, 2 on bootstrap failure,
        126/127 when the payload cannot be started, 99 on TIMEOUT,
        143 on KILLED.
    """
    environ = dict(os.environ if environ is None else environ)
    log = log or BootstrapLog()

    log.step("initialize infrastructure")
    try:
        identity, warnings = resolve_identity(environ, debug=options.debug)
    except JobkitError as exc:
        log.error("%s", exc)
        log.close()
        return BOOTSTRAP_EXIT_CODE

    log.run_id = identity.label
    layout = JobLayout.build(identity, defaults.jobs_dir_name)
    create_layout(layout, defaults.last_link)
    log.to_files(layout.bootstrap_stdout, layout.bootstrap_stderr)

    for warning in warnings:
        log.warning("%s", warning)
    log.info("JOB_ID=%s", identity.job_id)
    log.info("TASK_ID=%s", identity.task_id)
    log.info("RUN_DIR=%s", layout.run_dir)

    log.step("install status tracking and traps")
    write_status(layout.status_file, RUNNING)

    exit_code = 1
    try:
        with SignalTraps(layout.status_file, log):
            exit_code = _lifecycle(
                project, defaults, options, environ, identity, layout, log
            )
    except JobInterrupted as exc:
        exit_code = exc.exit_code
    except JobkitError as exc:
        set_final_status(layout.status_file, FAILED)
        log.error("%s", exc)
        exit_code = BOOTSTRAP_EXIT_CODE
    except Exception as exc:
        log.error("status: FAILED (%s: %s)", type(exc).__name__, exc)
        raise
    finally:
        status = finalize_status(layout.status_file, exit_code)
        log.info("status: %s (exit code %d)", status, exit_code)
        log.close()

    return exit_code


def _lifecycle(
    project: ProjectConfig,
    defaults: Defaults,
    options: RunOptions,
    environ: dict[str, str],
    identity: JobIdentity,
    layout: JobLayout,
    log: BootstrapLog,
) -> int:
    """Steps that run with traps installed; returns the payload exit code."""
    command = build_command(
        project.payload_prefix, identity.project_root, project.entrypoint
    )

    log.step("validate inputs")
    validate_inputs(identity.project_root, project.input_dirs, project.entrypoint, log)

    log.step("configure runtime environment")
    env, exported = build_payload_env(
        environ, identity, layout, project, defaults.thread_vars
    )
    log.export(env, exported)

    log.step("check environment modules")
    _report_modules(project, environ, log)

    log.step("capture execution code and snapshots (once per job)")
    if acquire_once(layout.job_lock):
        save_script(
            options.script_path,
            os.path.join(layout.job_provenance_dir, "script.sh"),
            log,
        )
        snapshot_items(
            identity.project_root, project.snapshot_items, layout.snapshot_dir, log
        )

        log.step("capture job-level provenance (once per job)")
        job_dir = layout.job_provenance_dir
        _record(log, write_platform, os.path.join(job_dir, "platform.txt"))
        _record(
            log,
            write_job_record,
            os.path.join(job_dir, "job.txt"),
            identity.job_id,
            environ,
        )
    else:
        log.info("snapshot: job-level capture already done by another task")

    log.step("capture task-level provenance")
    task_dir = layout.task_provenance_dir
    _record(
        log, write_task_record, os.path.join(task_dir, "task.txt"), identity, environ
    )
    _record(
        log,
        write_run_record,
        os.path.join(task_dir, "run.txt"),
        identity,
        layout,
        project,
        command,
    )
    _record(
        log,
        write_env_record,
        os.path.join(task_dir, "env.txt"),
        env,
        defaults.env_pattern,
    )

    log.step("redirect logs to payload files")
    log.info("payload stdout: %s", layout.payload_stdout)
    log.info("payload stderr: %s", layout.payload_stderr)

    log.step("execute payload")
    if not options.execute_payload:
        log.info("payload: skipped (--no-payload)")
        return 0

    log.info("payload cmd: %s", shlex.join(command))
    started = time.monotonic()
    try:
        rc = run_payload(
            command,
            layout.run_dir,
            env,
            layout.payload_stdout,
            layout.payload_stderr,
            defaults.terminate_grace_seconds,
        )
    except PermissionError as exc:
        log.error("payload failed to start: %s", exc)
        return NOT_EXECUTABLE_EXIT_CODE
    except OSError as exc:
        log.error("payload failed to start: %s", exc)
        return COMMAND_NOT_FOUND_EXIT_CODE
    elapsed = int(time.monotonic() - started)

    if rc < 0:
        rc = 128 - rc
    if rc == 0:
        log.info(
            "finish payload (%ds); task=%s; logs in %s",
            elapsed,
            identity.task_id,
            layout.run_dir,
        )
    else:
        log.error("payload failed (rc=%d)", rc)
    return rc


def _report_modules(
    project: ProjectConfig,
    environ: Mapping[str, str],
    log: BootstrapLog,
) -> None:
    # modules are loaded by the sbatch launcher before this process starts
    loaded = loaded_modules(environ)
    if project.modules:
        log.info("requested modules: %s", " ".join(project.modules))
    if loaded:
        log.info("loaded modules: %s", " ".join(loaded))
    elif project.modules:
        log.warning("no environment modules loaded; assuming tools on PATH")


def _record(
    log: BootstrapLog, writer: Callable[..., None], path: str, *args: object
) -> None:
    try:
        writer(path, *args)
    except OSError as exc:
        log.warning("provenance: failed to write %s (%s)", os.path.basename(path), exc)
