"""Entry point and main flow for jobkit.

Loads config, parses args, and dispatches to submit, run or status.
"""

from __future__ import annotations

import logging
import os
import sys

from slurm_jobkit.args import (
    EXPORT_SENTINEL,
    ParsedArgs,
    apply_sbatch_overrides,
    parse_args,
)
from slurm_jobkit.config import (
    Defaults,
    find_config_dir,
    init_sbatch_options,
    load_defaults,
    load_project,
)
from slurm_jobkit.core import (
    JobkitError,
    UsageError,
    die,
    die_usage,
    program_invocation,
)
from slurm_jobkit.runner import RunOptions, run_job
from slurm_jobkit.sbatch import submit_job
from slurm_jobkit.status import collect_statuses

logger = logging.getLogger("slurm_jobkit")


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 success, 1 error; ``run`` returns the job exit code).
    """
    try:
        return _main_inner(sys.argv[1:] if argv is None else argv)
    except UsageError as exc:
        logger.error("Error: %s", exc)
        logger.error("Use: %s -h for help.\n", program_invocation())
        return 1
    except JobkitError as exc:
        logger.error("Error: %s", exc)
        return 1


def _main_inner(argv: list[str]) -> int:
    """Inner main logic.

    Returns:
        Exit code.
    """
    parsed = parse_args(argv)
    defaults = load_defaults(find_config_dir())

    if parsed.command == "submit":
        return cmd_submit(parsed, defaults)
    if parsed.command == "run":
        return cmd_run(parsed, defaults)
    return cmd_status(parsed, defaults)


def cmd_submit(parsed: ParsedArgs, defaults: Defaults) -> int:
    """Generate the launcher and submit (or export) it.

    Args:
        parsed: Parsed arguments.
        defaults: Loaded defaults.

    Returns:
        Exit code.
    """
    if parsed.positional_args:
        die_usage(f"Unexpected argument: {parsed.positional_args[0]}")

    project, sbatch_table = load_project(parsed.project_file)
    options = init_sbatch_options(project, sbatch_table, defaults)
    apply_sbatch_overrides(options, parsed.sbatch_overrides)

    export_file = parsed.export_file
    if export_file == EXPORT_SENTINEL:
        export_file = f"{options.job_name}.sbatch"

    return submit_job(project, options, defaults, export_file)


def cmd_run(parsed: ParsedArgs, defaults: Defaults) -> int:
    """Run the job lifecycle on the compute node.

    Args:
        parsed: Parsed arguments.
        defaults: Loaded defaults.

    Returns:
        Lifecycle exit code.
    """
    if parsed.positional_args:
        die_usage(f"Unexpected argument: {parsed.positional_args[0]}")

    project, _ = load_project(parsed.project_file)
    options = RunOptions(
        script_path=parsed.script_path,
        debug=parsed.debug,
        execute_payload=parsed.execute_payload,
    )
    return run_job(project, defaults, options)


def cmd_status(parsed: ParsedArgs, defaults: Defaults) -> int:
    """Print the STATUS of every run of a job.

    Args:
        parsed: Parsed arguments.
        defaults: Loaded defaults.

    Returns:
        Exit code.
    """
    if len(parsed.positional_args) > 1:
        die_usage("status takes at most one JOB_ID")

    if os.path.isfile(parsed.project_file):
        root = os.path.dirname(os.path.realpath(parsed.project_file))
    else:
        root = os.getcwd()

    job = parsed.positional_args[0] if parsed.positional_args else defaults.last_link
    if not job:
        die_usage("No JOB_ID given and no last-job link configured")
    job_root = os.path.join(root, defaults.jobs_dir_name, job)
    if not os.path.isdir(job_root):
        die(f"Job not found: {job_root}")

    job_root = os.path.realpath(job_root)
    job_id = os.path.basename(job_root)
    runs = collect_statuses(job_root)
    if not runs:
        logger.info("Job %s: no runs recorded", job_id)
        return 0

    logger.info("Job %s", job_id)
    for name, status in runs:
        logger.info("  %-10s %s", name, status)
    return 0
