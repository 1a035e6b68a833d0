"""CLI argument parsing.

``jobkit <command> [options]``. Flags are parsed from per-command tables;
sbatch overrides are collected as strings and validated when applied.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from slurm_jobkit.config import PROJECT_FILE_NAME
from slurm_jobkit.core import (
    die_usage,
    require_arg_value,
    validate_array_spec,
    validate_memory,
    validate_positive_integer,
    validate_time_format,
)

if TYPE_CHECKING:
    from slurm_jobkit.config import SbatchOptions

logger = logging.getLogger("slurm_jobkit")

COMMANDS = ("submit", "run", "status")

USAGE_TEXT = """\
Usage: jobkit <command> [options]

 Commands:
   submit                       Generate the sbatch launcher and submit it
   run                          Run the job lifecycle (inside the batch job)
   status [JOB_ID]              Show STATUS of every run of a job (default: last)

 Common options:
   -f, --file FILE              Project file (default: jobkit.toml)
   -h, --help                   Show this help

 Submit options:
   -t, --time D-HH:MM:SS        Time limit
   -m, --mem SIZE               Memory (e.g. 200M, 4G)
   -p, --partition NAME         Partition
   -a, --array SPEC             Array spec (e.g. 1-10, 1-10%2)
   -j, --job-name NAME          Job name
   -c, --cpus INT               CPU cores per task
   -N, --nodes INT              Number of nodes
   -n, --ntasks INT             Number of tasks
   --signal-seconds INT         Send USR1 this many seconds before walltime
   --export [FILE]              Write the launcher to FILE instead of submitting

 Run options:
   --script PATH                Batch script to save with the job provenance
   --debug                      Allow running outside Slurm (fallback ids)
   --no-payload                 Do all bookkeeping but skip the payload"""

_COMMON_FLAGS: dict[str, str] = {
    "-f": "project_file",
    "--file": "project_file",
}

_SUBMIT_FLAGS: dict[str, str] = {
    "-t": "time",
    "--time": "time",
    "-m": "mem",
    "--mem": "mem",
    "-p": "partition",
    "--partition": "partition",
    "-a": "array",
    "--array": "array",
    "-j": "job_name",
    "--job-name": "job_name",
    "-c": "cpus_per_task",
    "--cpus": "cpus_per_task",
    "-N": "nodes",
    "--nodes": "nodes",
    "-n": "ntasks",
    "--ntasks": "ntasks",
    "--signal-seconds": "signal_seconds",
}

_INT_FIELDS = frozenset({"cpus_per_task", "nodes", "ntasks", "signal_seconds"})

EXPORT_SENTINEL = ":default:"


@dataclass
class ParsedArgs:
    """Result of argument parsing.

    Attributes:
        command: One of COMMANDS.
        project_file: Project TOML path.
        positional_args: Non-flag arguments after the command.
        sbatch_overrides: Submit flags, keyed by SbatchOptions field.
        export_file: Export target (EXPORT_SENTINEL for the default name).
        script_path: Batch script path (run).
        debug: Debug mode (run).
        execute_payload: False with --no-payload (run).
    """

    command: str = ""
    project_file: str = PROJECT_FILE_NAME
    positional_args: list[str] = field(default_factory=list)
    sbatch_overrides: dict[str, str] = field(default_factory=dict)
    export_file: str = ""
    script_path: str = ""
    debug: bool = False
    execute_payload: bool = True


def print_usage() -> None:
    """Print full usage."""
    logger.info(USAGE_TEXT)


def parse_args(argv: list[str]) -> ParsedArgs:
    """Parse ``jobkit`` arguments.

    Args:
        argv: Arguments without the program name.

    Returns:
        ParsedArgs.

    Raises:
        UsageError: On a missing/unknown command or unknown flag.
    """
    assert isinstance(argv, list), "argv must be a list"

    if not argv or argv[0] in ("-h", "--help"):
        print_usage()
        sys.exit(0 if argv else 1)

    result = ParsedArgs(command=argv[0])
    if result.command not in COMMANDS:
        die_usage(f"Unknown command: {result.command}")

    args = argv[1:]
    length = len(args)
    i = 0
    while i < length:
        arg = args[i]

        if arg in ("-h", "--help"):
            print_usage()
            sys.exit(0)
        elif arg in _COMMON_FLAGS:
            require_arg_value(arg, i + 1, length)
            result.project_file = args[i + 1]
            i += 2
        elif result.command == "submit" and arg in _SUBMIT_FLAGS:
            require_arg_value(arg, i + 1, length)
            result.sbatch_overrides[_SUBMIT_FLAGS[arg]] = args[i + 1]
            i += 2
        elif result.command == "submit" and arg == "--export":
            if i + 1 < length and not args[i + 1].startswith("-"):
                result.export_file = args[i + 1]
                i += 2
            else:
                result.export_file = EXPORT_SENTINEL
                i += 1
        elif result.command == "run" and arg == "--script":
            require_arg_value(arg, i + 1, length)
            result.script_path = args[i + 1]
            i += 2
        elif result.command == "run" and arg == "--debug":
            result.debug = True
            i += 1
        elif result.command == "run" and arg == "--no-payload":
            result.execute_payload = False
            i += 1
        elif arg.startswith("-"):
            die_usage(f"Unknown option for {result.command}: {arg}")
        else:
            result.positional_args.append(arg)
            i += 1

    return result


def apply_sbatch_overrides(options: SbatchOptions, overrides: dict[str, str]) -> None:
    """Validate CLI overrides and apply them to options.

    Args:
        options: SbatchOptions to mutate.
        overrides: Values keyed by SbatchOptions field.

    Raises:
        UsageError: On invalid values.
    """
    for attr, value in overrides.items():
        assert hasattr(options, attr), f"options missing attribute: {attr}"
        if attr in _INT_FIELDS:
            validate_positive_integer(value, attr.replace("_", "-"))
            setattr(options, attr, int(value))
        else:
            setattr(options, attr, value)

    validate_time_format(options.time)
    validate_memory(options.mem)
    validate_array_spec(options.array)
    if not options.job_name:
        die_usage("Job name must not be empty")
