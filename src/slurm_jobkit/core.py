"""Core utilities: error handling, validation, path helpers."""

from __future__ import annotations

import logging
import os
import re
import sys
from datetime import datetime

logger = logging.getLogger("slurm_jobkit")


class JobkitError(Exception):
    """Fatal error -- prints message to stderr, exits 1."""


class UsageError(JobkitError):
    """Bad usage -- prints message + hint to stderr, exits 1."""


class JobInterrupted(JobkitError):
    """Job stopped by a signal (walltime warning or termination).

    Attributes:
        status: Final status recorded for the run.
        exit_code: Process exit code to report.
    """

    def __init__(self, status: str, exit_code: int) -> None:
        super().__init__(f"{status} (exit code {exit_code})")
        self.status = status
        self.exit_code = exit_code


def die(message: str) -> None:
    """Raise JobkitError with message.

    Args:
        message: Error message to display.

    Raises:
        JobkitError: Always.
    """
    assert isinstance(message, str), "message must be a string"
    raise JobkitError(message)


def die_usage(message: str) -> None:
    """Raise UsageError with message.

    Args:
        message: Error message to display.

    Raises:
        UsageError: Always.
    """
    assert isinstance(message, str), "message must be a string"
    raise UsageError(message)


def program_invocation() -> str:
    """Return basename of current program invocation."""
    return os.path.basename(sys.argv[0])


def iso_now() -> str:
    """Return local time as ISO-8601 with seconds precision (``date -Is``)."""
    return datetime.now().astimezone().isoformat(timespec="seconds")


def validate_positive_integer(value: str, param_name: str) -> None:
    """Validate value is a positive integer string.

    Args:
        value: Value to validate.
        param_name: Parameter name for error messages.

    Raises:
        UsageError: If invalid.
    """
    assert isinstance(value, str), "value must be a string"
    if not re.fullmatch(r"[1-9][0-9]*", value):
        die_usage(f"Invalid value for {param_name}: must be positive integer")


def validate_time_format(time_str: str) -> None:
    """Validate SLURM time format (D-HH:MM:SS, HH:MM:SS or MM:SS).

    Args:
        time_str: Time string to validate. Empty string is valid.

    Raises:
        UsageError: If invalid format.
    """
    assert isinstance(time_str, str), "time_str must be a string"
    if not time_str:
        return
    long_form = r"([0-9]+-)?([0-1]?[0-9]|2[0-3]):[0-5][0-9]:[0-5][0-9]"
    short_form = r"[0-9]+:[0-5][0-9]"
    if not (re.fullmatch(long_form, time_str) or re.fullmatch(short_form, time_str)):
        die_usage(f"Invalid time format: {time_str} (use D-HH:MM:SS)")


def validate_memory(mem: str) -> None:
    """Validate SLURM memory spec (e.g. 200M, 1G, 512).

    Args:
        mem: Memory string. Empty string is valid.

    Raises:
        UsageError: If invalid.
    """
    assert isinstance(mem, str), "mem must be a string"
    if mem and not re.fullmatch(r"[1-9][0-9]*[KMGT]?", mem):
        die_usage(f"Invalid memory: {mem} (use <int>[K|M|G|T])")


def validate_array_spec(spec: str) -> None:
    """Validate SLURM array spec (1-10, 1,3,5, 1-10%2, 0-15:4).

    Args:
        spec: Array spec. Empty string means no array.

    Raises:
        UsageError: If invalid.
    """
    assert isinstance(spec, str), "spec must be a string"
    if not spec:
        return
    item = r"[0-9]+(-[0-9]+(:[0-9]+)?)?"
    if not re.fullmatch(rf"{item}(,{item})*(%[1-9][0-9]*)?", spec):
        die_usage(f"Invalid array spec: {spec}")


def to_absolute_path(filepath: str) -> str:
    """Convert a path to absolute.

    Args:
        filepath: Path to convert.

    Returns:
        Absolute path.
    """
    assert isinstance(filepath, str), "filepath must be a string"
    result = os.path.realpath(filepath)
    assert os.path.isabs(result), "result must be absolute"
    return result


def ensure_directory(dir_path: str) -> None:
    """Ensure directory exists, creating if needed.

    Args:
        dir_path: Directory path.
    """
    assert isinstance(dir_path, str), "dir_path must be a string"
    if not os.path.isdir(dir_path):
        os.makedirs(dir_path, exist_ok=True)
        logger.debug("Created directory: %s", dir_path)


def require_arg_value(flag: str, next_index: int, array_length: int) -> None:
    """Validate that a flag has a following value argument.

    Args:
        flag: The flag string.
        next_index: Index of the expected value.
        array_length: Total length of the args array.

    Raises:
        UsageError: If no value follows the flag.
    """
    assert isinstance(flag, str), "flag must be a string"
    assert next_index >= 0, "next_index must be non-negative"
    if next_index >= array_length:
        die_usage(f"Option {flag} requires a value")
