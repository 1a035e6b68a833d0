"""Once-per-job capture of the batch script and project items."""

from __future__ import annotations

import logging
import os
import shutil
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from slurm_jobkit.bootlog import BootstrapLog

logger = logging.getLogger("slurm_jobkit")


def acquire_once(lock_path: str) -> bool:
    """Create lock_path exclusively.

    Exactly one caller across all tasks of an array job gets True.

    Args:
        lock_path: Marker file to create.

    Returns:
        True if this call created the marker.
    """
    try:
        fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    except FileExistsError:
        return False
    os.close(fd)
    return True


def copy_item(src: str, dest_dir: str) -> str:
    """Archive-copy a file or directory into dest_dir.

    Directories are merged into ``dest_dir/<name>``; metadata and symlinks
    are preserved.

    Args:
        src: Source path (a trailing slash is ignored).
        dest_dir: Existing destination directory.

    Returns:
        Path of the copy.

    Raises:
        OSError: If src is missing or the copy fails.
    """
    src = os.path.normpath(src)
    dst = os.path.join(dest_dir, os.path.basename(src))

    if os.path.isdir(src) and not os.path.islink(src):
        shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
    elif os.path.lexists(src):
        shutil.copy2(src, dst, follow_symlinks=False)
    else:
        raise FileNotFoundError(f"No such file or directory: {src}")
    return dst


def snapshot_items(
    project_root: str,
    items: tuple[str, ...],
    dest_dir: str,
    log: BootstrapLog | None = None,
) -> list[str]:
    """Copy project items into the snapshot directory.

    Failures are logged and skipped.

    Args:
        project_root: Directory items are relative to.
        items: Item paths relative to project_root.
        dest_dir: Snapshot directory.
        log: Bootstrap log for warnings.

    Returns:
        Items that failed.
    """
    failed = []
    for item in items:
        try:
            copy_item(os.path.join(project_root, item), dest_dir)
        except (OSError, shutil.Error) as exc:
            failed.append(item)
            _warn(log, "snapshot: failed for item: %s (%s)", item, exc)
    return failed


def save_script(script_path: str, dest: str, log: BootstrapLog | None = None) -> bool:
    """Save the submitted batch script.

    Args:
        script_path: Script to save ("" skips).
        dest: Destination file (provenance/script.sh).
        log: Bootstrap log for warnings.

    Returns:
        True if saved.
    """
    if not script_path:
        _warn(log, "snapshot: no batch script given; execution code not saved")
        return False
    try:
        shutil.copy2(script_path, dest)
    except OSError as exc:
        _warn(log, "snapshot: failed to save execution code (%s)", exc)
        return False
    return True


def _warn(log: BootstrapLog | None, msg: str, *args: object) -> None:
    if log is not None:
        log.warning(msg, *args)
    else:
        logger.warning(msg, *args)
