"""Disk space management utilities for the Framecast compositor.

Provides:
- Disk space checks before exporting
- Per-export temp directory with guaranteed cleanup
- Removal of partial output files
"""

import logging
import os
import shutil
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from config import config

log = logging.getLogger(__name__)


class DiskSpaceError(Exception):
    """Raised when there's not enough disk space to run an export."""
    pass


def get_free_disk_space_gb(path: Optional[str] = None) -> float:
    """
    Get free disk space in gigabytes for the given path.

    Args:
        path: Path to check (defaults to TEMP_DIR)

    Returns:
        Free space in GB
    """
    if path is None:
        path = config.TEMP_DIR

    # Ensure the directory exists
    os.makedirs(path, exist_ok=True)

    try:
        stat = shutil.disk_usage(path)
        return stat.free / (1024 ** 3)  # Convert bytes to GB
    except OSError as e:
        log.warning("Failed to get disk usage for %s: %s", path, e)
        return 0.0


def check_disk_space(required_gb: Optional[float] = None) -> tuple[bool, float]:
    """
    Check if there's enough free disk space to run an export.

    Args:
        required_gb: Minimum required space in GB (defaults to config.MIN_DISK_SPACE_GB)

    Returns:
        Tuple of (has_enough_space, current_free_gb)
    """
    if required_gb is None:
        required_gb = config.MIN_DISK_SPACE_GB

    free_gb = get_free_disk_space_gb()
    return free_gb >= required_gb, free_gb


def get_directory_size_mb(path: str) -> float:
    """Get total size of a directory in megabytes."""
    total_size = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total_size += os.path.getsize(os.path.join(dirpath, filename))
            except OSError:
                pass
    return total_size / (1024 ** 2)


def cleanup_temp_directory(path: str, force: bool = False) -> bool:
    """
    Clean up a temporary directory.

    Args:
        path: Directory to remove
        force: Force removal even if CLEANUP_TEMP is false

    Returns:
        True if cleaned up, False otherwise
    """
    if not os.path.exists(path):
        return True

    if not force and not config.CLEANUP_TEMP:
        log.info("Keeping temp directory (CLEANUP_TEMP=false): %s", path)
        return False

    size_mb = get_directory_size_mb(path)
    shutil.rmtree(path, ignore_errors=True)

    if os.path.exists(path):
        log.warning("Failed to fully cleanup: %s", path)
        return False
    log.debug("Cleaned up temp directory: %s (%.1fMB)", path, size_mb)
    return True


def cleanup_old_temp_directories(max_age_hours: int = 24) -> int:
    """
    Clean up temp directories left behind by crashed exports.

    Args:
        max_age_hours: Max age in hours before a directory is considered stale

    Returns:
        Number of directories cleaned up
    """
    temp_root = Path(config.TEMP_DIR)
    if not temp_root.exists():
        return 0

    max_age_seconds = max_age_hours * 3600
    now = time.time()
    cleaned = 0

    for item in temp_root.iterdir():
        if not item.is_dir():
            continue
        try:
            age = now - item.stat().st_mtime
        except OSError as e:
            log.warning("Error checking %s: %s", item, e)
            continue
        if age > max_age_seconds:
            shutil.rmtree(item, ignore_errors=True)
            log.info("Cleaned stale temp: %s (%.1fh old)", item.name, age / 3600)
            cleaned += 1

    return cleaned


def remove_partial_output(path: str) -> bool:
    """Delete a partially written output file. Returns True if something was removed."""
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    log.info("Removed partial output: %s", path)
    return True


@contextmanager
def export_temp_directory(prefix: str = "export") -> Generator[Path, None, None]:
    """
    Context manager that creates a per-export temp directory with guaranteed cleanup.

    Usage:
        with export_temp_directory() as temp_dir:
            # ... write mask / overlay PNGs into temp_dir ...
        # Cleanup happens automatically, even on exceptions

    Raises:
        DiskSpaceError: If there's not enough disk space
    """
    has_space, free_gb = check_disk_space()
    if not has_space:
        raise DiskSpaceError(
            f"Not enough disk space! "
            f"Free: {free_gb:.2f}GB, Required: {config.MIN_DISK_SPACE_GB:.1f}GB."
        )

    temp_dir = Path(config.TEMP_DIR) / f"{prefix}-{uuid.uuid4().hex[:12]}"
    temp_dir.mkdir(parents=True, exist_ok=True)
    log.debug("Disk space: %.2fGB free, temp dir %s", free_gb, temp_dir)

    try:
        yield temp_dir
    finally:
        cleanup_temp_directory(str(temp_dir))
