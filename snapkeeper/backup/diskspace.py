"""Pre-flight free space check for the backup root."""

import shutil

GIB = 1024 ** 3


class DiskSpaceError(Exception):
    """Raised when the backup filesystem has less free space than required."""
    pass


def free_space_gb(path: str) -> int:
    """Free space of the filesystem holding path, in whole GiB (rounded down)."""
    return shutil.disk_usage(path).free // GIB


def check_disk_space(path: str, min_free_gb: int = 1) -> int:
    """
    Verify the filesystem holding path has at least min_free_gb free.

    Args:
        path: Any path on the filesystem to check
        min_free_gb: Required free space in GiB

    Returns:
        Free space in whole GiB

    Raises:
        DiskSpaceError: If free space is below the threshold or cannot be read
    """
    try:
        free_gb = free_space_gb(path)
    except OSError as e:
        raise DiskSpaceError(f"Failed to read free space on {path}: {e}")

    if free_gb < min_free_gb:
        raise DiskSpaceError(f"Not enough disk space on {path} ({free_gb}G free, {min_free_gb}G required)")

    return free_gb
