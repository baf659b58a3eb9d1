"""
Local archive store.

Holds compressed snapshot archives side by side::

    {archive_store}/backup_snapshot_2026_10_17.tar.gz
    {archive_store}/.last_push

``.last_push`` is the push marker: its mtime records the last successful
transfer to the remote host.
"""

import os
import shutil
from pathlib import Path
from datetime import datetime
from typing import Optional

from .compression import EXTENSIONS

PUSH_MARKER = '.last_push'


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class ArchiveStore:
    """Handler for the archive store directory."""

    def __init__(self, base_path: str):
        """
        Initialize archive store.

        Args:
            base_path: Archive store directory
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create archive store directory: {e}")

    @property
    def marker_path(self) -> Path:
        return self.base_path / PUSH_MARKER

    def store(self, source_path: str) -> str:
        """
        Move an archive into the store, replacing one with the same name.

        Args:
            source_path: Path to archive file (usually in the work area)

        Returns:
            Full path of the stored archive

        Raises:
            StorageError: If the move fails
        """
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest_path = self.base_path / os.path.basename(source_path)

        try:
            shutil.move(source_path, dest_path)
            return str(dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to store archive: {e}")

    def delete(self, name: str):
        """
        Delete an archive from the store.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self.base_path / name

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete archive: {e}")

    def list_archives(self) -> list:
        """
        List archives in the store.

        Returns:
            List of dicts with 'name', 'modified', and 'size' keys, oldest first

        Raises:
            StorageError: If listing fails
        """
        suffixes = tuple(f".{ext}" for ext in EXTENSIONS.values())

        try:
            archives = []

            for file_path in self.base_path.iterdir():
                if file_path.name == PUSH_MARKER or not file_path.is_file():
                    continue
                if not file_path.name.endswith(suffixes):
                    continue

                stat = file_path.stat()
                archives.append({
                    'name': file_path.name,
                    'modified': datetime.fromtimestamp(stat.st_mtime),
                    'size': stat.st_size
                })

            return sorted(archives, key=lambda a: (a['modified'], a['name']))

        except OSError as e:
            raise StorageError(f"Failed to list archives: {e}")

    def last_push_mtime(self) -> Optional[float]:
        """Marker mtime in epoch seconds, or None if never pushed."""
        try:
            return self.marker_path.stat().st_mtime
        except FileNotFoundError:
            return None

    def last_push(self) -> Optional[datetime]:
        """Time of the last successful push, or None if never pushed."""
        mtime = self.last_push_mtime()
        return datetime.fromtimestamp(mtime) if mtime is not None else None

    def mark_pushed(self, when: Optional[datetime] = None):
        """Record a successful push by touching the marker."""
        try:
            self.marker_path.touch()
            if when is not None:
                timestamp = when.timestamp()
                os.utime(self.marker_path, (timestamp, timestamp))
        except OSError as e:
            raise StorageError(f"Failed to update push marker: {e}")
