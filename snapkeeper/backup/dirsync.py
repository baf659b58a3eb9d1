"""
Directory mirroring into the snapshot's ``dirs`` area.

Mirror semantics: the destination ends up matching the source. New and
changed files are copied, symlinks are recreated (never followed) and entries
that no longer exist at the source (or are excluded) are deleted. Device
nodes, FIFOs and sockets are skipped.
"""

import os
import stat
import shutil
import logging
import tempfile
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import List

from .naming import encode_relative_path


logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Raised when an input directory cannot be synchronized at all."""
    pass


@dataclass
class SyncResult:
    source: str
    destination: str
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.deleted)

    def summary(self) -> str:
        return (
            f"{len(self.added)} added, {len(self.updated)} updated, "
            f"{len(self.deleted)} deleted, {len(self.errors)} errors"
        )


class DirectorySynchronizer:
    """
    Mirrors configured input directories below a destination area.

    ``/data/projects`` is mirrored to ``<dirs_area>/data/projects``.
    """

    def __init__(self, dirs_area: str, exclude_patterns: List[str] = None):
        """
        Initialize directory synchronizer.

        Args:
            dirs_area: Snapshot directories area
            exclude_patterns: List of glob patterns to exclude (e.g., *.pyc, __pycache__, .venv)
        """
        self.dirs_area = Path(dirs_area)
        self.exclude_patterns = exclude_patterns or []

    def destination_for(self, root: str) -> Path:
        return self.dirs_area / encode_relative_path(os.path.abspath(root))

    def _should_exclude(self, path: Path) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Args:
            path: Path to check

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def sync(self, root: str) -> SyncResult:
        """
        Mirror one input directory.

        Args:
            root: Input directory path

        Returns:
            SyncResult describing what changed

        Raises:
            SyncError: If root is missing, not a directory or not accessible
        """
        source = Path(root)

        if not source.is_dir():
            raise SyncError(f"Input directory does not exist: {root}")
        if not os.access(source, os.R_OK | os.X_OK):
            raise SyncError(f"No access (missing read/execute permission): {root}")

        destination = self.destination_for(root)
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SyncError(f"Failed to create destination {destination}: {e}")

        result = SyncResult(source=str(source), destination=str(destination))
        self._sync_directory(source, destination, Path('.'), result)

        logger.debug(f"Synced {root} -> {destination}: {result.summary()}")
        return result

    def _sync_directory(self, src_dir: Path, dst_dir: Path, relative: Path, result: SyncResult) -> bool:
        try:
            entries = {entry.name: entry for entry in os.scandir(src_dir)}
        except OSError as e:
            # Unreadable directory: keep whatever the destination already holds
            result.errors.append(f"{relative.as_posix()}: {e}")
            return False

        kept = set()
        for name in sorted(entries):
            entry = entries[name]
            src_path = Path(entry.path)
            dst_path = dst_dir / name
            rel_path = relative / name

            if self._should_exclude(src_path):
                continue

            try:
                mode = entry.stat(follow_symlinks=False).st_mode
            except OSError as e:
                result.errors.append(f"{rel_path.as_posix()}: {e}")
                kept.add(name)
                continue

            kept.add(name)
            try:
                if stat.S_ISLNK(mode):
                    self._sync_symlink(src_path, dst_path, rel_path, result)
                elif stat.S_ISDIR(mode):
                    if dst_path.is_symlink() or (dst_path.exists() and not dst_path.is_dir()):
                        self._remove(dst_path)
                    if not dst_path.exists():
                        dst_path.mkdir()
                        result.added.append(rel_path.as_posix() + '/')
                    if self._sync_directory(src_path, dst_path, rel_path, result):
                        shutil.copystat(src_path, dst_path)
                elif stat.S_ISREG(mode):
                    self._sync_file(src_path, dst_path, rel_path, result)
                else:
                    kept.discard(name)
                    result.skipped.append(rel_path.as_posix())
            except OSError as e:
                result.errors.append(f"{rel_path.as_posix()}: {e}")

        self._delete_extraneous(dst_dir, kept, relative, result)
        return True

    def _sync_file(self, src_path: Path, dst_path: Path, rel_path: Path, result: SyncResult):
        src_stat = src_path.stat()

        if dst_path.is_symlink() or dst_path.is_dir():
            self._remove(dst_path)

        if dst_path.exists():
            dst_stat = dst_path.stat()
            if dst_stat.st_size == src_stat.st_size and int(dst_stat.st_mtime) == int(src_stat.st_mtime):
                return
            self._replace_file(src_path, dst_path)
            result.updated.append(rel_path.as_posix())
        else:
            shutil.copy2(src_path, dst_path)
            result.added.append(rel_path.as_posix())

    def _replace_file(self, src_path: Path, dst_path: Path):
        """Copy beside dst_path and rename over it, so a failed copy leaves the old file in place."""
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dst_path.name}.", dir=dst_path.parent)
        os.close(fd)
        try:
            shutil.copy2(src_path, tmp_name)
            os.replace(tmp_name, dst_path)
        except OSError:
            os.unlink(tmp_name)
            raise

    def _sync_symlink(self, src_path: Path, dst_path: Path, rel_path: Path, result: SyncResult):
        target = os.readlink(src_path)

        if dst_path.is_symlink():
            if os.readlink(dst_path) == target:
                return
            dst_path.unlink()
            dst_path.symlink_to(target)
            result.updated.append(rel_path.as_posix())
            return

        if dst_path.exists():
            self._remove(dst_path)
        dst_path.symlink_to(target)
        result.added.append(rel_path.as_posix())

    def _delete_extraneous(self, dst_dir: Path, kept: set, relative: Path, result: SyncResult):
        for dst_path in sorted(dst_dir.iterdir()):
            if dst_path.name in kept:
                continue
            try:
                self._remove(dst_path)
                result.deleted.append((relative / dst_path.name).as_posix())
            except OSError as e:
                result.errors.append(f"{(relative / dst_path.name).as_posix()}: {e}")

    @staticmethod
    def _remove(path: Path):
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
