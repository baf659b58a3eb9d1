"""
Snapshot rotation and archive retention.

Superseded snapshot directories under the backup root are compressed into the
archive store and removed. Optionally, archives older than
``archive_retention_days`` are pruned from the store.
"""

import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from snapkeeper.config import BackupConfig
from .compression import create_archive, CompressionError
from .runlog import RunLog
from .snapshot import Run, SnapshotLayout, SNAPSHOT_PREFIX
from .storage import ArchiveStore, StorageError


@dataclass
class RotationResult:
    archived: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ArchiveRotator:
    """
    Compresses snapshots into the archive store.

    A snapshot directory is only removed once its archive was created and
    stored; a failed compression keeps the uncompressed snapshot in place.
    """

    def __init__(self, config: BackupConfig, storage: ArchiveStore, run_log: RunLog):
        self.backup_root = Path(config.backup_root)
        self.work_tmp = Path(config.work_tmp)
        self.compression_format = config.compression_format
        self.retention_days = config.archive_retention_days
        self.storage = storage
        self.run_log = run_log

    def find_snapshots(self, current_name: str) -> List[Path]:
        """Immediate snapshot directories of the backup root, except the current run's."""
        if not self.backup_root.is_dir():
            return []

        return sorted(
            child for child in self.backup_root.iterdir()
            if child.is_dir()
            and not child.is_symlink()
            and child.name.startswith(SNAPSHOT_PREFIX)
            and child.name != current_name
        )

    def rotate_old(self, current_name: str) -> RotationResult:
        """
        Archive and remove every snapshot directory other than current_name.

        Args:
            current_name: Run name of the snapshot to leave alone

        Returns:
            RotationResult with archived and failed snapshot names
        """
        result = RotationResult()

        for snapshot_dir in self.find_snapshots(current_name):
            self.run_log.info(f"Archiving {snapshot_dir}")
            try:
                self._archive(snapshot_dir, snapshot_dir.name)
            except (CompressionError, StorageError) as e:
                message = f"Archive failed: {snapshot_dir} ({e})"
                self.run_log.error(message)
                result.failed.append(snapshot_dir.name)
                result.errors.append(message)
                continue

            try:
                shutil.rmtree(snapshot_dir)
            except OSError as e:
                message = f"Failed to remove archived snapshot {snapshot_dir}: {e}"
                self.run_log.error(message)
                result.errors.append(message)

            result.archived.append(snapshot_dir.name)

        return result

    def archive_current(self, layout: SnapshotLayout, run: Run) -> str:
        """
        Archive the current snapshot without removing it.

        Returns:
            Path of the stored archive

        Raises:
            CompressionError: If the archive cannot be created
            StorageError: If the archive cannot be moved into the store
        """
        return self._archive(layout.root, run.name)

    def prune_archives(self, now: Optional[datetime] = None) -> RotationResult:
        """
        Delete archives older than the configured retention period.

        Does nothing when archive_retention_days is not set.
        """
        result = RotationResult()
        if self.retention_days is None:
            return result

        cutoff_date = (now or datetime.now()) - timedelta(days=self.retention_days)

        try:
            archives = self.storage.list_archives()
        except StorageError as e:
            message = f"Failed to list archives: {e}"
            self.run_log.error(message)
            result.errors.append(message)
            return result

        for archive in archives:
            if archive['modified'] >= cutoff_date:
                continue
            try:
                self.storage.delete(archive['name'])
                self.run_log.info(f"Deleted expired archive {archive['name']}")
                result.pruned.append(archive['name'])
            except StorageError as e:
                message = f"Failed to delete archive {archive['name']}: {e}"
                self.run_log.error(message)
                result.errors.append(message)

        return result

    def _archive(self, source_dir: Path, name: str) -> str:
        self.work_tmp.mkdir(parents=True, exist_ok=True)
        archive_path = create_archive(
            str(source_dir),
            os.path.join(self.work_tmp, name),
            self.compression_format
        )
        try:
            return self.storage.store(archive_path)
        except StorageError:
            if os.path.exists(archive_path):
                os.remove(archive_path)
            raise
