"""
Run identity and snapshot staging.

Layout produced for a run named ``backup_<type>_<YYYY_MM_DD>``::

    <backup_root>/<run name>/snapshot/dirs/...
    <backup_root>/<run name>/snapshot/repos/<name>.git
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from snapkeeper.config import BackupConfig

BACKUP_TYPES = ('full', 'incr', 'snapshot')
DEFAULT_BACKUP_TYPE = 'snapshot'
SNAPSHOT_PREFIX = 'backup_'


@dataclass
class Run:
    """One execution of the orchestrator."""

    backup_type: str
    date_tag: str
    force: bool
    started_at: datetime

    @property
    def name(self) -> str:
        return f"{SNAPSHOT_PREFIX}{self.backup_type}_{self.date_tag}"

    @classmethod
    def create(cls, backup_type: str = DEFAULT_BACKUP_TYPE, force: bool = False,
               now: Optional[datetime] = None) -> 'Run':
        """
        Create a run for the given type, tagged with the current date.

        Raises:
            ValueError: If backup_type is not one of BACKUP_TYPES
        """
        if backup_type not in BACKUP_TYPES:
            raise ValueError(
                f"Invalid backup type: {backup_type}. "
                f"Valid options: {list(BACKUP_TYPES)}"
            )

        now = now or datetime.now()
        return cls(
            backup_type=backup_type,
            date_tag=now.strftime('%Y_%m_%d'),
            force=force,
            started_at=now
        )


@dataclass(frozen=True)
class SnapshotLayout:
    run_dir: Path
    root: Path
    dirs: Path
    repos: Path


def snapshot_layout(backup_root: str, run_name: str) -> SnapshotLayout:
    """Derive the snapshot paths for a run without touching the filesystem."""
    run_dir = Path(backup_root) / run_name
    root = run_dir / 'snapshot'
    return SnapshotLayout(
        run_dir=run_dir,
        root=root,
        dirs=root / 'dirs',
        repos=root / 'repos'
    )


def prepare_snapshot(config: BackupConfig, run: Run) -> SnapshotLayout:
    """
    Create the snapshot skeleton, archive store and work area.

    Safe to call when the directories already exist.

    Returns:
        SnapshotLayout for the run
    """
    layout = snapshot_layout(config.backup_root, run.name)

    for directory in (layout.dirs, layout.repos, Path(config.archive_store), Path(config.work_tmp)):
        directory.mkdir(parents=True, exist_ok=True)

    return layout
