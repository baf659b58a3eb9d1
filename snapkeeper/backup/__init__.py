"""
Backup module for snapkeeper.

This module handles the core backup functionality including:
- Run locking and pre-flight checks
- Directory mirroring and git repository mirroring
- Compression and snapshot rotation
- Interval-gated push to the remote host
- Execution orchestration
"""

from .executor import BackupExecutor, RunReport, execute_backup
from .lock import RunLock, LockHeldError
from .diskspace import check_disk_space, DiskSpaceError
from .snapshot import Run, prepare_snapshot
from .remote import RemoteHost, RemoteError
from .dirsync import DirectorySynchronizer, SyncError
from .repository import RepositoryMirror, RepositoryError, discover_repositories
from .compression import create_archive, CompressionError
from .storage import ArchiveStore, StorageError
from .retention import ArchiveRotator
from .push import RemotePusher, is_push_due

__all__ = [
    'BackupExecutor',
    'RunReport',
    'execute_backup',
    'RunLock',
    'LockHeldError',
    'check_disk_space',
    'DiskSpaceError',
    'Run',
    'prepare_snapshot',
    'RemoteHost',
    'RemoteError',
    'DirectorySynchronizer',
    'SyncError',
    'RepositoryMirror',
    'RepositoryError',
    'discover_repositories',
    'create_archive',
    'CompressionError',
    'ArchiveStore',
    'StorageError',
    'ArchiveRotator',
    'RemotePusher',
    'is_push_due'
]
