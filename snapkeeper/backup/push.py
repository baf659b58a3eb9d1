"""
Interval-gated push of the archive store to the remote host.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from snapkeeper.config import BackupConfig
from .remote import RemoteHost
from .storage import ArchiveStore, PUSH_MARKER

SECONDS_PER_DAY = 86400


@dataclass
class PushResult:
    pushed: bool = False
    skipped: bool = False
    forced: bool = False
    uploaded: List[str] = field(default_factory=list)


def is_push_due(last_push: Optional[float], interval_days: int, now: Optional[datetime] = None) -> bool:
    """
    Decide whether the archive store should be pushed.

    Due when there never was a push, or when the whole days elapsed since
    the last push reach interval_days. Ages are counted in epoch seconds so
    DST changes between the two points do not shift the day count.

    Args:
        last_push: Marker mtime (epoch seconds), or None if never pushed
        interval_days: Minimum whole days between pushes
        now: Current time (defaults to the current time)
    """
    if last_push is None:
        return True

    now_ts = now.timestamp() if now is not None else time.time()
    age_days = int((now_ts - last_push) // SECONDS_PER_DAY)
    return age_days >= interval_days


class RemotePusher:
    """Mirrors the archive store to the remote target directory when due."""

    def __init__(self, config: BackupConfig, storage: ArchiveStore, remote: RemoteHost):
        self.interval_days = config.send_interval_days
        self.storage = storage
        self.remote = remote

    def is_due(self, now: Optional[datetime] = None) -> bool:
        return is_push_due(self.storage.last_push_mtime(), self.interval_days, now)

    def push(self, force: bool = False, now: Optional[datetime] = None) -> PushResult:
        """
        Push the archive store unless it is not due and not forced.

        Returns:
            PushResult; skipped=True when nothing was attempted

        Raises:
            RemoteError: If the transfer fails (the marker is left unchanged)
            StorageError: If the marker cannot be updated
        """
        if not force and not self.is_due(now):
            return PushResult(skipped=True)

        uploaded = self.remote.upload_directory(str(self.storage.base_path), skip={PUSH_MARKER})
        self.storage.mark_pushed(now)

        return PushResult(pushed=True, forced=force, uploaded=uploaded)
