"""
Single-instance run lock.

The lock file holds the PID of the owning process. A lock whose owner is no
longer alive is stale and gets replaced; a lock with unreadable content is
only considered stale once it is older than the configured lease.
"""

import os
import time
import atexit
import logging
from typing import Optional


logger = logging.getLogger(__name__)


class LockHeldError(Exception):
    """Raised when another run already holds the lock."""
    pass


def pid_alive(pid: int) -> bool:
    """Check whether a process with the given PID exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


class RunLock:
    """File-based lock guarding a single orchestrator run."""

    def __init__(self, path: str, lease_hours: int = 24):
        """
        Initialize run lock.

        Args:
            path: Lock file path
            lease_hours: Age after which a lock with unreadable content is stale
        """
        self.path = path
        self.lease_seconds = lease_hours * 3600
        self.pid = os.getpid()
        self.acquired = False
        self._atexit_registered = False

    def acquire(self):
        """
        Create the lock file.

        Raises:
            LockHeldError: If a live run already holds the lock
        """
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)

        if os.path.exists(self.path):
            if not self._is_stale():
                raise LockHeldError(f"Backup already running (lock: {self.path})")
            logger.warning(f"Removing stale lock file: {self.path}")
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass

        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            # Lost the race against another run
            raise LockHeldError(f"Backup already running (lock: {self.path})")

        with os.fdopen(fd, 'w') as f:
            f.write(f"{self.pid}\n")

        self.acquired = True
        if not self._atexit_registered:
            atexit.register(self.release)
            self._atexit_registered = True

    def release(self):
        """Remove the lock file if this process still owns it."""
        if not self.acquired:
            return

        if self.read_owner() == self.pid:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
        self.acquired = False
        if self._atexit_registered:
            atexit.unregister(self.release)
            self._atexit_registered = False

    def read_owner(self) -> Optional[int]:
        """Return the PID stored in the lock file, or None if unreadable."""
        try:
            with open(self.path, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def _is_stale(self) -> bool:
        owner = self.read_owner()
        if owner is not None:
            return not pid_alive(owner)

        try:
            age = time.time() - os.path.getmtime(self.path)
        except FileNotFoundError:
            return True
        return age >= self.lease_seconds

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
