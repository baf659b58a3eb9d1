"""
Unit tests for the run lock (snapkeeper/backup/lock.py).
"""

import os
import time
from unittest.mock import patch

import pytest

from snapkeeper.backup.lock import RunLock, LockHeldError, pid_alive


class TestRunLock:
    """Test RunLock acquire/release behaviour."""

    def test_acquire_creates_lock_with_pid(self, tmp_path):
        lock_path = tmp_path / 'run.lock'
        lock = RunLock(str(lock_path))

        lock.acquire()

        assert lock_path.exists()
        assert lock_path.read_text().strip() == str(os.getpid())
        lock.release()

    def test_release_removes_lock(self, tmp_path):
        lock_path = tmp_path / 'run.lock'
        lock = RunLock(str(lock_path))

        lock.acquire()
        lock.release()

        assert not lock_path.exists()

    def test_release_twice_is_safe(self, tmp_path):
        lock = RunLock(str(tmp_path / 'run.lock'))

        lock.acquire()
        lock.release()
        lock.release()

    def test_second_acquire_blocked_by_live_owner(self, tmp_path):
        """Test a lock held by a live process blocks another run."""
        lock_path = tmp_path / 'run.lock'
        first = RunLock(str(lock_path))
        second = RunLock(str(lock_path))

        first.acquire()
        try:
            with pytest.raises(LockHeldError, match="already running"):
                second.acquire()
            # Blocked run must not remove the owner's lock
            second.release()
            assert lock_path.exists()
        finally:
            first.release()

    def test_stale_lock_from_dead_process_is_replaced(self, tmp_path):
        lock_path = tmp_path / 'run.lock'
        lock_path.write_text('999999\n')

        lock = RunLock(str(lock_path))
        with patch('snapkeeper.backup.lock.pid_alive', return_value=False):
            lock.acquire()

        assert lock_path.read_text().strip() == str(os.getpid())
        lock.release()

    def test_unreadable_lock_within_lease_blocks(self, tmp_path):
        lock_path = tmp_path / 'run.lock'
        lock_path.write_text('garbage')

        lock = RunLock(str(lock_path), lease_hours=24)

        with pytest.raises(LockHeldError):
            lock.acquire()

    def test_unreadable_lock_past_lease_is_replaced(self, tmp_path):
        lock_path = tmp_path / 'run.lock'
        lock_path.write_text('')
        old = time.time() - 25 * 3600
        os.utime(lock_path, (old, old))

        lock = RunLock(str(lock_path), lease_hours=24)
        lock.acquire()

        assert lock_path.read_text().strip() == str(os.getpid())
        lock.release()

    def test_release_leaves_foreign_lock(self, tmp_path):
        """Test release does not delete a lock another process took over."""
        lock_path = tmp_path / 'run.lock'
        lock = RunLock(str(lock_path))
        lock.acquire()

        lock_path.write_text('12345\n')
        lock.release()

        assert lock_path.exists()

    def test_context_manager(self, tmp_path):
        lock_path = tmp_path / 'run.lock'

        with RunLock(str(lock_path)):
            assert lock_path.exists()

        assert not lock_path.exists()

    def test_creates_parent_directory(self, tmp_path):
        lock_path = tmp_path / 'var' / 'run' / 'snapkeeper.lock'

        with RunLock(str(lock_path)):
            assert lock_path.exists()

    @patch('snapkeeper.backup.lock.atexit')
    def test_atexit_handler_removed_on_release(self, mock_atexit, tmp_path):
        """Test repeated runs in one process do not pile up exit handlers."""
        for _ in range(3):
            lock = RunLock(str(tmp_path / 'run.lock'))
            lock.acquire()
            lock.release()

            mock_atexit.register.assert_called_with(lock.release)
            mock_atexit.unregister.assert_called_with(lock.release)

        assert mock_atexit.register.call_count == 3
        assert mock_atexit.unregister.call_count == 3


class TestPidAlive:
    """Test process liveness check."""

    def test_current_process_alive(self):
        assert pid_alive(os.getpid()) is True

    def test_invalid_pid(self):
        assert pid_alive(0) is False
        assert pid_alive(-1) is False

    def test_missing_process(self):
        with patch('snapkeeper.backup.lock.os.kill', side_effect=ProcessLookupError()):
            assert pid_alive(4242) is False

    def test_process_of_other_user(self):
        with patch('snapkeeper.backup.lock.os.kill', side_effect=PermissionError()):
            assert pid_alive(1) is True
