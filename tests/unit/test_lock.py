"""
Unit tests for the lock guard (rotabackup/backup/lock.py).
"""

import os
import signal
from unittest.mock import patch

import pytest

from rotabackup.errors import ConfigurationMissing
from rotabackup.backup import lock as lock_module
from rotabackup.backup.lock import (
    LockGuard,
    AlreadyRunning,
    clear_stale_lock,
    read_lock_owner,
)


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / 'rotabackup.lock')


class TestLockGuard:
    """Test acquire/release semantics."""

    def test_acquire_creates_marker_with_pid(self, lock_path):
        guard = LockGuard(lock_path)
        guard.acquire()
        try:
            assert os.path.exists(lock_path)
            assert read_lock_owner(lock_path) == os.getpid()
            assert guard.acquired is True
        finally:
            guard.release()

        assert not os.path.exists(lock_path)
        assert guard.acquired is False

    def test_second_acquire_raises_already_running(self, lock_path):
        with LockGuard(lock_path):
            with pytest.raises(AlreadyRunning, match="already running"):
                LockGuard(lock_path).acquire()

            # The holder's marker is untouched
            assert read_lock_owner(lock_path) == os.getpid()

    def test_existing_marker_is_not_removed_by_failed_acquire(self, lock_path):
        with open(lock_path, 'w') as f:
            f.write('4242\n')

        with pytest.raises(AlreadyRunning, match="4242"):
            with LockGuard(lock_path):
                pass

        with open(lock_path) as f:
            assert f.read() == '4242\n'

    def test_context_manager_releases_on_exception(self, lock_path):
        with pytest.raises(RuntimeError):
            with LockGuard(lock_path):
                raise RuntimeError("sync crashed")

        assert not os.path.exists(lock_path)

    def test_missing_directory_is_a_configuration_error(self, tmp_path):
        path = str(tmp_path / 'no_such_dir' / 'rotabackup.lock')

        with pytest.raises(ConfigurationMissing, match="no_such_dir"):
            LockGuard(path).acquire()

        assert not os.path.exists(path)

    def test_release_without_marker_is_harmless(self, lock_path):
        guard = LockGuard(lock_path)
        guard.release()
        assert not os.path.exists(lock_path)


class TestSignalHandling:
    """Test SIGTERM/SIGHUP translation while the lock is held."""

    def test_handlers_installed_and_restored(self, lock_path):
        previous = signal.getsignal(signal.SIGTERM)

        with LockGuard(lock_path):
            assert signal.getsignal(signal.SIGTERM) is lock_module._terminate
            assert signal.getsignal(signal.SIGHUP) is lock_module._terminate

        assert signal.getsignal(signal.SIGTERM) == previous

    def test_trap_signals_disabled(self, lock_path):
        previous = signal.getsignal(signal.SIGTERM)

        with LockGuard(lock_path, trap_signals=False):
            assert signal.getsignal(signal.SIGTERM) == previous

    def test_terminate_raises_system_exit(self):
        with pytest.raises(SystemExit) as exc_info:
            lock_module._terminate(signal.SIGTERM, None)

        assert exc_info.value.code == 128 + signal.SIGTERM

    def test_system_exit_inside_guard_releases_marker(self, lock_path):
        with pytest.raises(SystemExit):
            with LockGuard(lock_path):
                lock_module._terminate(signal.SIGTERM, None)

        assert not os.path.exists(lock_path)


class TestClearStaleLock:
    """Test the manual-clear affordance."""

    def test_no_marker(self, lock_path):
        assert clear_stale_lock(lock_path) is False

    def test_removes_marker_of_dead_process(self, lock_path):
        with open(lock_path, 'w') as f:
            f.write('999999\n')

        with patch('rotabackup.backup.lock.is_process_alive', return_value=False):
            assert clear_stale_lock(lock_path) is True

        assert not os.path.exists(lock_path)

    def test_refuses_live_owner_without_force(self, lock_path):
        with open(lock_path, 'w') as f:
            f.write('4242\n')

        with patch('rotabackup.backup.lock.is_process_alive', return_value=True):
            with pytest.raises(AlreadyRunning, match="4242"):
                clear_stale_lock(lock_path)

        assert os.path.exists(lock_path)

    def test_force_removes_live_owner(self, lock_path):
        with open(lock_path, 'w') as f:
            f.write('4242\n')

        with patch('rotabackup.backup.lock.is_process_alive', return_value=True):
            assert clear_stale_lock(lock_path, force=True) is True

        assert not os.path.exists(lock_path)

    def test_unreadable_marker_is_removed(self, lock_path):
        with open(lock_path, 'w') as f:
            f.write('not a pid')

        assert read_lock_owner(lock_path) is None
        assert clear_stale_lock(lock_path) is True
