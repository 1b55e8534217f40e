"""
Process-wide mutual exclusion for backup runs.

The lock is an advisory marker file holding the owner's PID. It only
protects against other invocations of rotabackup, not against arbitrary
writers to the same paths.
"""

import os
import signal
import logging
import threading
from typing import Optional

from rotabackup.errors import ConfigurationMissing, FatalBackupError


logger = logging.getLogger(__name__)

# Signals translated into SystemExit while the lock is held
TRAPPED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class AlreadyRunning(FatalBackupError):
    """Raised when another run holds the lock marker."""
    pass


def _terminate(signum, frame):
    raise SystemExit(128 + signum)


def install_exit_handlers() -> dict:
    """
    Translate TRAPPED_SIGNALS into SystemExit so `finally` blocks run.

    signal.signal() only works in the main thread; elsewhere nothing is
    installed.

    Returns:
        The previous handlers, for restore_handlers()
    """
    if threading.current_thread() is not threading.main_thread():
        return {}
    return {signum: signal.signal(signum, _terminate) for signum in TRAPPED_SIGNALS}


def restore_handlers(previous: dict):
    for signum, handler in previous.items():
        signal.signal(signum, handler)


class LockGuard:
    """
    Scoped lock marker.

    Use as a context manager; the marker is removed on every exit path that
    the interpreter can intercept (normal return, exceptions, SIGTERM, SIGHUP).
    SIGKILL leaves a stale marker behind, see clear_stale_lock().
    """

    def __init__(self, path: str, trap_signals: bool = True):
        self.path = path
        self.trap_signals = trap_signals
        self.acquired = False
        self._previous_handlers = {}

    def acquire(self):
        """
        Create the lock marker.

        Raises:
            AlreadyRunning: If the marker already exists
            ConfigurationMissing: If the marker's directory does not exist
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            owner = read_lock_owner(self.path)
            owner_info = f" (pid {owner})" if owner else ""
            raise AlreadyRunning(f"Backup already running: lock file {self.path} exists{owner_info}")
        except FileNotFoundError:
            raise ConfigurationMissing(
                f"Directory of LOCK_FILE does not exist: {os.path.dirname(os.path.abspath(self.path))}"
            )

        with os.fdopen(fd, 'w') as f:
            f.write(f"{os.getpid()}\n")

        self.acquired = True
        self._install_signal_handlers()
        logger.debug(f"Acquired lock {self.path}")

    def release(self):
        """Remove the lock marker. A missing marker is not an error."""
        self._restore_signal_handlers()
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        self.acquired = False
        logger.debug(f"Released lock {self.path}")

    def _install_signal_handlers(self):
        if self.trap_signals:
            self._previous_handlers = install_exit_handlers()

    def _restore_signal_handlers(self):
        restore_handlers(self._previous_handlers)
        self._previous_handlers = {}

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False


def read_lock_owner(path: str) -> Optional[int]:
    """Return the PID recorded in a lock marker, or None if unreadable."""
    try:
        with open(path, 'r') as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return None


def is_process_alive(pid: int) -> bool:
    """Check whether a process with the given PID exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


def clear_stale_lock(path: str, force: bool = False) -> bool:
    """
    Remove a lock marker left behind by a killed run.

    Args:
        path: Lock marker path
        force: Remove the marker even if its owner still appears to be alive

    Returns:
        True if a marker was removed, False if there was none

    Raises:
        AlreadyRunning: If the recorded owner is alive and force is not set
    """
    if not os.path.exists(path):
        return False

    owner = read_lock_owner(path)
    if owner and owner != os.getpid() and is_process_alive(owner) and not force:
        raise AlreadyRunning(f"Lock {path} is held by running process {owner}")

    os.remove(path)
    logger.info(f"Removed lock file {path} (owner pid: {owner or 'unknown'})")
    return True
