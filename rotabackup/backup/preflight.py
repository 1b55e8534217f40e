"""
Preflight checks run before any mutation of the staging tree.

1. Remote reachability: best-effort ping, then an SSH handshake with a
   short timeout.
2. Capacity: total on-disk size of every source must fit into the free
   space at the local backup root. The estimate ignores what is already
   synchronized, so it over-estimates on purpose.
"""

import os
import shutil
import subprocess
import logging
from typing import Iterable, NamedTuple, Optional

from rotabackup.errors import FatalBackupError
from .remote import RemoteHost, RemoteError


logger = logging.getLogger(__name__)


class RemoteUnreachable(FatalBackupError):
    """Raised when the SSH handshake with the retention host fails."""
    pass


class InsufficientSpace(FatalBackupError):
    """Raised when the sources would not fit into the local backup root."""
    pass


class PreflightResult(NamedTuple):
    remote_available: bool
    required_space: int
    available_space: int


def ping_host(hostname: str, timeout: int = 2) -> bool:
    """Send a single ICMP echo request. Returns False on any failure."""
    try:
        result = subprocess.run(
            ['ping', '-c', '1', '-W', str(timeout), hostname],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return False
    return result.returncode == 0


def disk_usage(path: str) -> int:
    """
    On-disk size of a file or directory tree in bytes (like ``du -s``).

    Symlinks are counted but not followed. Entries that vanish or cannot be
    read while walking are skipped.
    """
    def allocated(st):
        blocks = getattr(st, 'st_blocks', None)
        return blocks * 512 if blocks is not None else st.st_size

    try:
        st = os.lstat(path)
    except OSError:
        return 0

    total = allocated(st)
    if not os.path.isdir(path) or os.path.islink(path):
        return total

    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            try:
                total += allocated(os.lstat(os.path.join(dirpath, name)))
            except OSError:
                continue
    return total


def estimate_required_space(sources: Iterable[str]) -> int:
    """Sum of the on-disk size of every existing source."""
    required = 0
    for source in sources:
        if not os.path.exists(source):
            logger.warning(f"Source {source} does not exist, not counted in space estimate")
            continue
        required += disk_usage(source)
    return required


def available_space(path: str) -> int:
    """Free bytes available on the filesystem holding `path`."""
    return shutil.disk_usage(path).free


def format_size(size: int) -> str:
    """Human readable size, e.g. 1.50 GB."""
    value = float(size)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if value < 1024 or unit == 'TB':
            return f"{value:.2f} {unit}" if unit != 'B' else f"{int(value)} B"
        value /= 1024


class PreflightValidator:
    """Runs both preflight checks for one backup run."""

    def __init__(self, settings, remote: Optional[RemoteHost] = None):
        """
        Args:
            settings: Configuration mapping (LOCAL_BACKUP_DIR, SOURCE_DIRS,
                REMOTE_HOST, REMOTE_REQUIRED, ...)
            remote: RemoteHost to check (built from settings if omitted)
        """
        self.settings = settings
        self.remote = remote or RemoteHost.from_config(settings)

    def check_remote(self) -> bool:
        """
        Check that the retention host answers.

        Returns:
            True if the SSH handshake succeeded

        Raises:
            RemoteUnreachable: If the handshake fails and REMOTE_REQUIRED is set
        """
        hostname = self.remote.hostname
        logger.info(f"Checking remote host {self.settings['REMOTE_HOST']}")

        if not ping_host(hostname):
            logger.warning(f"Remote host {hostname} does not answer ping, trying SSH")

        try:
            self.remote.check_handshake()
        except RemoteError as e:
            if self.settings.get('REMOTE_REQUIRED', True):
                logger.error(f"Cannot connect to remote host {self.settings['REMOTE_HOST']} over SSH: {e}. Aborting")
                raise RemoteUnreachable(f"Remote host {self.settings['REMOTE_HOST']} unreachable: {e}")
            logger.warning(f"Remote host {self.settings['REMOTE_HOST']} unreachable ({e}), continuing local-only")
            return False

        logger.info("Remote host reachable")
        return True

    def check_capacity(self):
        """
        Compare estimated required space with free space.

        Returns:
            (required_space, available_space) in bytes

        Raises:
            InsufficientSpace: If required exceeds available
        """
        logger.info("Estimating required disk space")
        required = estimate_required_space(self.settings['SOURCE_DIRS'])
        available = available_space(self.settings['LOCAL_BACKUP_DIR'])

        logger.info(f"Required space: {format_size(required)}, available space: {format_size(available)}")

        if required > available:
            raise InsufficientSpace(
                f"Not enough disk space in {self.settings['LOCAL_BACKUP_DIR']}: "
                f"required {required} bytes, available {available} bytes"
            )
        return required, available

    def run(self) -> PreflightResult:
        """Run remote and capacity checks, remote first."""
        remote_available = self.check_remote()
        required, available = self.check_capacity()
        return PreflightResult(remote_available, required, available)
