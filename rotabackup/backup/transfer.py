"""
Shipping of archive artifacts to the retention host.

Per artifact there are two terminal outcomes:
- TRANSFERRED: artifact copied; artifact and staging area deleted. If the
  staging area cannot be removed the result carries an error and the
  period is sent again on the next run.
- RETAINED: artifact deleted, staging area kept so the same period is
  rotated again on the next run.
"""

import shutil
import posixpath
import logging
from enum import Enum
from typing import NamedTuple, Optional

from rotabackup.errors import RecoverableBackupError
from .capability import Capability
from .compression import remove_archive
from .periods import StagingArea


logger = logging.getLogger(__name__)

# Artifacts land under <REMOTE_DEST_DIR>/archive/
REMOTE_ARCHIVE_DIR = 'archive'


class TransferFailure(RecoverableBackupError):
    """Raised when an artifact cannot be copied to the retention host."""
    pass


class TransferOutcome(Enum):
    TRANSFERRED = 'transferred'
    RETAINED = 'retained'


class TransferResult(NamedTuple):
    outcome: TransferOutcome
    remote_path: Optional[str] = None
    error: Optional[str] = None


class TransferManager:
    """
    Ships artifacts and prunes or retains their staging areas.
    """

    def __init__(self, capability: Capability, remote_dest_dir: str, remote_available: bool, remote_host: str = ''):
        """
        Args:
            capability: Tool implementation used for the copy
            remote_dest_dir: REMOTE_DEST_DIR on the retention host
            remote_available: Outcome of the preflight handshake
            remote_host: Host label used in log messages
        """
        self.capability = capability
        self.remote_dir = posixpath.join(remote_dest_dir, REMOTE_ARCHIVE_DIR)
        self.remote_available = remote_available
        self.remote_host = remote_host

    def transfer(self, artifact_path: str) -> str:
        """
        Copy an artifact to the remote archive directory.

        Returns:
            Remote path of the copy

        Raises:
            TransferFailure: If the copy fails
        """
        result = self.capability.transfer_file(artifact_path, self.remote_dir)
        if not result.success:
            raise TransferFailure(f"Failed to send {artifact_path} to {self.remote_host}: {result.output}")
        return result.output or posixpath.join(self.remote_dir, posixpath.basename(artifact_path))

    def handle(self, artifact_path: str, staging: StagingArea) -> TransferResult:
        """
        Ship one artifact and settle its staging area.

        The artifact never survives this call. The staging area is deleted
        only after the copy is confirmed.
        """
        if not self.remote_available:
            logger.warning(
                f"Remote host unavailable, keeping {staging.path} for the next run"
            )
            remove_archive(artifact_path)
            return TransferResult(TransferOutcome.RETAINED)

        logger.info(f"Sending {posixpath.basename(artifact_path)} to {self.remote_host}")
        try:
            remote_path = self.transfer(artifact_path)
        except TransferFailure as e:
            logger.error(f"{e}. Keeping local copy {staging.path}")
            remove_archive(artifact_path)
            return TransferResult(TransferOutcome.RETAINED, error=str(e))

        logger.info(f"Sent to {remote_path}, removing {staging.path} and temporary archive")
        remove_archive(artifact_path)
        try:
            shutil.rmtree(staging.path)
        except OSError as e:
            message = f"Sent {staging.name} but failed to remove {staging.path}: {e}"
            logger.error(message)
            return TransferResult(TransferOutcome.TRANSFERRED, remote_path=remote_path, error=message)
        return TransferResult(TransferOutcome.TRANSFERRED, remote_path=remote_path)
