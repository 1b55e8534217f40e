"""
Rotation of completed periods.

Every staging area whose tag is not the current period is compressed into
TEMP_DIR and handed to the TransferManager.
"""

import os
import logging
from typing import List, NamedTuple, Optional

from rotabackup.errors import RecoverableBackupError
from .capability import Capability
from .compression import CompressionFailure, archive_extension, get_archive_size, remove_archive
from .periods import PeriodTag, StagingArea, list_staging_areas
from .transfer import TransferManager, TransferOutcome, TransferResult


logger = logging.getLogger(__name__)


class RotationEntry(NamedTuple):
    staging: StagingArea
    archive_name: Optional[str]
    size_bytes: Optional[int]
    result: Optional[TransferResult]
    error: Optional[str] = None


class RotationReport(NamedTuple):
    entries: List[RotationEntry]

    @property
    def transferred(self) -> List[RotationEntry]:
        return [e for e in self.entries if e.result and e.result.outcome is TransferOutcome.TRANSFERRED]

    @property
    def retained(self) -> List[RotationEntry]:
        return [e for e in self.entries if e.result and e.result.outcome is TransferOutcome.RETAINED]

    @property
    def error_count(self) -> int:
        return sum(1 for e in self.entries if e.error)


class RotationArchiver:
    """
    Compresses past staging areas and passes them on for transfer.
    """

    def __init__(self, capability: Capability, transfer_manager: TransferManager, backup_root: str,
                 temp_dir: str, current_tag: PeriodTag, archive_format: str = 'tar.gz'):
        self.capability = capability
        self.transfer_manager = transfer_manager
        self.backup_root = backup_root
        self.temp_dir = temp_dir
        self.current_tag = current_tag
        self.extension = archive_extension(archive_format)

    def find_candidates(self) -> List[StagingArea]:
        """Staging areas of completed periods, oldest name first."""
        return [area for area in list_staging_areas(self.backup_root) if area.tag != self.current_tag]

    def artifact_path(self, staging: StagingArea) -> str:
        return os.path.join(self.temp_dir, f"{staging.name}.{self.extension}")

    def archive(self, staging: StagingArea) -> str:
        """
        Compress one staging area into TEMP_DIR.

        A leftover artifact with the same name is replaced.

        Raises:
            CompressionFailure: If compression fails
        """
        artifact = self.artifact_path(staging)
        if remove_archive(artifact):
            logger.info(f"Replaced stale archive {artifact}")

        logger.info(f"Compressing {staging.name} to {artifact}")
        result = self.capability.compress(staging.path, artifact)
        if not result.success:
            remove_archive(artifact)
            raise CompressionFailure(f"Failed to compress {staging.name}: {result.output}")

        logger.info("Compression finished")
        return artifact

    def rotate_one(self, staging: StagingArea) -> RotationEntry:
        logger.info(f"Found completed period {staging.name}, archiving")
        try:
            artifact = self.archive(staging)
            size = get_archive_size(artifact)
        except CompressionFailure as e:
            logger.error(str(e))
            return RotationEntry(staging, None, None, None, error=str(e))

        try:
            result = self.transfer_manager.handle(artifact, staging)
        except RecoverableBackupError as e:
            logger.error(f"Failed to ship {staging.name}: {e}")
            remove_archive(artifact)
            return RotationEntry(staging, os.path.basename(artifact), size, None, error=str(e))
        return RotationEntry(staging, os.path.basename(artifact), size, result, error=result.error)

    def rotate(self) -> RotationReport:
        """Archive and ship every completed period."""
        logger.info("Checking for completed periods to archive")
        os.makedirs(self.temp_dir, exist_ok=True)

        entries = [self.rotate_one(staging) for staging in self.find_candidates()]
        return RotationReport(entries)
