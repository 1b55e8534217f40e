"""
Synchronization of sources into the current staging area.

Two strategies:
- Git repositories (``<source>/.git`` is a directory): full mirror under
  ``repositories/<name>.git``, updated in place on later runs.
- Plain trees: mirror sync with deletion propagation into
  ``archived_resources/<name>``.
"""

import os
import logging
from enum import Enum
from typing import Iterable, List, NamedTuple

from rotabackup.errors import RecoverableBackupError
from .capability import Capability
from .periods import StagingArea


logger = logging.getLogger(__name__)


class SourceSyncFailure(RecoverableBackupError):
    """Raised when one source cannot be synchronized."""
    pass


class SourceKind(Enum):
    REPOSITORY = 'repository'
    TREE = 'tree'


class SyncReport(NamedTuple):
    synced: List[str]
    skipped: List[str]
    failed: List[str]

    @property
    def error_count(self) -> int:
        return len(self.failed)


def source_name(path: str) -> str:
    """Basename of a source path, ignoring trailing slashes."""
    return os.path.basename(os.path.normpath(path))


def is_repository(path: str) -> bool:
    """Check for git repository metadata at the source root."""
    return os.path.isdir(os.path.join(path, '.git'))


def classify_source(path: str) -> SourceKind:
    return SourceKind.REPOSITORY if is_repository(path) else SourceKind.TREE


class SourceSynchronizer:
    """
    Mirrors configured sources into one staging area.
    """

    def __init__(self, capability: Capability, staging: StagingArea, ignore_special_files: bool = False):
        """
        Args:
            capability: Tool implementation used for mirroring
            staging: Staging area of the current period
            ignore_special_files: Never copy device nodes, sockets or pipes
        """
        self.capability = capability
        self.staging = staging
        self.ignore_special_files = ignore_special_files

    def repository_destination(self, source: str) -> str:
        return os.path.join(self.staging.repositories_dir, f"{source_name(source)}.git")

    def tree_destination(self, source: str) -> str:
        return os.path.join(self.staging.resources_dir, source_name(source))

    def sync_source(self, source: str) -> SourceKind:
        """
        Synchronize one existing source.

        Returns:
            The strategy that was used

        Raises:
            SourceSyncFailure: If the underlying tool fails
        """
        kind = classify_source(source)
        name = source_name(source)

        if kind is SourceKind.REPOSITORY:
            destination = self.repository_destination(source)
            if os.path.isdir(destination):
                logger.info(f"Updating repository mirror {name}")
            else:
                logger.info(f"Cloning repository mirror {name}")
            result = self.capability.mirror_repository(source, destination)
        else:
            logger.info(f"Synchronizing directory {source}")
            result = self.capability.sync_tree(source, self.staging.resources_dir, self.ignore_special_files)

        if result.output:
            logger.debug(result.output)
        if not result.success:
            raise SourceSyncFailure(f"Failed to synchronize {source}: {result.output}")

        return kind

    def sync_all(self, sources: Iterable[str]) -> SyncReport:
        """
        Synchronize every source in order.

        Missing sources are skipped with a warning; a failing source is
        logged and the loop continues.
        """
        report = SyncReport(synced=[], skipped=[], failed=[])
        self.staging.ensure()

        for source in sources:
            if not os.path.exists(source):
                logger.warning(f"Source {source} does not exist, skipping")
                report.skipped.append(source)
                continue

            try:
                self.sync_source(source)
                report.synced.append(source)
            except SourceSyncFailure as e:
                logger.error(str(e))
                report.failed.append(source)

        return report
