"""
Backup module for rotabackup.

This module handles the backup lifecycle:
- Lock guard (single run at a time)
- Preflight (remote handshake, capacity)
- Period resolution and staging layout
- Source synchronization (git mirrors, rsync trees)
- Rotation of completed periods and transfer to the retention host
- Execution orchestration
"""

from .executor import BackupExecutor, RunSummary, execute_backup
from .capability import Capability, CapabilityResult, SystemCapability
from .lock import LockGuard, AlreadyRunning
from .periods import Granularity, PeriodTag, StagingArea, resolve_period
from .preflight import PreflightValidator, RemoteUnreachable, InsufficientSpace
from .sources import SourceSynchronizer, SourceSyncFailure
from .compression import CompressionFailure
from .rotation import RotationArchiver
from .transfer import TransferManager, TransferOutcome, TransferFailure

__all__ = [
    'BackupExecutor',
    'RunSummary',
    'execute_backup',
    'Capability',
    'CapabilityResult',
    'SystemCapability',
    'LockGuard',
    'AlreadyRunning',
    'Granularity',
    'PeriodTag',
    'StagingArea',
    'resolve_period',
    'PreflightValidator',
    'RemoteUnreachable',
    'InsufficientSpace',
    'SourceSynchronizer',
    'SourceSyncFailure',
    'CompressionFailure',
    'RotationArchiver',
    'TransferManager',
    'TransferOutcome',
    'TransferFailure',
]
