"""
Backup executor - orchestrates one backup run.

Workflow:
1. Acquire the lock marker
2. Create RunRecord (status: running)
3. Preflight: remote handshake, capacity estimate
4. Resolve the current period
5. Synchronize every source into the current staging area
6. Rotate completed periods (compress, transfer, prune or retain)
7. Update RunRecord (status: success/partial/failed) and release the lock
"""

import os
import logging
from datetime import datetime
from typing import List, NamedTuple, Optional

from flask import current_app

from rotabackup import db, LOG_FORMAT, LOG_DATE_FORMAT
from rotabackup.errors import FatalBackupError
from rotabackup.models import RunRecord, ArchiveRecord
from .capability import Capability, SystemCapability
from .lock import LockGuard
from .periods import StagingArea, resolve_period
from .preflight import PreflightValidator
from .remote import RemoteHost
from .rotation import RotationArchiver, RotationReport
from .sources import SourceSynchronizer
from .transfer import TransferManager


logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


class RunSummary(NamedTuple):
    run_id: Optional[int]
    status: str
    period_tag: Optional[str]
    error_count: int
    transferred: List[str]
    retained: List[str]

    @property
    def exit_code(self) -> int:
        if self.status == 'success':
            return EXIT_SUCCESS
        if self.status == 'partial':
            return EXIT_PARTIAL
        return EXIT_FATAL


class RunLogHandler(logging.Handler):
    """Collects formatted log lines of one run for its RunRecord."""

    def __init__(self, logs: List[str]):
        super().__init__(level=logging.INFO)
        self.logs = logs
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    def emit(self, record):
        self.logs.append(self.format(record))


class BackupExecutor:
    """
    Orchestrates the complete backup lifecycle for one run.
    """

    def __init__(self, settings, capability: Optional[Capability] = None,
                 remote: Optional[RemoteHost] = None, now: Optional[datetime] = None):
        """
        Initialize backup executor.

        Args:
            settings: Configuration mapping (usually app.config)
            capability: Tool implementation (SystemCapability if omitted)
            remote: Retention host connection (built from settings if omitted)
            now: Fixed time used for period resolution (current time if omitted)
        """
        self.settings = settings
        self.remote = remote or RemoteHost.from_config(settings)
        self.capability = capability or SystemCapability(
            remote=self.remote,
            compression_format=settings.get('ARCHIVE_FORMAT', 'tar.gz')
        )
        self.now = now
        self.run_record = None
        self.period_tag = None
        self.error_count = 0
        self.rotation_report = None
        self.logs = []

    def execute(self) -> RunSummary:
        """
        Execute one backup run.

        The lock is taken before anything is written, so a run refused with
        AlreadyRunning leaves no history record and no log line behind.

        Returns:
            RunSummary with the final status and error tally

        Raises:
            AlreadyRunning: If another run holds the lock
            FatalBackupError: RemoteUnreachable or InsufficientSpace, after
                the run has been recorded as failed
        """
        with LockGuard(self.settings['LOCK_FILE']):
            return self._execute_locked()

    def _execute_locked(self) -> RunSummary:
        self.run_record = RunRecord(status='running', started_at=datetime.utcnow())
        db.session.add(self.run_record)
        db.session.commit()

        log_handler = RunLogHandler(self.logs)
        package_logger = logging.getLogger('rotabackup')
        package_logger.addHandler(log_handler)

        logger.info("Starting backup run")

        try:
            self._execute_workflow()

            self.run_record.status = 'partial' if self.error_count else 'success'
            if self.error_count:
                logger.warning(f"Backup run finished with {self.error_count} error(s)")
            else:
                logger.info("Backup run finished")

        except FatalBackupError as e:
            self.run_record.status = 'failed'
            self.run_record.error_message = str(e)
            logger.error(f"Backup run aborted: {e}")
            raise

        except Exception as e:
            self.run_record.status = 'failed'
            self.run_record.error_message = str(e)
            logger.exception(f"Backup run failed: {e}")
            raise

        finally:
            # Interrupted by SystemExit/KeyboardInterrupt
            if self.run_record.status == 'running':
                self.run_record.status = 'failed'
                self.run_record.error_message = 'Interrupted'

            self.run_record.completed_at = datetime.utcnow()
            self.run_record.error_count = self.error_count
            self.run_record.period_tag = self.period_tag
            package_logger.removeHandler(log_handler)
            self._flush_logs_to_db()

        return self.summary()

    def summary(self) -> RunSummary:
        transferred, retained = [], []
        if self.rotation_report:
            transferred = [e.staging.name for e in self.rotation_report.transferred]
            retained = [e.staging.name for e in self.rotation_report.retained]
        return RunSummary(
            run_id=self.run_record.id if self.run_record else None,
            status=self.run_record.status if self.run_record else 'failed',
            period_tag=self.period_tag,
            error_count=self.error_count,
            transferred=transferred,
            retained=retained,
        )

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Local directories
        self._ensure_directories()

        # Step 2: Preflight, before any mutation of the staging tree
        preflight = PreflightValidator(self.settings, self.remote).run()
        self._flush_logs_to_db()

        # Step 3: Current period
        tag = resolve_period(self.now or datetime.now(), self.settings.get('BACKUP_PERIOD'))
        self.period_tag = str(tag)
        staging = StagingArea(self.settings['LOCAL_BACKUP_DIR'], tag)
        logger.info(f"Current period: {tag} ({staging.path})")

        # Step 4: Sources
        synchronizer = SourceSynchronizer(
            self.capability,
            staging,
            ignore_special_files=bool(self.settings.get('IGNORE_SPECIAL_FILES'))
        )
        sync_report = synchronizer.sync_all(self.settings['SOURCE_DIRS'])
        self.error_count += sync_report.error_count
        logger.info(
            f"Synchronized {len(sync_report.synced)} source(s), "
            f"skipped {len(sync_report.skipped)}, failed {len(sync_report.failed)}"
        )
        self._flush_logs_to_db()

        # Step 5: Rotation and transfer
        transfer_manager = TransferManager(
            self.capability,
            self.settings['REMOTE_DEST_DIR'],
            remote_available=preflight.remote_available,
            remote_host=self.settings['REMOTE_HOST']
        )
        archiver = RotationArchiver(
            self.capability,
            transfer_manager,
            self.settings['LOCAL_BACKUP_DIR'],
            self.settings['TEMP_DIR'],
            current_tag=tag,
            archive_format=self.settings.get('ARCHIVE_FORMAT', 'tar.gz')
        )
        self.rotation_report = archiver.rotate()
        self.error_count += self.rotation_report.error_count
        self._record_archives(self.rotation_report)

    def _ensure_directories(self):
        for key in ('LOCAL_BACKUP_DIR', 'TEMP_DIR'):
            path = self.settings[key]
            if not os.path.isdir(path):
                logger.info(f"Creating directory {path}")
                os.makedirs(path, exist_ok=True)

    def _record_archives(self, report: RotationReport):
        for entry in report.entries:
            if entry.result is None:
                outcome = 'compression_failed' if entry.archive_name is None else 'transfer_failed'
                remote_path = None
            else:
                outcome = entry.result.outcome.value
                remote_path = entry.result.remote_path

            db.session.add(ArchiveRecord(
                run_id=self.run_record.id,
                period_tag=entry.staging.name,
                archive_name=entry.archive_name,
                size_bytes=entry.size_bytes,
                outcome=outcome,
                remote_path=remote_path
            ))
        db.session.commit()

    def _flush_logs_to_db(self):
        """Flush accumulated logs to database for visibility while running."""
        if self.run_record:
            self.run_record.logs = '\n'.join(self.logs)
            db.session.commit()


def execute_backup(settings=None, capability: Optional[Capability] = None) -> RunSummary:
    """
    Execute a backup run with the current application's configuration.

    Must be called inside an application context.
    """
    if settings is None:
        settings = current_app.config

    executor = BackupExecutor(settings, capability=capability)
    return executor.execute()
