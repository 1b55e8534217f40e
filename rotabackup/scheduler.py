"""
APScheduler configuration for unattended periodic runs.

Runs the backup lifecycle on SCHEDULE_CRON inside a foreground
BlockingScheduler. Overlapping runs are prevented twice: by
max_instances=1 here and by the lock marker for runs started elsewhere.
SIGTERM and SIGHUP stop the scheduler after the running backup finishes.
"""

import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from rotabackup.errors import BackupError
from rotabackup.backup.executor import execute_backup
from rotabackup.backup.lock import install_exit_handlers, restore_handlers


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'periodic_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app, run_now: bool = False):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
        run_now: Also run one backup right after start

    Raises:
        ValueError: If SCHEDULE_CRON is not a valid crontab expression
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in the executor thread
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    trigger = CronTrigger.from_crontab(app.config['SCHEDULE_CRON'])

    scheduler = BlockingScheduler(
        executors=executors,
        job_defaults=job_defaults
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name='Periodic backup',
        replace_existing=True
    )

    if run_now:
        trigger_backup_now()

    return scheduler


def start_scheduler():
    """
    Start the APScheduler. Blocks until the scheduler is shut down.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    logger.info(f"Starting scheduler (schedule: {flask_app.config['SCHEDULE_CRON']})")

    # Runs execute in a worker thread where LockGuard cannot trap signals:
    # SIGTERM/SIGHUP end the main loop here and shutdown waits for the run
    previous_handlers = install_exit_handlers()
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted, waiting for a running backup to finish")
    finally:
        try:
            stop_scheduler(wait=True)
        finally:
            restore_handlers(previous_handlers)


def stop_scheduler(wait: bool = False):
    """
    Stop the APScheduler.

    Args:
        wait: Block until a running backup has finished and released its lock
    """
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")


def trigger_backup_now():
    """
    Add a one-time backup run shortly after start.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # 1 second delay so the run starts after the scheduler loop is up
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=1)),
        id=f"manual_{int(datetime.now().timestamp())}",
        name='Manual backup',
        replace_existing=False
    )
    logger.info("Manual backup run queued")


def _execute_backup_wrapper():
    """
    Run one backup inside the app context.

    Errors are logged, never raised, so the scheduler keeps running.
    """
    global flask_app

    with flask_app.app_context():
        try:
            summary = execute_backup()
            logger.info(f"Scheduled backup completed with status: {summary.status}")
        except BackupError as e:
            logger.error(f"Scheduled backup failed: {e}")
        except Exception:
            logger.exception("Scheduled backup crashed")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
