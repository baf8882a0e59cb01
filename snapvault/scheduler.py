"""
APScheduler configuration for long-running mode.

Manages:
- The recurring backup run (BACKUP_SCHEDULE cron expression)
- Manual "run now" triggers from the status API
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from snapvault.backup.orchestrator import run_backup
from snapvault.config import ConfigurationError


logger = logging.getLogger(__name__)

SCHEDULED_JOB_ID = 'scheduled_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None
last_report = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance holding BACKUP_SETTINGS

    Raises:
        ConfigurationError: If BACKUP_SCHEDULE is not a valid crontab expression
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    flask_app = app
    settings = app.config['BACKUP_SETTINGS']

    try:
        trigger = CronTrigger.from_crontab(settings.schedule_cron, timezone='UTC')
    except ValueError as e:
        raise ConfigurationError(f"Invalid BACKUP_SCHEDULE {settings.schedule_cron!r}: {e}")

    jobstores = {
        'default': MemoryJobStore()
    }

    # One worker: runs are sequential by nature, the lock file covers other processes
    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=trigger,
        id=SCHEDULED_JOB_ID,
        name='Scheduled Backup',
        replace_existing=True
    )

    logger.info(f"Scheduled backup run ({settings.schedule_cron})")
    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after init_scheduler().
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started successfully (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_backup_wrapper():
    """Run one backup with the settings of the Flask app that owns the scheduler."""
    global last_report

    settings = flask_app.config['BACKUP_SETTINGS']
    logger.info("Scheduler executing backup run")
    try:
        last_report = run_backup(settings)
        logger.info(f"Backup run finished with exit code {last_report.exit_code}")
    except Exception as e:
        # run_backup reports its own failures; this guards the scheduler thread
        logger.error(f"Scheduled backup run crashed: {e}", exc_info=True)


def trigger_backup_now() -> str:
    """
    Schedule an immediate one-off backup run.

    Returns:
        ID of the one-off scheduler job

    Raises:
        RuntimeError: If the scheduler is not running
    """
    global scheduler

    if scheduler is None or not scheduler.running:
        raise RuntimeError("Scheduler not running")

    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}_{uuid.uuid4().hex[:8]}"

    # 1 second delay avoids racing the HTTP response
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup'
    )

    logger.info(f"Manually triggered backup run: {job_id}")
    return job_id


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
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running
