"""
APScheduler configuration for daemon mode.

Runs the backup on the configured cron schedule inside a long-lived process.
Exclusion against runs started by other processes (cron, manual) still relies
on the run lock.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from snapkeeper.config import BackupConfig, Config
from snapkeeper.backup.executor import execute_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'snapkeeper_backup'

# Global scheduler instance
scheduler = None


def init_scheduler(config: BackupConfig, backup_type: str = 'snapshot'):
    """
    Initialize and configure APScheduler.

    Args:
        config: Loaded configuration (schedule_cron is used as the trigger)
        backup_type: Backup type passed to every scheduled run

    Returns:
        Configured (not yet started) scheduler

    Raises:
        ValueError: If schedule_cron is not a valid crontab expression
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    trigger = CronTrigger.from_crontab(config.schedule_cron, timezone=Config.SCHEDULER_TIMEZONE)

    scheduler = BlockingScheduler(
        job_defaults=job_defaults,
        timezone=Config.SCHEDULER_TIMEZONE
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config, backup_type],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup ({backup_type})",
        replace_existing=True
    )

    logger.info(f"Scheduled {backup_type} backup ({config.schedule_cron})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() is called or the
    process is interrupted.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    logger.info("Starting scheduler")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")
        stop_scheduler()


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def _execute_backup_wrapper(config: BackupConfig, backup_type: str):
    """
    Run one scheduled backup.

    Errors are logged so a failed run never stops the scheduler.
    """
    try:
        logger.info(f"Scheduler executing {backup_type} backup")
        report = execute_backup(config, backup_type=backup_type)
        logger.info(f"Scheduled backup {report.run_name} finished with status: {report.status}")
    except Exception as e:
        logger.exception(f"Scheduled backup failed: {e}")
