"""
APScheduler configuration for BankVault backups.

Manages:
- The recurring backup job (daily, weekly or monthly)
- Daily retention policy enforcement
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from bankvault.backup.errors import BackupError


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'
RETENTION_JOB_ID = 'retention_cleanup'


def build_backup_trigger(frequency: str, hour: int = 2, tz: str = 'UTC') -> CronTrigger:
    """
    Translate a backup frequency into a cron trigger.

    - daily: every day at hour:00
    - weekly: every Sunday at hour:00
    - monthly: the 1st of every month at hour:00

    Raises:
        ValueError: If frequency is unknown
    """
    if frequency == 'daily':
        return CronTrigger(hour=hour, minute=0, timezone=tz)
    if frequency == 'weekly':
        return CronTrigger(day_of_week='sun', hour=hour, minute=0, timezone=tz)
    if frequency == 'monthly':
        return CronTrigger(day=1, hour=hour, minute=0, timezone=tz)

    raise ValueError(f"Invalid backup frequency: {frequency}")


class BackupScheduler:
    """
    Fires scheduled backups and retention cleanup for one BackupService.
    """

    def __init__(self, service, tz: str = 'UTC', backup_hour: int = 2, retention_hour: int = 3):
        """
        Args:
            service: BackupService the jobs run against
            tz: Scheduler timezone name
            backup_hour: Hour of day scheduled backups start
            retention_hour: Hour of day the retention cleanup runs
        """
        self.service = service
        self.timezone = tz
        self.backup_hour = backup_hour
        self.retention_hour = retention_hour
        self.scheduler = None

    def init(self) -> BackgroundScheduler:
        """Create the APScheduler instance and register both jobs."""
        if self.scheduler is not None:
            return self.scheduler

        executors = {
            # One worker: backup runs must not overlap anyway
            'default': ThreadPoolExecutor(max_workers=1)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending instances into one
            'max_instances': 1,  # Only one instance of a job at a time
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self.scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone
        )

        frequency = self.service.config.frequency
        self.scheduler.add_job(
            func=self._run_scheduled_backup,
            trigger=build_backup_trigger(frequency, self.backup_hour, self.timezone),
            id=BACKUP_JOB_ID,
            name=f"Scheduled backup ({frequency})",
            replace_existing=True
        )

        self.scheduler.add_job(
            func=self._run_retention_cleanup,
            trigger=CronTrigger(hour=self.retention_hour, minute=0, timezone=self.timezone),
            id=RETENTION_JOB_ID,
            name='Daily Retention Cleanup',
            replace_existing=True
        )

        self.service.scheduler = self
        return self.scheduler

    def start(self):
        """
        Start the scheduler.

        Raises:
            RuntimeError: If init() was not called
        """
        if self.scheduler is None:
            raise RuntimeError("Scheduler not initialized. Call init() first.")

        if self.scheduler.running:
            logger.info("Scheduler already running")
            return

        self.scheduler.start()
        logger.info(f"APScheduler started (state={self.scheduler.state})")

        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")

    def stop(self):
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def reschedule(self, frequency: str):
        """
        Move the backup job to a new frequency without restarting.

        Failures are logged; the previous schedule stays in place.
        """
        if self.scheduler is None:
            return

        try:
            self.scheduler.reschedule_job(
                BACKUP_JOB_ID,
                trigger=build_backup_trigger(frequency, self.backup_hour, self.timezone)
            )
            self.scheduler.modify_job(BACKUP_JOB_ID, name=f"Scheduled backup ({frequency})")
            logger.info(f"Backup schedule changed to {frequency}")
        except Exception as e:
            logger.error(f"Failed to reschedule backup job: {e}")

    def next_run_time(self) -> Optional[datetime]:
        """
        Next scheduled backup time.

        Read from the live job when the scheduler runs, otherwise computed
        from the trigger for the current frequency.
        """
        if self.running:
            job = self.scheduler.get_job(BACKUP_JOB_ID)
            return job.next_run_time if job else None

        trigger = build_backup_trigger(self.service.config.frequency, self.backup_hour, self.timezone)
        return trigger.get_next_fire_time(None, datetime.now(timezone.utc))

    def get_scheduled_jobs(self) -> list:
        """
        Get list of all scheduled jobs.

        Returns:
            List of dicts with job information
        """
        if self.scheduler is None:
            return []

        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger)
            }
            for job in self.scheduler.get_jobs()
        ]

    def _run_scheduled_backup(self):
        """
        Scheduler entry point for backups.

        Never raises: the service records failures in the history ledger.
        """
        try:
            logger.info("Starting scheduled backup")
            record = self.service.create_backup('scheduled')
            logger.info(f"Scheduled backup {record.id} completed ({record.size_bytes} bytes)")
        except BackupError as e:
            logger.error(f"Scheduled backup failed: {e}")
        except Exception:
            logger.exception("Scheduled backup crashed")

    def _run_retention_cleanup(self):
        try:
            removed = self.service.enforce_retention()
            logger.info(f"Retention cleanup removed {len(removed)} backups")
        except Exception:
            logger.exception("Retention cleanup failed")
