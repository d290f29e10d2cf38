"""
Unit tests for scheduler (bankvault/scheduler.py).

Tests APScheduler configuration and job scheduling.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from bankvault.backup.errors import BackupAlreadyRunningError, CaptureError
from bankvault.backup.settings import BackupConfig
from bankvault.scheduler import (
    BackupScheduler,
    BACKUP_JOB_ID,
    RETENTION_JOB_ID,
    build_backup_trigger
)


# Monday
REFERENCE = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def backup_service():
    service = MagicMock()
    service.config = BackupConfig(frequency='daily')
    service.scheduler = None
    return service


class TestBuildBackupTrigger:
    """Test frequency to cron trigger translation."""

    @pytest.mark.parametrize("frequency,expected", [
        ('daily', datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)),
        ('weekly', datetime(2024, 1, 21, 2, 0, tzinfo=timezone.utc)),
        ('monthly', datetime(2024, 2, 1, 2, 0, tzinfo=timezone.utc)),
    ])
    def test_next_fire_time(self, frequency, expected):
        trigger = build_backup_trigger(frequency)

        assert trigger.get_next_fire_time(None, REFERENCE) == expected

    def test_custom_hour(self):
        trigger = build_backup_trigger('daily', hour=23)

        assert trigger.get_next_fire_time(None, REFERENCE) == datetime(2024, 1, 15, 23, 0, tzinfo=timezone.utc)

    def test_invalid_frequency(self):
        with pytest.raises(ValueError, match="Invalid backup frequency"):
            build_backup_trigger('hourly')


class TestSchedulerInitialization:
    """Test scheduler initialization."""

    def test_init_scheduler(self, mock_scheduler, backup_service):
        """Test scheduler initialization registers both jobs."""
        scheduler = BackupScheduler(backup_service)

        result = scheduler.init()

        assert result == mock_scheduler
        assert backup_service.scheduler is scheduler

        job_ids = [c[1]['id'] for c in mock_scheduler.add_job.call_args_list]
        assert job_ids == [BACKUP_JOB_ID, RETENTION_JOB_ID]

    def test_init_scheduler_configuration(self, backup_service):
        """Test executor and job defaults passed to APScheduler."""
        with patch('bankvault.scheduler.BackgroundScheduler') as mock_scheduler_class:
            BackupScheduler(backup_service).init()

        call_kwargs = mock_scheduler_class.call_args[1]
        assert call_kwargs['timezone'] == 'UTC'
        assert call_kwargs['job_defaults']['max_instances'] == 1
        assert call_kwargs['job_defaults']['coalesce'] is True
        assert 'default' in call_kwargs['executors']

    def test_init_scheduler_only_once(self, mock_scheduler, backup_service):
        """Test scheduler is only initialized once."""
        scheduler = BackupScheduler(backup_service)

        assert scheduler.init() is scheduler.init()
        assert mock_scheduler.add_job.call_count == 2


class TestSchedulerLifecycle:
    """Test scheduler start/stop operations."""

    def test_start_scheduler(self, mock_scheduler, backup_service):
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.start()

        mock_scheduler.start.assert_called_once()

    def test_start_scheduler_not_initialized(self, backup_service):
        """Test starting scheduler before initialization raises error."""
        with pytest.raises(RuntimeError, match="not initialized"):
            BackupScheduler(backup_service).start()

    def test_start_scheduler_already_running(self, mock_scheduler, backup_service):
        mock_scheduler.running = True
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.start()

        mock_scheduler.start.assert_not_called()

    def test_stop_scheduler(self, mock_scheduler, backup_service):
        mock_scheduler.running = True
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.stop()

        mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_stop_scheduler_not_running(self, mock_scheduler, backup_service):
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.stop()

        mock_scheduler.shutdown.assert_not_called()


class TestReschedule:
    """Test changing the backup frequency at runtime."""

    def test_reschedule_replaces_trigger(self, mock_scheduler, backup_service):
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.reschedule('weekly')

        mock_scheduler.reschedule_job.assert_called_once()
        job_id = mock_scheduler.reschedule_job.call_args[0][0]
        trigger = mock_scheduler.reschedule_job.call_args[1]['trigger']
        assert job_id == BACKUP_JOB_ID
        assert trigger.get_next_fire_time(None, REFERENCE) == datetime(2024, 1, 21, 2, 0, tzinfo=timezone.utc)

    def test_reschedule_failure_is_logged(self, mock_scheduler, backup_service):
        mock_scheduler.reschedule_job.side_effect = Exception('job not found')
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        # Should not raise
        scheduler.reschedule('monthly')

    def test_reschedule_before_init_is_noop(self, backup_service):
        BackupScheduler(backup_service).reschedule('weekly')

    def test_real_scheduler_reschedule(self, backup_service):
        """Test reschedule against an unstarted APScheduler instance."""
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        scheduler.reschedule('monthly')

        job = scheduler.scheduler.get_job(BACKUP_JOB_ID)
        assert "day='1'" in str(job.trigger)
        assert job.name == 'Scheduled backup (monthly)'


class TestNextRunTime:
    """Test next backup time reporting."""

    @freeze_time("2024-01-15 10:00:00")
    def test_computed_when_not_running(self, backup_service):
        scheduler = BackupScheduler(backup_service)

        assert scheduler.next_run_time() == datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)

    @freeze_time("2024-01-15 10:00:00")
    def test_follows_current_frequency(self, backup_service):
        backup_service.config = BackupConfig(frequency='weekly')
        scheduler = BackupScheduler(backup_service)

        assert scheduler.next_run_time() == datetime(2024, 1, 21, 2, 0, tzinfo=timezone.utc)

    def test_from_live_job(self, mock_scheduler, backup_service):
        mock_scheduler.running = True
        mock_scheduler.get_job.return_value.next_run_time = datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)
        scheduler = BackupScheduler(backup_service)
        scheduler.init()

        assert scheduler.next_run_time() == datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)
        mock_scheduler.get_job.assert_called_with(BACKUP_JOB_ID)


class TestScheduledJobs:
    """Test the job entry points."""

    def test_scheduled_backup_uses_scheduled_origin(self, backup_service):
        backup_service.create_backup.return_value = MagicMock(id='backup_x', size_bytes=10)

        BackupScheduler(backup_service)._run_scheduled_backup()

        backup_service.create_backup.assert_called_once_with('scheduled')

    @pytest.mark.parametrize("error", [
        CaptureError('pg_dump failed'),
        BackupAlreadyRunningError('Backup already in progress'),
        RuntimeError('unexpected'),
    ])
    def test_scheduled_backup_never_raises(self, backup_service, error):
        backup_service.create_backup.side_effect = error

        # Should not raise
        BackupScheduler(backup_service)._run_scheduled_backup()

    def test_retention_cleanup(self, backup_service):
        backup_service.enforce_retention.return_value = ['backup_old']

        BackupScheduler(backup_service)._run_retention_cleanup()

        backup_service.enforce_retention.assert_called_once()

    def test_retention_cleanup_never_raises(self, backup_service):
        backup_service.enforce_retention.side_effect = OSError('disk gone')

        BackupScheduler(backup_service)._run_retention_cleanup()

    def test_get_scheduled_jobs_before_init(self, backup_service):
        assert BackupScheduler(backup_service).get_scheduled_jobs() == []
