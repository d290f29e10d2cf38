"""
Backup service - the single owner of backup state in the process.

Holds the runtime BackupConfig, the history ledger and the two
single-flight guards (backup, restore), and exposes the operations the route
layer and the scheduler call.
"""

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from bankvault.utils.formatting import format_size
from .capture import AuxiliaryFileCapture, create_capture
from .compression import ARCHIVE_EXTENSIONS
from .errors import (
    BackupAlreadyRunningError,
    BackupNotFoundError,
    InvalidBackupStateError,
    InvalidConfigError,
)
from .executor import BackupExecutor
from .history import BackupRecord, HistoryStore, ORIGINS
from .restore import RestoreExecutor
from .retention import RetentionManager, DEFAULT_MAX_FAILED_RECORDS
from .settings import BackupConfig


logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# A backup older than this marks the system as unhealthy
HEALTHY_BACKUP_AGE = timedelta(days=7)


@contextmanager
def single_flight(lock: threading.Lock, message: str):
    """
    Hold `lock` for the duration of the block, or fail fast if it is taken.

    The lock is released on every exit path, including exceptions.
    """
    if not lock.acquire(blocking=False):
        raise BackupAlreadyRunningError(message)
    try:
        yield
    finally:
        lock.release()


class BackupService:
    """
    Backup/restore lifecycle manager.

    One instance per process. The scheduler (if any) is attached after
    construction through the `scheduler` attribute.
    """

    def __init__(
        self,
        config: BackupConfig,
        capture,
        auxiliary_paths: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
        compression_format: str = 'tar.gz',
        max_failed_records: int = DEFAULT_MAX_FAILED_RECORDS,
        before_restore: Optional[Callable[[], None]] = None
    ):
        """
        Initialize the service and load the history ledger.

        Args:
            config: Initial backup configuration
            capture: Database capture strategy (see capture.create_capture)
            auxiliary_paths: Directories mirrored when auxiliary files are included
            exclude_patterns: Glob patterns skipped while mirroring
            compression_format: Archive format used when compression is on
            max_failed_records: How many failed attempts the ledger keeps
            before_restore: Hook run right before the live store is replaced

        Raises:
            InvalidConfigError: If compression_format is not a known archive format
        """
        if compression_format not in ARCHIVE_EXTENSIONS:
            raise InvalidConfigError(
                f"Invalid compression format: {compression_format}. "
                f"Valid options: {list(ARCHIVE_EXTENSIONS.keys())}"
            )

        self._config = config
        self.capture = capture
        self.auxiliary = AuxiliaryFileCapture(auxiliary_paths or [], exclude_patterns or [])
        self.compression_format = compression_format
        self.retention = RetentionManager(max_failed_records=max_failed_records)
        self.before_restore = before_restore
        self.scheduler = None

        self._backup_lock = threading.Lock()
        self._restore_lock = threading.Lock()
        self._config_lock = threading.Lock()
        self._retention_lock = threading.Lock()

        os.makedirs(config.backup_directory, exist_ok=True)
        self.history = HistoryStore(config.backup_directory)
        self.history.load()

    @property
    def config(self) -> BackupConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._backup_lock.locked()

    @property
    def is_restoring(self) -> bool:
        return self._restore_lock.locked()

    def create_backup(self, origin: str = 'manual') -> BackupRecord:
        """
        Run one backup.

        Args:
            origin: 'manual' or 'scheduled'

        Returns:
            The successful BackupRecord

        Raises:
            BackupAlreadyRunningError: If another backup is in progress
            CaptureError, CompressionError: After a failed record was persisted
        """
        if origin not in ORIGINS:
            raise ValueError(f"Invalid backup origin: {origin}")

        with single_flight(self._backup_lock, 'Backup already in progress'):
            config = self._config
            executor = BackupExecutor(
                config,
                self.capture,
                self.history,
                auxiliary=self.auxiliary,
                compression_format=self.compression_format
            )
            record = executor.execute(origin)

            try:
                self._enforce_retention(config)
            except Exception:
                logger.exception("Retention enforcement after backup failed")

            return record

    def restore(self, backup_id: str):
        """
        Restore the live store from a successful backup.

        Raises:
            BackupNotFoundError: If the id is unknown
            InvalidBackupStateError: If the backup failed
            BackupAlreadyRunningError: If another restore is in progress
            RestoreError: If extraction or replay fails
        """
        record = self._get_successful_record(backup_id, 'Cannot restore a failed backup')

        with single_flight(self._restore_lock, 'Restore already in progress'):
            executor = RestoreExecutor(
                self.capture,
                scratch_root=self._config.backup_directory,
                before_replay=self.before_restore
            )
            executor.execute(record)

    def enforce_retention(self) -> List[str]:
        """
        Apply the retention policy to the ledger.

        Returns:
            Ids of the removed records
        """
        return self._enforce_retention(self._config)

    def _enforce_retention(self, config: BackupConfig) -> List[str]:
        with self._retention_lock:
            records = self.history.records()
            kept_ids = {r.id for r in self.retention.enforce(records, config.retention_days)}
            removed = [r.id for r in records if r.id not in kept_ids]

            if removed:
                self.history.remove(removed)
            return removed

    def get_history(self) -> List[BackupRecord]:
        return self.history.records()

    def get_record(self, backup_id: str) -> BackupRecord:
        record = self.history.get(backup_id)
        if record is None:
            raise BackupNotFoundError(f"Backup not found: {backup_id}")
        return record

    def _get_successful_record(self, backup_id: str, message: str) -> BackupRecord:
        record = self.get_record(backup_id)
        if not record.succeeded:
            raise InvalidBackupStateError(message)
        return record

    def update_config(self, changes: Dict[str, Any]) -> BackupConfig:
        """
        Apply a partial configuration update.

        The new configuration replaces the old one only if every value is
        valid. A frequency change reschedules the next scheduled backup.

        Raises:
            InvalidConfigError: If any value is rejected
        """
        with self._config_lock:
            old_config = self._config
            new_config = old_config.updated(changes)
            self._config = new_config

            # The backup job follows the last committed frequency
            if self.scheduler is not None and new_config.frequency != old_config.frequency:
                self.scheduler.reschedule(new_config.frequency)

        logger.info(f"Backup configuration updated: {changes}")

        return new_config

    def open_download(self, backup_id: str, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> Tuple[str, Iterator[bytes]]:
        """
        Prepare a successful backup's archive for streaming.

        Returns:
            (filename, iterator of byte chunks)

        Raises:
            BackupNotFoundError: If the id is unknown or the archive is gone
            InvalidBackupStateError: If the backup failed
        """
        record = self._get_successful_record(backup_id, 'Cannot download a failed backup')

        if not os.path.isfile(record.archive_path):
            raise BackupNotFoundError(f"Backup archive no longer exists: {backup_id}")

        return os.path.basename(record.archive_path), _iter_file(record.archive_path, chunk_size)

    def next_backup_time(self) -> Optional[datetime]:
        if self.scheduler is None:
            return None
        return self.scheduler.next_run_time()

    def get_stats(self) -> Dict[str, Any]:
        """
        Summarize the ledger and the service state.
        """
        records = self.history.records()
        successful = [r for r in records if r.succeeded]
        total_size = sum(r.size_bytes for r in successful)

        last_backup = None
        if records:
            last = records[0]
            last_backup = {
                'id': last.id,
                'created_at': last.created_at.isoformat(),
                'status': last.status,
                'size': format_size(last.size_bytes),
                'duration': f"{last.duration_ms}ms"
            }

        next_backup = self.next_backup_time()

        return {
            'total_backups': len(records),
            'successful_backups': len(successful),
            'failed_backups': len(records) - len(successful),
            'total_size': format_size(total_size),
            'total_size_bytes': total_size,
            'last_backup': last_backup,
            'next_backup': next_backup.isoformat() if next_backup else None,
            'is_running': self.is_running,
            'is_restoring': self.is_restoring,
            'config': self._config.to_dict()
        }

    def get_health(self) -> Dict[str, Any]:
        """Healthy iff the latest backup succeeded within HEALTHY_BACKUP_AGE."""
        stats = self.get_stats()
        records = self.history.records()

        healthy = bool(
            records
            and records[0].succeeded
            and datetime.now(timezone.utc) - records[0].created_at < HEALTHY_BACKUP_AGE
        )

        return {
            'healthy': healthy,
            'message': 'Backup system is healthy' if healthy else 'Backup system needs attention',
            'last_backup': stats['last_backup'],
            'next_backup': stats['next_backup']
        }


def _iter_file(path: str, chunk_size: int) -> Iterator[bytes]:
    with open(path, 'rb') as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk


def init_backup_service(app) -> BackupService:
    """
    Build the BackupService from Flask config and register it on the app.

    Args:
        app: Flask app instance

    Returns:
        The registered BackupService
    """
    from bankvault import db

    config = BackupConfig.from_app_config(app.config)
    capture = create_capture(app.config['SQLALCHEMY_DATABASE_URI'], base_dir=app.instance_path)

    aux_root = app.config.get('BACKUP_AUXILIARY_ROOT') or os.getcwd()
    auxiliary_paths = [
        path if os.path.isabs(path) else os.path.join(aux_root, path)
        for path in app.config.get('BACKUP_AUXILIARY_DIRS', [])
    ]

    def dispose_connections():
        # Pooled connections still point at the old database file
        with app.app_context():
            db.session.remove()
            db.engine.dispose()

    service = BackupService(
        config,
        capture,
        auxiliary_paths=auxiliary_paths,
        exclude_patterns=app.config.get('BACKUP_EXCLUDE_PATTERNS', []),
        compression_format=app.config.get('BACKUP_COMPRESSION_FORMAT', 'tar.gz'),
        max_failed_records=app.config.get('BACKUP_MAX_FAILED_RECORDS', DEFAULT_MAX_FAILED_RECORDS),
        before_restore=dispose_connections
    )

    app.extensions['backup_service'] = service
    app.logger.info(
        f"Backup service ready (engine: {capture.engine}, directory: {config.backup_directory}, "
        f"frequency: {config.frequency})"
    )
    return service
