"""
Backup executor - runs one complete backup.

Workflow:
1. Generate backup id, create staging directory
2. Capture the primary store (and auxiliary directories, if enabled)
3. Archive the captured artifacts
4. Measure the archive
5. Prepend the BackupRecord (success or failed) to the history ledger
6. Cleanup staging files

Mutual exclusion between runs is the caller's job (see BackupService).
"""

import logging
import os
import shutil
import time
from datetime import datetime, timezone
from typing import Optional

from .capture import AuxiliaryFileCapture
from .compression import create_archive, verify_archive, get_archive_size
from .history import BackupRecord, HistoryStore, generate_backup_id
from .settings import BackupConfig


logger = logging.getLogger(__name__)

STAGING_DIRNAME = '.staging'


class BackupExecutor:
    """
    Orchestrates capture, archiving and recording for a single run.
    """

    def __init__(
        self,
        config: BackupConfig,
        capture,
        history: HistoryStore,
        auxiliary: Optional[AuxiliaryFileCapture] = None,
        compression_format: str = 'tar.gz'
    ):
        """
        Initialize backup executor.

        Args:
            config: Backup configuration snapshot for this run
            capture: Database capture strategy
            history: Ledger the outcome is recorded in
            auxiliary: Auxiliary directory capture (used when the config includes files)
            compression_format: Archive format used when compression is enabled
        """
        self.config = config
        self.capture = capture
        self.history = history
        self.auxiliary = auxiliary
        self.compression_format = compression_format

        self.backup_id = None
        self.staging_dir = None
        self.archive_path = None

    def execute(self, origin: str = 'manual') -> BackupRecord:
        """
        Execute the backup.

        Returns:
            The successful BackupRecord

        Raises:
            CaptureError, CompressionError, OSError: after a failed record has
            been written to the history ledger
        """
        created_at = datetime.now(timezone.utc)
        started = time.monotonic()
        self.backup_id = generate_backup_id(created_at)

        logger.info(f"Starting {origin} backup: {self.backup_id}")

        try:
            self.archive_path = self._execute_workflow()
            size = get_archive_size(self.archive_path)

        except Exception as e:
            self._remove_partial_archive()

            record = BackupRecord(
                id=self.backup_id,
                created_at=created_at,
                origin=origin,
                status='failed',
                size_bytes=0,
                archive_path='',
                duration_ms=_elapsed_ms(started),
                error=str(e)
            )
            self.history.prepend(record)
            logger.error(f"Backup failed: {self.backup_id}: {e}")
            raise

        finally:
            self._cleanup()

        record = BackupRecord(
            id=self.backup_id,
            created_at=created_at,
            origin=origin,
            status='success',
            size_bytes=size,
            archive_path=self.archive_path,
            duration_ms=_elapsed_ms(started)
        )
        self.history.prepend(record)

        logger.info(f"Backup completed: {self.backup_id} ({size} bytes, {record.duration_ms} ms)")
        return record

    def _execute_workflow(self) -> str:
        """Capture and archive. Returns the final artifact path."""
        self.staging_dir = os.path.join(self.config.backup_directory, STAGING_DIRNAME, self.backup_id)
        os.makedirs(self.staging_dir)

        database_path = self.capture.capture(self.staging_dir, self.backup_id)

        files_path = None
        if self.config.include_auxiliary_files and self.auxiliary is not None:
            files_path = self.auxiliary.capture(self.staging_dir, self.backup_id)

        return self._create_archive(database_path, files_path)

    def _create_archive(self, database_path: str, files_path: Optional[str]) -> str:
        """
        Package the captured artifacts.

        Database and files always travel together: without compression they
        go into a plain tar, and only a lone database dump is passed through
        unpacked.
        """
        if not self.config.compress and files_path is None:
            dest_path = os.path.join(self.config.backup_directory, os.path.basename(database_path))
            os.replace(database_path, dest_path)
            return dest_path

        compression_format = self.compression_format if self.config.compress else 'none'
        sources = [database_path] + ([files_path] if files_path else [])

        archive_path = create_archive(
            sources,
            os.path.join(self.config.backup_directory, self.backup_id),
            compression_format
        )
        self.archive_path = archive_path
        verify_archive(archive_path)

        logger.info(f"Backup archive created: {archive_path}")
        return archive_path

    def _remove_partial_archive(self):
        if self.archive_path and os.path.exists(self.archive_path):
            try:
                os.remove(self.archive_path)
                logger.info(f"Removed incomplete archive {self.archive_path}")
            except OSError as e:
                logger.warning(f"Failed to remove incomplete archive {self.archive_path}: {e}")
        self.archive_path = None

    def _cleanup(self):
        """Remove the staging directory and files."""
        if self.staging_dir and os.path.exists(self.staging_dir):
            try:
                shutil.rmtree(self.staging_dir)
                logger.debug(f"Cleaned up staging directory {self.staging_dir}")
            except OSError as e:
                logger.warning(f"Failed to cleanup staging directory: {e}")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
