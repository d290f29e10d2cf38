"""
Restore executor - replays a backup into the live store.

Workflow:
1. Extract the archive to a scratch directory (if the backup is an archive)
2. Locate the database artifact by name
3. Hand it to the capture strategy's restore
4. Remove the scratch directory

A failed replay is not rolled back. The file-copy backend leaves its safety
snapshot next to the live database for manual recovery.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from .capture import DATABASE_ARTIFACT_MARKER
from .compression import extract_archive, is_archive
from .errors import RestoreError
from .history import BackupRecord


logger = logging.getLogger(__name__)


def locate_database_artifact(extracted_dir: str) -> str:
    """
    Find the database artifact inside an extracted archive.

    Raises:
        RestoreError: If no artifact with the database marker exists
    """
    candidates = [
        path for path in Path(extracted_dir).rglob(f"*{DATABASE_ARTIFACT_MARKER}*")
        if path.is_file()
    ]
    if not candidates:
        raise RestoreError("No database artifact found in backup archive")

    # Shallowest match wins; auxiliary files may contain the marker too
    candidates.sort(key=lambda path: (len(path.relative_to(extracted_dir).parts), str(path)))
    return str(candidates[0])


class RestoreExecutor:
    """
    Restores one successful backup record.
    """

    def __init__(self, capture, scratch_root: str, before_replay: Optional[Callable[[], None]] = None):
        """
        Args:
            capture: Database capture strategy (its restore() is the inverse)
            scratch_root: Directory extraction happens under
            before_replay: Called right before the live store is touched,
                e.g. to close pooled database connections
        """
        self.capture = capture
        self.scratch_root = scratch_root
        self.before_replay = before_replay
        self.scratch_dir = None

    def execute(self, record: BackupRecord):
        """
        Restore the live store from the record's archive.

        Raises:
            RestoreError: If extraction or replay fails
        """
        logger.info(f"Starting restore from backup: {record.id}")

        try:
            if not os.path.isfile(record.archive_path):
                raise RestoreError(f"Backup archive missing on disk: {record.archive_path}")

            artifact_path = record.archive_path
            if is_archive(record.archive_path):
                os.makedirs(self.scratch_root, exist_ok=True)
                self.scratch_dir = tempfile.mkdtemp(prefix=f"restore_{record.id}_", dir=self.scratch_root)
                extract_archive(record.archive_path, self.scratch_dir)
                artifact_path = locate_database_artifact(self.scratch_dir)

            if self.before_replay is not None:
                self.before_replay()

            self.capture.restore(artifact_path)

        except RestoreError:
            logger.error(f"Restore failed from backup: {record.id}")
            raise
        except Exception as e:
            logger.error(f"Restore failed from backup: {record.id}: {e}")
            raise RestoreError(f"Restore of {record.id} failed: {e}") from e

        finally:
            self._cleanup()

        logger.info(f"Restore completed from backup: {record.id}")

    def _cleanup(self):
        if self.scratch_dir and os.path.exists(self.scratch_dir):
            try:
                shutil.rmtree(self.scratch_dir)
            except OSError as e:
                logger.warning(f"Failed to remove restore scratch directory {self.scratch_dir}: {e}")
        self.scratch_dir = None
