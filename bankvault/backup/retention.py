"""
Retention policy enforcement for backups.

Removes successful backups older than the retention window, together with
their archive files, and caps how many failed attempts the ledger keeps.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .history import BackupRecord


logger = logging.getLogger(__name__)

DEFAULT_MAX_FAILED_RECORDS = 50


class RetentionManager:
    """
    Applies the retention policy to a list of backup records.

    Successful records older than the cutoff lose their archive and their
    ledger entry. Failed records have no archive and are not time-pruned; only
    the most recent `max_failed_records` of them are kept.
    """

    def __init__(self, max_failed_records: int = DEFAULT_MAX_FAILED_RECORDS):
        self.max_failed_records = max_failed_records

    def enforce(
        self,
        records: List[BackupRecord],
        retention_days: int,
        now: Optional[datetime] = None
    ) -> List[BackupRecord]:
        """
        Enforce the policy.

        Args:
            records: Ledger records, most recent first
            retention_days: Retention window in days
            now: Reference time (defaults to the current UTC time)

        Returns:
            The records that survive, in their original order
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=retention_days)

        kept = []
        failed_kept = 0

        for record in records:
            if record.succeeded:
                if record.created_at < cutoff:
                    self._delete_archive(record)
                    continue
            else:
                if failed_kept >= self.max_failed_records:
                    continue
                failed_kept += 1

            kept.append(record)

        removed = len(records) - len(kept)
        if removed:
            logger.info(
                f"Retention enforcement removed {removed} records "
                f"(cutoff: {cutoff.isoformat()})"
            )

        return kept

    def _delete_archive(self, record: BackupRecord):
        """Delete one archive; failures are logged and never stop the run."""
        if not record.archive_path:
            return

        try:
            os.remove(record.archive_path)
            logger.info(f"Removed old backup: {record.id}")
        except FileNotFoundError:
            logger.warning(f"Archive for {record.id} already missing: {record.archive_path}")
        except OSError as e:
            logger.error(f"Failed to remove old backup {record.id}: {e}")
