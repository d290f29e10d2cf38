"""
Backup history ledger.

Records are kept most-recent-first in a single JSON file under the backup
directory. The file is rewritten atomically after every mutation.
"""

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

HISTORY_FILENAME = 'backup_history.json'

ORIGINS = ('scheduled', 'manual')


def generate_backup_id(created_at: datetime) -> str:
    """
    Generate a unique backup id.

    Format: backup_{YYYYMMDD_HHMMSS}_{8 hex chars}
    """
    return f"backup_{created_at.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class BackupRecord:
    """Outcome of one backup run. Never mutated after creation."""

    id: str
    created_at: datetime
    origin: str
    status: str
    size_bytes: int = 0
    archive_path: str = ''
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupRecord':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            origin=data['origin'],
            status=data['status'],
            size_bytes=int(data.get('size_bytes', 0)),
            archive_path=data.get('archive_path') or '',
            duration_ms=int(data.get('duration_ms', 0)),
            error=data.get('error')
        )


class HistoryStore:
    """
    Durable, ordered ledger of backup attempts.

    Mutations go through prepend() and replace(); both persist before
    returning. Readers get copies.
    """

    def __init__(self, backup_directory: str, filename: str = HISTORY_FILENAME):
        self.path = os.path.join(backup_directory, filename)
        self._records: List[BackupRecord] = []
        self._lock = threading.RLock()

    def load(self) -> List[BackupRecord]:
        """
        Load the ledger from disk.

        A missing file starts an empty history. A corrupt file is logged and
        replaced by an empty history on the next write.
        """
        with self._lock:
            if not os.path.exists(self.path):
                logger.info(f"No backup history found at {self.path}, starting fresh")
                self._records = []
                return self.records()

            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    raw = json.load(f)
                self._records = [BackupRecord.from_dict(item) for item in raw]
                logger.info(f"Loaded {len(self._records)} backup history records")
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Failed to read backup history {self.path}: {e}; starting fresh")
                self._records = []

            return self.records()

    def records(self) -> List[BackupRecord]:
        with self._lock:
            return list(self._records)

    def get(self, backup_id: str) -> Optional[BackupRecord]:
        with self._lock:
            for record in self._records:
                if record.id == backup_id:
                    return record
            return None

    def prepend(self, record: BackupRecord):
        """Add a record at the front of the ledger and persist."""
        with self._lock:
            self._records.insert(0, record)
            self._persist()

    def remove(self, backup_ids):
        """
        Drop records by id and persist.

        Filtering happens under the ledger lock, so records prepended by a
        concurrent run are kept.
        """
        ids = set(backup_ids)
        with self._lock:
            self._records = [r for r in self._records if r.id not in ids]
            self._persist()

    def replace(self, records: List[BackupRecord]):
        """Replace the whole ledger and persist."""
        with self._lock:
            self._records = list(records)
            self._persist()

    def __len__(self):
        with self._lock:
            return len(self._records)

    def _persist(self):
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)

        payload = [record.to_dict() for record in self._records]

        # Write next to the target so os.replace stays on one filesystem
        fd, tmp_path = tempfile.mkstemp(prefix='.backup_history_', suffix='.tmp', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
