"""
Unit tests for the backup history ledger (bankvault/backup/history.py).
"""

import json
import os
import re
from datetime import datetime, timezone

import pytest

from bankvault.backup.history import (
    BackupRecord,
    HistoryStore,
    HISTORY_FILENAME,
    generate_backup_id
)


class TestGenerateBackupId:
    """Test backup id generation."""

    def test_format(self):
        backup_id = generate_backup_id(datetime(2024, 1, 15, 2, 0, 5, tzinfo=timezone.utc))

        assert re.fullmatch(r'backup_20240115_020005_[0-9a-f]{8}', backup_id)

    def test_unique_within_same_second(self):
        """Test ids differ even when generated in the same second."""
        created_at = datetime(2024, 1, 15, 2, 0, 5, tzinfo=timezone.utc)

        ids = {generate_backup_id(created_at) for _ in range(50)}

        assert len(ids) == 50


class TestBackupRecord:
    """Test BackupRecord serialization."""

    def test_round_trip_through_dict(self, make_record):
        record = make_record(status='failed')

        restored = BackupRecord.from_dict(record.to_dict())

        assert restored == record
        assert restored.created_at.tzinfo is not None

    def test_to_dict_uses_iso_timestamp(self):
        record = BackupRecord(
            id='backup_20240115_020000_abcdef12',
            created_at=datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc),
            origin='manual',
            status='success',
            size_bytes=2048,
            archive_path='/backups/backup_20240115_020000_abcdef12.tar.gz',
            duration_ms=350
        )

        data = record.to_dict()

        assert data['created_at'] == '2024-01-15T02:00:00+00:00'
        assert data['error'] is None
        assert record.succeeded


class TestHistoryStore:
    """Test HistoryStore persistence."""

    def test_load_missing_file_is_empty(self, tmp_path):
        store = HistoryStore(str(tmp_path))

        assert store.load() == []
        assert len(store) == 0

    def test_load_corrupt_file_is_empty(self, tmp_path):
        """Test a corrupt ledger is replaced by an empty history."""
        (tmp_path / HISTORY_FILENAME).write_text('{not json')
        store = HistoryStore(str(tmp_path))

        assert store.load() == []

    def test_prepend_keeps_most_recent_first(self, tmp_path, make_record):
        store = HistoryStore(str(tmp_path))
        first = make_record(created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        second = make_record(created_at=datetime(2024, 1, 2, tzinfo=timezone.utc))

        store.prepend(first)
        store.prepend(second)

        assert [r.id for r in store.records()] == [second.id, first.id]

    def test_prepend_persists(self, tmp_path, make_record):
        """Test a second store sees records written by the first."""
        store = HistoryStore(str(tmp_path))
        record = make_record(status='failed')
        store.prepend(record)

        reloaded = HistoryStore(str(tmp_path))
        reloaded.load()

        assert reloaded.records() == [record]
        with open(tmp_path / HISTORY_FILENAME) as f:
            assert json.load(f)[0]['id'] == record.id

    def test_records_returns_copy(self, tmp_path, make_record):
        store = HistoryStore(str(tmp_path))
        store.prepend(make_record())

        records = store.records()
        records.clear()

        assert len(store) == 1

    def test_get(self, tmp_path, make_record):
        store = HistoryStore(str(tmp_path))
        record = make_record()
        store.prepend(record)

        assert store.get(record.id) == record
        assert store.get('backup_missing') is None

    def test_remove_and_replace(self, tmp_path, make_record):
        store = HistoryStore(str(tmp_path))
        records = [make_record() for _ in range(3)]
        for record in records:
            store.prepend(record)

        store.remove([records[0].id])
        assert [r.id for r in store.records()] == [records[2].id, records[1].id]

        store.replace([records[1]])
        reloaded = HistoryStore(str(tmp_path))
        assert reloaded.load() == [records[1]]

    def test_no_temp_files_left_behind(self, tmp_path, make_record):
        store = HistoryStore(str(tmp_path))
        store.prepend(make_record())

        assert os.listdir(tmp_path) == [HISTORY_FILENAME]

    def test_failed_write_keeps_previous_ledger(self, tmp_path, make_record, monkeypatch):
        """Test an interrupted write leaves the old file intact."""
        store = HistoryStore(str(tmp_path))
        first = make_record()
        store.prepend(first)

        def broken_replace(src, dst):
            raise OSError('disk full')

        monkeypatch.setattr('bankvault.backup.history.os.replace', broken_replace)

        with pytest.raises(OSError):
            store.prepend(make_record())

        monkeypatch.undo()
        reloaded = HistoryStore(str(tmp_path))
        assert reloaded.load() == [first]
        assert os.listdir(tmp_path) == [HISTORY_FILENAME]
