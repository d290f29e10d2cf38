"""
Shared pytest fixtures for BankVault tests.

This module provides fixtures for:
- Flask app and test client with a file-backed SQLite database
- API token headers
- Standalone BackupService instances on temporary directories
- Backup record factories
- Mock fixtures for the scheduler
- Temporary file fixtures
"""

import sqlite3
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from bankvault import create_app, db as _db
from bankvault.backup.capture import SQLiteFileCapture
from bankvault.backup.history import BackupRecord, generate_backup_id
from bankvault.backup.service import BackupService
from bankvault.backup.settings import BackupConfig


API_TOKEN = 'test-api-token'


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    The live store is a SQLite file so backups and restores touch real bytes.
    """
    app = create_app('testing', test_config={
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'data' / 'bankvault.db'}",
        'LOG_DIR': str(tmp_path / 'logs'),
        'BACKUP_DIR': str(tmp_path / 'backups'),
        'BACKUP_API_TOKEN': API_TOKEN,
    })

    yield app

    with app.app_context():
        _db.session.remove()
        _db.engine.dispose()


@pytest.fixture(scope='function')
def db(app):
    """Database handle inside an app context."""
    with app.app_context():
        yield _db
        _db.session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    """Authorization header carrying the test API token."""
    return {'Authorization': f'Bearer {API_TOKEN}'}


@pytest.fixture
def app_service(app):
    """The BackupService registered on the test app."""
    return app.extensions['backup_service']


@pytest.fixture
def sqlite_database(tmp_path):
    """
    Create a small SQLite database file outside any Flask app.

    Returns the path of the file. Table `accounts` holds two rows.
    """
    path = tmp_path / 'live' / 'store.db'
    path.parent.mkdir()

    conn = sqlite3.connect(path)
    conn.execute('CREATE TABLE accounts (id INTEGER PRIMARY KEY, owner TEXT, balance INTEGER)')
    conn.executemany(
        'INSERT INTO accounts (owner, balance) VALUES (?, ?)',
        [('Alice', 1000), ('Bob', 2500)]
    )
    conn.commit()
    conn.close()

    return path


@pytest.fixture
def read_accounts():
    """Return a helper that reads the rows of the `accounts` table in a SQLite file."""
    def _read(path):
        conn = sqlite3.connect(path)
        try:
            return conn.execute('SELECT owner, balance FROM accounts ORDER BY id').fetchall()
        finally:
            conn.close()

    return _read


@pytest.fixture
def aux_dirs(tmp_path):
    """
    Create two auxiliary directories (uploads, certificates).

    uploads holds a nested file and a .pyc file that should be excluded.
    """
    uploads = tmp_path / 'aux' / 'uploads'
    (uploads / 'statements').mkdir(parents=True)
    (uploads / 'statements' / 'jan.pdf').write_bytes(b'%PDF statement')
    (uploads / 'cache.pyc').write_bytes(b'compiled python')

    certificates = tmp_path / 'aux' / 'certificates'
    certificates.mkdir()
    (certificates / 'client.pem').write_text('-----BEGIN CERTIFICATE-----')

    return [uploads, certificates]


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / 'backups'


@pytest.fixture
def make_service(backup_dir, sqlite_database, aux_dirs):
    """
    Factory for standalone BackupService instances.

    Keyword arguments override BackupConfig fields; `capture` overrides the
    SQLite file capture.
    """
    def _make(capture=None, **overrides):
        config = BackupConfig(backup_directory=str(backup_dir), **overrides)
        return BackupService(
            config,
            capture or SQLiteFileCapture(str(sqlite_database)),
            auxiliary_paths=[str(path) for path in aux_dirs],
            exclude_patterns=['*.pyc', '__pycache__']
        )

    return _make


@pytest.fixture
def service(make_service):
    """BackupService with default configuration."""
    return make_service()


@pytest.fixture
def make_record():
    """
    Factory for BackupRecord instances.

    A successful record gets a real archive file when `archive_dir` is given.
    """
    def _make(created_at=None, status='success', archive_dir=None, origin='scheduled'):
        created_at = created_at or datetime.now(timezone.utc)
        backup_id = generate_backup_id(created_at)

        archive_path = ''
        size = 0
        if status == 'success' and archive_dir is not None:
            archive = archive_dir / f'{backup_id}.tar.gz'
            archive.parent.mkdir(parents=True, exist_ok=True)
            archive.write_bytes(b'archive bytes')
            archive_path = str(archive)
            size = archive.stat().st_size

        return BackupRecord(
            id=backup_id,
            created_at=created_at,
            origin=origin,
            status=status,
            size_bytes=size,
            archive_path=archive_path,
            duration_ms=120,
            error='pg_dump: connection refused' if status == 'failed' else None
        )

    return _make


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    - test_file.pyc (should be excluded in tests)
    """
    source = tmp_path / 'source'
    source.mkdir()

    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (source / 'test_file.pyc').write_bytes(b'compiled python')

    return source


@pytest.fixture(scope='function')
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    with patch('bankvault.scheduler.BackgroundScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        # Mock scheduler methods
        scheduler_instance.running = False
        scheduler_instance.state = 0
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance
