"""
Snapshot capture strategies for the primary data store.

Supports:
- SQLiteFileCapture: online snapshot of an embedded database file
- PostgresDumpCapture: native export via pg_dump, replayed with psql
- AuxiliaryFileCapture: mirror of auxiliary directories (uploads, certificates, ...)

Each database strategy also knows how to put its artifact back into the live
store, so capture and restore stay symmetric.
"""

import logging
import os
import shutil
import sqlite3
import subprocess
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.engine import make_url

from .errors import CaptureError


logger = logging.getLogger(__name__)

# Restore locates the primary artifact inside an extracted archive by this marker
DATABASE_ARTIFACT_MARKER = '_database'
FILES_ARTIFACT_MARKER = '_files'


def database_artifact_name(backup_id: str, suffix: str) -> str:
    return f"{backup_id}{DATABASE_ARTIFACT_MARKER}{suffix}"


class SQLiteFileCapture:
    """
    Snapshot backend for SQLite.

    There is no export tool for an embedded database, so the snapshot is taken
    with SQLite's online backup API. Unlike a file copy it includes
    transactions still sitting in the write-ahead log.
    """

    engine = 'sqlite'
    artifact_suffix = '.sqlite'

    def __init__(self, database_path: str):
        """
        Args:
            database_path: Absolute path of the live SQLite file
        """
        self.database_path = database_path

    def capture(self, staging_dir: str, backup_id: str) -> str:
        """
        Snapshot the live database into the staging directory.

        Returns:
            Path of the copied file

        Raises:
            CaptureError: If the database cannot be read or the copy cannot be written
        """
        dest_path = os.path.join(staging_dir, database_artifact_name(backup_id, self.artifact_suffix))

        if not os.path.isfile(self.database_path):
            raise CaptureError(f"SQLite backup failed: database file not found: {self.database_path}")

        try:
            _sqlite_snapshot(self.database_path, dest_path)
        except (sqlite3.Error, OSError) as e:
            _remove_if_exists(dest_path)
            raise CaptureError(f"SQLite backup failed: {e}")

        logger.info(f"SQLite database copied to {dest_path}")
        return dest_path

    def restore(self, artifact_path: str) -> Optional[str]:
        """
        Replace the live database with a captured copy.

        The current database, including its write-ahead log, is first
        snapshotted aside. The snapshot is never removed automatically.

        Returns:
            Path of the safety snapshot, or None if there was no live file

        Raises:
            CaptureError: If the replacement fails
        """
        safety_snapshot = None

        if os.path.exists(self.database_path):
            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
            safety_snapshot = f"{self.database_path}.pre_restore_{timestamp}"
            try:
                _sqlite_snapshot(self.database_path, safety_snapshot)
            except (sqlite3.Error, OSError) as e:
                _remove_if_exists(safety_snapshot)
                raise CaptureError(f"Failed to create safety snapshot of {self.database_path}: {e}")
            logger.info(f"Safety snapshot of live database written to {safety_snapshot}")
        else:
            logger.info("No existing database to snapshot before restore")

        tmp_path = f"{self.database_path}.restoring"
        try:
            os.makedirs(os.path.dirname(self.database_path) or '.', exist_ok=True)
            shutil.copy2(artifact_path, tmp_path)
            os.replace(tmp_path, self.database_path)

            # The old journal is already in the safety snapshot and would be replayed over the new file
            for sidecar in ('-wal', '-shm', '-journal'):
                sidecar_path = self.database_path + sidecar
                if os.path.exists(sidecar_path):
                    os.remove(sidecar_path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise CaptureError(f"SQLite restore failed: {e}")

        logger.info(f"SQLite database restored from {artifact_path}")
        return safety_snapshot


def _sqlite_snapshot(source_path: str, dest_path: str):
    source = sqlite3.connect(source_path)
    try:
        dest = sqlite3.connect(dest_path)
        try:
            source.backup(dest)
        finally:
            dest.close()
    finally:
        source.close()


def _remove_if_exists(path: str):
    if os.path.exists(path):
        os.remove(path)


class PostgresDumpCapture:
    """
    Relational-dump backend for PostgreSQL.

    Shells out to the PostgreSQL client tools. The password is passed through
    PGPASSWORD, never on the command line.
    """

    engine = 'postgresql'
    artifact_suffix = '.sql'

    def __init__(self, host: str = 'localhost', port: int = 5432, username: str = 'postgres',
                 password: Optional[str] = None, database: str = 'postgres'):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database = database

    def _connection_args(self) -> List[str]:
        return ['-h', self.host, '-p', str(self.port), '-U', self.username]

    def _env(self) -> Dict[str, str]:
        env = os.environ.copy()
        if self.password:
            env['PGPASSWORD'] = self.password
        return env

    def _run(self, cmd: List[str], action: str):
        try:
            result = subprocess.run(
                cmd,
                env=self._env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True
            )
        except FileNotFoundError:
            raise CaptureError(f"{action} failed: {cmd[0]} not found on PATH")
        except OSError as e:
            raise CaptureError(f"{action} failed: {e}")

        if result.returncode != 0:
            raise CaptureError(f"{action} failed: {result.stderr.strip()}")

        return result

    def capture(self, staging_dir: str, backup_id: str) -> str:
        """
        Dump the database with pg_dump.

        Returns:
            Path of the SQL dump

        Raises:
            CaptureError: If pg_dump fails (stderr is included verbatim)
        """
        dump_path = os.path.join(staging_dir, database_artifact_name(backup_id, self.artifact_suffix))

        cmd = ['pg_dump', *self._connection_args(), '-d', self.database,
               '-f', dump_path, '--no-password']
        self._run(cmd, 'PostgreSQL backup')

        logger.info(f"PostgreSQL database {self.database} dumped to {dump_path}")
        return dump_path

    def restore(self, artifact_path: str) -> None:
        """
        Drop and recreate the database, then reload it from the dump.

        Raises:
            CaptureError: If any of the client tools fails
        """
        conn = self._connection_args()

        self._run(['dropdb', *conn, '--if-exists', '--no-password', self.database], 'PostgreSQL drop')
        self._run(['createdb', *conn, '--no-password', self.database], 'PostgreSQL create')
        self._run(['psql', *conn, '-d', self.database, '--no-password',
                   '-v', 'ON_ERROR_STOP=1', '-f', artifact_path], 'PostgreSQL restore')

        logger.info(f"PostgreSQL database {self.database} restored from {artifact_path}")


class AuxiliaryFileCapture:
    """
    Mirrors auxiliary directories into the staging area.

    Directories that do not exist are skipped with a warning.
    """

    def __init__(self, paths: List[str], exclude_patterns: List[str] = None):
        """
        Args:
            paths: Directories to mirror
            exclude_patterns: Glob patterns to exclude (e.g., *.pyc, __pycache__)
        """
        self.paths = paths
        self.exclude_patterns = exclude_patterns or []

    def _should_exclude(self, path: Path) -> bool:
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def _ignore(self, directory, names):
        return [name for name in names if self._should_exclude(Path(directory) / name)]

    def capture(self, staging_dir: str, backup_id: str) -> Optional[str]:
        """
        Copy every configured directory under `<staging>/<id>_files/`.

        Returns:
            The staging subtree, or None if no directory was captured

        Raises:
            CaptureError: If an existing directory cannot be copied
        """
        files_root = Path(staging_dir) / f"{backup_id}{FILES_ARTIFACT_MARKER}"
        captured = 0

        for path in self.paths:
            source_path = Path(path).expanduser()

            if not source_path.is_dir():
                logger.warning(f"Directory not found (skipping): {path}")
                continue

            dest_path = files_root / source_path.name
            if dest_path.exists():
                raise CaptureError(f"Duplicate auxiliary directory name: {source_path.name}")

            try:
                shutil.copytree(source_path, dest_path, symlinks=False, ignore=self._ignore)
            except (shutil.Error, OSError) as e:
                raise CaptureError(f"Failed to copy {path}: {e}")

            captured += 1
            logger.info(f"Backed up directory: {path}")

        if not captured:
            logger.warning("No auxiliary directories found, backup contains the database only")
            return None

        return str(files_root)


def create_capture(database_uri: str, base_dir: Optional[str] = None):
    """
    Factory function to create the capture strategy for a database URI.

    Args:
        database_uri: SQLAlchemy database URL
        base_dir: Directory that relative SQLite paths are resolved against

    Returns:
        SQLiteFileCapture or PostgresDumpCapture instance

    Raises:
        ValueError: If the engine is unsupported or the database is in-memory
    """
    url = make_url(database_uri)
    backend = url.get_backend_name()

    if backend == 'sqlite':
        database = url.database
        if not database or database == ':memory:':
            raise ValueError("In-memory SQLite databases cannot be backed up")
        if not os.path.isabs(database) and base_dir:
            database = os.path.join(base_dir, database)
        return SQLiteFileCapture(os.path.abspath(database))

    if backend == 'postgresql':
        return PostgresDumpCapture(
            host=url.host or 'localhost',
            port=url.port or 5432,
            username=url.username or 'postgres',
            password=url.password,
            database=url.database or 'postgres'
        )

    raise ValueError(f"Unsupported database engine for backup: {backend}")
