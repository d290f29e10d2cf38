"""
Archive handling for backups.

Supports multiple formats:
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression
- none: No compression (tar only)
"""

import logging
import os
import tarfile
import zipfile
from pathlib import Path
from typing import List

from .errors import CompressionError


logger = logging.getLogger(__name__)


# Format -> file extension (without leading dot)
ARCHIVE_EXTENSIONS = {
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'zip': 'zip',
    'none': 'tar'
}

_TAR_WRITE_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
    'none': 'w'
}


def create_archive(
    source_paths: List[str],
    output_path: str,
    compression_format: str = 'tar.gz'
) -> str:
    """
    Create an archive from source paths.

    Each source is stored under its basename, so a staging directory holding
    `<id>_database.sqlite` and `<id>_files/` yields the same two top-level
    entries in the archive.

    Args:
        source_paths: List of file/directory paths to include in archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails or compression_format is invalid
    """
    if not source_paths:
        raise CompressionError("No source paths provided")

    if compression_format not in ARCHIVE_EXTENSIONS:
        raise CompressionError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(ARCHIVE_EXTENSIONS.keys())}"
        )

    archive_path = f"{output_path}.{ARCHIVE_EXTENSIONS[compression_format]}"
    handler = _create_zip if compression_format == 'zip' else _create_tar

    try:
        handler(source_paths, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Never leave a partial archive behind
        _remove_quietly(archive_path)
        raise CompressionError(f"Failed to create archive: {e}") from e


def _create_zip(source_paths: List[str], archive_path: str, compression_format: str):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for source_path in source_paths:
            source = Path(source_path)

            if source.is_file():
                zipf.write(source, source.name)
            elif source.is_dir():
                for item in source.rglob('*'):
                    if item.is_file():
                        zipf.write(item, item.relative_to(source.parent))
            else:
                raise CompressionError(f"Path does not exist: {source_path}")


def _create_tar(source_paths: List[str], archive_path: str, compression_format: str):
    mode = _TAR_WRITE_MODES[compression_format]

    with tarfile.open(archive_path, mode) as tar:
        for source_path in source_paths:
            source = Path(source_path)

            if not source.exists():
                raise CompressionError(f"Path does not exist: {source_path}")

            tar.add(source, arcname=source.name, recursive=True)


def verify_archive(archive_path: str) -> int:
    """
    Re-open a freshly written archive and read its member list.

    Args:
        archive_path: Path to the archive

    Returns:
        Number of members in the archive

    Raises:
        CompressionError: If the archive is missing, empty or unreadable
    """
    if not os.path.isfile(archive_path) or os.path.getsize(archive_path) == 0:
        raise CompressionError(f"Archive was not written: {archive_path}")

    try:
        if archive_path.endswith('.zip'):
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                bad = zipf.testzip()
                if bad is not None:
                    raise CompressionError(f"Corrupt member in archive: {bad}")
                count = len(zipf.namelist())
        else:
            with tarfile.open(archive_path, 'r:*') as tar:
                count = len(tar.getmembers())
    except CompressionError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, OSError, EOFError) as e:
        raise CompressionError(f"Archive verification failed for {archive_path}: {e}") from e

    if count == 0:
        raise CompressionError(f"Archive is empty: {archive_path}")

    return count


def extract_archive(archive_path: str, dest_dir: str) -> str:
    """
    Extract an archive into dest_dir.

    Members that would land outside dest_dir are rejected.

    Args:
        archive_path: Archive to extract
        dest_dir: Existing destination directory

    Returns:
        dest_dir

    Raises:
        CompressionError: If the archive cannot be read or is unsafe
    """
    try:
        if archive_path.endswith('.zip'):
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                for name in zipf.namelist():
                    _check_member_path(dest_dir, name)
                zipf.extractall(dest_dir)
        else:
            with tarfile.open(archive_path, 'r:*') as tar:
                for member in tar.getmembers():
                    _check_member_path(dest_dir, member.name)
                tar.extractall(dest_dir, filter='data')
    except CompressionError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, OSError, EOFError) as e:
        raise CompressionError(f"Failed to extract {archive_path}: {e}") from e

    return dest_dir


def _check_member_path(dest_dir: str, member_name: str):
    root = os.path.realpath(dest_dir)
    target = os.path.realpath(os.path.join(root, member_name))
    if target != root and not target.startswith(root + os.sep):
        raise CompressionError(f"Unsafe path in archive: {member_name}")


def is_archive(path: str) -> bool:
    """True if the path has one of the archive extensions this module writes."""
    return any(path.endswith(f".{ext}") for ext in ARCHIVE_EXTENSIONS.values())


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def _remove_quietly(path: str):
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"Failed to remove partial archive {path}: {e}")
