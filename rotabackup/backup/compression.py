"""
Compression of staging areas into archive artifacts.

Supported formats:
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
import tarfile
from pathlib import Path

from rotabackup.errors import RecoverableBackupError


class CompressionFailure(RecoverableBackupError):
    """Raised when archive creation fails."""
    pass


# Format -> (extension, tarfile mode)
FORMATS = {
    'tar.gz': ('tar.gz', 'w:gz'),
    'tar.bz2': ('tar.bz2', 'w:bz2'),
    'tar.xz': ('tar.xz', 'w:xz'),
    'none': ('tar', 'w'),
}


def archive_extension(compression_format: str) -> str:
    """
    File extension for a compression format.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )
    return FORMATS[compression_format][0]


def create_archive(source_dir: str, archive_path: str, compression_format: str = 'tar.gz') -> str:
    """
    Compress a directory into a single archive.

    The archive root is the directory itself, so extracting
    ``month_2025-04.tar.gz`` recreates ``month_2025-04/``. An existing file
    at archive_path is replaced.

    Args:
        source_dir: Directory to archive
        archive_path: Full path of the archive to create
        compression_format: Format to use ('tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        archive_path

    Raises:
        CompressionFailure: If archive creation fails
        ValueError: If compression_format is invalid
    """
    archive_extension(compression_format)
    mode = FORMATS[compression_format][1]

    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionFailure(f"Directory does not exist: {source_dir}")

    try:
        with tarfile.open(archive_path, mode) as tar:
            tar.add(str(source), arcname=source.name, recursive=True)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        remove_archive(archive_path)
        raise CompressionFailure(f"Failed to create archive {archive_path}: {e}")


def remove_archive(archive_path: str) -> bool:
    """Delete an archive artifact if present. Returns True if a file was removed."""
    try:
        os.remove(archive_path)
        return True
    except FileNotFoundError:
        return False


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionFailure: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionFailure(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionFailure(f"Failed to get archive size: {e}")
