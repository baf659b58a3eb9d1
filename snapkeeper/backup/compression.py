"""
Compression handlers for snapshot archives.

Supports multiple formats:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression
- none: No compression (tar only)

Archives hold the contents of the snapshot directory relative to it, the
same layout ``tar -czf archive.tar.gz -C <dir> .`` produces.
"""

import os
import tarfile
import zipfile
from pathlib import Path


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


EXTENSIONS = {
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'zip': 'zip',
    'none': 'tar'
}


def archive_extension(compression_format: str) -> str:
    """
    Map a compression format to its file extension.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )
    return EXTENSIONS[compression_format]


def create_archive(
    source_dir: str,
    output_path: str,
    compression_format: str = 'tar.gz'
) -> str:
    """
    Create a compressed archive of a directory's contents.

    Args:
        source_dir: Directory whose contents go into the archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    extension = archive_extension(compression_format)

    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Source directory does not exist: {source_dir}")

    archive_path = f"{output_path}.{extension}"
    handler = _create_zip if compression_format == 'zip' else _create_tar

    try:
        handler(source, archive_path, compression_format)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive of {source_dir}: {e}")


def _create_zip(source: Path, archive_path: str, compression_format: str):
    """
    Create a ZIP archive.

    Args:
        source: Directory to add
        archive_path: Output archive path
        compression_format: Not used for zip, kept for interface consistency
    """
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for item in sorted(source.rglob('*')):
            relative_path = item.relative_to(source)
            if item.is_dir() and not item.is_symlink():
                zipf.write(item, f"{relative_path.as_posix()}/")
            elif item.is_file():
                zipf.write(item, relative_path.as_posix())


def _create_tar(source: Path, archive_path: str, compression_format: str):
    """
    Create a TAR archive with optional compression.

    Args:
        source: Directory to add
        archive_path: Output archive path
        compression_format: Compression format ('tar.gz', 'tar.bz2', 'tar.xz', 'none')
    """
    mode_map = {
        'tar.gz': 'w:gz',
        'tar.bz2': 'w:bz2',
        'tar.xz': 'w:xz',
        'none': 'w'
    }

    mode = mode_map.get(compression_format, 'w:gz')

    with tarfile.open(archive_path, mode) as tar:
        # Symlinks are stored as links, not followed
        tar.add(source, arcname='.', recursive=True)


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
