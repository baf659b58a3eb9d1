"""
Path-safe name encoding for snapshot destinations.

Anything that is not alphanumeric or one of ``-_.+@`` becomes an underscore.
Two sources can still encode to the same name; callers that share a
destination area must check for that themselves.
"""

import os
from pathlib import PurePosixPath

SAFE_PUNCTUATION = ('-', '_', '.', '+', '@')


def sanitize_name(name: str) -> str:
    """
    Encode a single path component as a filesystem-safe name.

    Spaces, path separators and reserved characters are replaced with
    underscores. Names that would be empty or refer to the current/parent
    directory are prefixed so they stay a plain entry.

    Args:
        name: Raw name (e.g. a directory basename)

    Returns:
        Safe name usable as a single path component
    """
    safe = "".join(
        c if c.isalnum() or c in SAFE_PUNCTUATION else '_'
        for c in name
    )

    if safe in ('', '.', '..'):
        safe = '_' + safe

    return safe


def encode_relative_path(path: str) -> PurePosixPath:
    """
    Map an absolute source path to a relative destination path.

    ``/data/my projects`` becomes ``data/my_projects``. Each component is
    sanitized on its own so separators are preserved between them.
    """
    parts = [p for p in os.path.normpath(str(path)).split(os.sep) if p]
    if not parts:
        return PurePosixPath('_root')
    return PurePosixPath(*(sanitize_name(p) for p in parts))


def mirror_name(path: str) -> str:
    """Name of the local repository mirror for a source repository path."""
    base = os.path.basename(os.path.normpath(str(path)))
    return f"{sanitize_name(base)}.git"
