"""Thumbnail resolution for Shelf.

A file's thumbnail is its first page. A directory borrows the thumbnail of
its representative file: the first file directly inside it, or failing that
the representative file of its first subdirectory.
"""

from __future__ import annotations

from typing import Optional

from .archive import read_page
from .config import RenderConfig
from .errors import ThumbnailNotFoundError
from .models import Directory, Entry, File, PageImage


def resolve_thumbnail(entry: Entry) -> File:
    """Return the file whose first page stands in for ``entry``."""
    current = entry
    while isinstance(current, Directory):
        # Children are sorted directories-first, so scan for files explicitly.
        first_file = next(
            (child for child in current.children if isinstance(child, File)),
            None,
        )
        if first_file is not None:
            return first_file
        first_dir = next(
            (child for child in current.children if isinstance(child, Directory)),
            None,
        )
        if first_dir is None:
            raise ThumbnailNotFoundError(f"No file to borrow a thumbnail from in {entry.id!r}")
        current = first_dir
    return current


def get_thumbnail(entry: Entry, render: Optional[RenderConfig] = None) -> PageImage:
    """Page 0 of the representative file for ``entry``."""
    thumb_file = resolve_thumbnail(entry)
    return read_page(thumb_file.path, thumb_file.archive_format, 0, render)
