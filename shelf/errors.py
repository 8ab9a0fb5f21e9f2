"""Exception types raised by the Shelf core.

The routing layer maps ``NotFoundError`` to 404 and every other
``ShelfError`` (plus ``OSError``) to 500.
"""

from __future__ import annotations


class ShelfError(Exception):
    """Base class for catalog and archive errors."""


class NotFoundError(ShelfError):
    """Something addressed by id or index does not exist."""


class EntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: str, kind: str = "entry"):
        super().__init__(f"No {kind} with id {entry_id!r}")
        self.entry_id = entry_id
        self.kind = kind


class PageNotFoundError(NotFoundError):
    def __init__(self, index: int, page_count: int):
        super().__init__(f"Page {index} out of range (0..{page_count - 1})")
        self.index = index
        self.page_count = page_count


class ThumbnailNotFoundError(NotFoundError):
    """A directory has no file to borrow a thumbnail from."""


class CorruptArchiveError(ShelfError):
    """The archive could not be opened or enumerated."""


class RenderError(ShelfError):
    """A document page could not be rendered to an image."""
