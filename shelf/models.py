"""In-memory catalog models for Shelf.

Entries are built once per scan and never mutated. A directory owns its
children; children refer back to it only through ``parent_id``.
"""

from __future__ import annotations

import dataclasses
import enum
from datetime import datetime
from pathlib import Path
from typing import Iterable, NamedTuple, Optional, Union

ROOT_ID = "index"


class ArchiveFormat(str, enum.Enum):
    ZIP = "zip-archive"
    RAR = "rar-archive"
    DOCUMENT = "paginated-document"

    @property
    def media_type(self) -> str:
        """Media type advertised on acquisition links."""
        return _MEDIA_TYPES[self]


_MEDIA_TYPES = {
    ArchiveFormat.ZIP: "application/vnd.comicbook+zip",
    ArchiveFormat.RAR: "application/vnd.comicbook-rar",
    ArchiveFormat.DOCUMENT: "application/pdf",
}

# Extension -> (config format name, archive format)
EXTENSION_FORMATS = {
    ".cbz": ("cbz", ArchiveFormat.ZIP),
    ".zip": ("cbz", ArchiveFormat.ZIP),
    ".cbr": ("cbr", ArchiveFormat.RAR),
    ".rar": ("cbr", ArchiveFormat.RAR),
    ".pdf": ("pdf", ArchiveFormat.DOCUMENT),
}


def format_for_path(
    path: Union[str, Path], supported: Optional[Iterable[str]] = None
) -> Optional[ArchiveFormat]:
    """Archive format for a filename, or None if unrecognized or disabled.

    ``supported`` holds config format names (``cbz``, ``cbr``, ``pdf``);
    ``.zip`` and ``.rar`` ride along with ``cbz`` and ``cbr``.
    """
    match = EXTENSION_FORMATS.get(Path(path).suffix.lower())
    if match is None:
        return None
    name, archive_format = match
    if supported is not None and name not in set(supported):
        return None
    return archive_format


class ImageInfo(NamedTuple):
    name: str
    mime_type: str


class PageImage(NamedTuple):
    mime_type: str
    data: bytes


@dataclasses.dataclass(frozen=True)
class Entry:
    id: str
    parent_id: Optional[str]
    name: str
    path: Path
    updated_at: datetime

    @property
    def is_directory(self) -> bool:
        return False


@dataclasses.dataclass(frozen=True)
class File(Entry):
    archive_format: ArchiveFormat
    size: int
    page_count: int
    image_type: str
    broken: bool = False

    @property
    def media_type(self) -> str:
        return self.archive_format.media_type


@dataclasses.dataclass(frozen=True)
class Directory(Entry):
    children: tuple[Entry, ...] = dataclasses.field(default=(), compare=False)
    file_count: int = 0
    image_type: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return True

    @property
    def files(self) -> tuple[File, ...]:
        return tuple(child for child in self.children if isinstance(child, File))

    @property
    def directories(self) -> tuple["Directory", ...]:
        return tuple(
            child for child in self.children if isinstance(child, Directory)
        )
