"""Naming helpers: natural ordering, display names and image MIME types.

Page and sibling order is natural (1, 2, 3, ..., 10), never lexical.
"""

from __future__ import annotations

import mimetypes
import re
from pathlib import PurePath
from typing import Optional

_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".jxl": "image/jxl",
    ".bmp": "image/bmp",
}

_DIGITS = re.compile(r"(\d+)")
_PARENTHETICAL = re.compile(r"\([^()]*\)")
_SEPARATORS = "-_:"


def natural_key(name: str) -> list:
    """Sort key for names so 1, 2, 10 order correctly (not 1, 10, 2).

    Text runs compare case-insensitively; digit runs compare as integers.
    """
    parts = _DIGITS.split(name)
    return [
        int(part) if part.isdecimal() else part.casefold()
        for part in parts
    ]


def guess_mime_type(name: str) -> Optional[str]:
    """MIME type from the file extension, or None if unknown."""
    suffix = PurePath(name).suffix.lower()
    if suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(name, strict=False)
    return mime_type


def is_image_name(name: str) -> bool:
    mime_type = guess_mime_type(name)
    return mime_type is not None and mime_type.startswith("image/")


def strip_annotations(text: str) -> str:
    """Drop ``(...)`` annotations such as years and collapse whitespace."""
    return " ".join(_PARENTHETICAL.sub(" ", text).split())


def format_file_name(filename: str, parent_name: str) -> str:
    """Display name for an archive inside a series folder.

    ``Foo Vol 1 (2020).cbz`` inside ``Foo (2020)`` becomes ``Vol 1``.
    """
    stem = PurePath(filename).stem
    name = strip_annotations(stem)

    series = strip_annotations(parent_name)
    if series:
        match = re.match(re.escape(series) + r"(?!\w)", name, re.IGNORECASE)
        if match:
            name = name[match.end():]

    name = name.strip().lstrip(_SEPARATORS).strip()
    if name:
        return name
    return strip_annotations(stem) or stem
