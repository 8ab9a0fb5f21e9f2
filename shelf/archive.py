"""Archive handling for Shelf.

Provides one interface for listing and extracting page images from CBZ (Zip),
CBR (Rar) and PDF files. Pages are ordered naturally by their path inside the
archive; a PDF page is rasterized to JPEG on demand.
"""

from __future__ import annotations

import io
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol

import pymupdf
import rarfile
from PIL import Image

from .config import RenderConfig
from .errors import CorruptArchiveError, PageNotFoundError, RenderError
from .models import ArchiveFormat, ImageInfo, PageImage, format_for_path
from .naming import guess_mime_type, natural_key


def _is_visible_image(member_name: str) -> bool:
    basename = PurePosixPath(member_name.replace("\\", "/")).name
    if not basename or basename.startswith("."):
        return False
    mime_type = guess_mime_type(basename)
    return mime_type is not None and mime_type.startswith("image/")


def _member_sort_key(member_name: str):
    return natural_key(member_name), member_name


def _check_index(index: int, page_count: int) -> None:
    if index < 0 or index >= page_count:
        raise PageNotFoundError(index, page_count)


class Archive(Protocol):
    path: Path

    @property
    def page_count(self) -> int:
        ...

    def list_images(self) -> List[ImageInfo]:
        ...

    def extract_image(self, index: int) -> PageImage:
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "Archive":
        ...

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        ...


class ZipArchive:
    def __init__(self, path: Path):
        self.path = path
        try:
            self.zf = zipfile.ZipFile(path, mode="r")
        except zipfile.BadZipFile as exc:
            raise CorruptArchiveError(f"Not a readable zip archive: {path.name}") from exc
        self._members: Optional[List[zipfile.ZipInfo]] = None

    def _images(self) -> List[zipfile.ZipInfo]:
        if self._members is None:
            members = [
                info
                for info in self.zf.infolist()
                if not info.is_dir() and _is_visible_image(info.filename)
            ]
            members.sort(key=lambda info: _member_sort_key(info.filename))
            self._members = members
        return self._members

    @property
    def page_count(self) -> int:
        return len(self._images())

    def list_images(self) -> List[ImageInfo]:
        return [
            ImageInfo(info.filename, guess_mime_type(info.filename))
            for info in self._images()
        ]

    def extract_image(self, index: int) -> PageImage:
        members = self._images()
        _check_index(index, len(members))
        info = members[index]
        try:
            data = self.zf.read(info)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as exc:
            raise CorruptArchiveError(
                f"Unable to read {info.filename} from {self.path.name}"
            ) from exc
        return PageImage(guess_mime_type(info.filename), data)

    def close(self) -> None:
        self.zf.close()

    def __enter__(self) -> "ZipArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class RarArchive:
    def __init__(self, path: Path):
        self.path = path
        try:
            self.rf = rarfile.RarFile(path, mode="r")
        except rarfile.Error as exc:
            raise CorruptArchiveError(f"Not a readable rar archive: {path.name}") from exc
        self._members: Optional[list] = None

    def _images(self) -> list:
        if self._members is None:
            try:
                infos = self.rf.infolist()
            except rarfile.Error as exc:
                raise CorruptArchiveError(f"Unable to list {self.path.name}") from exc
            members = [
                info
                for info in infos
                if not info.is_dir() and _is_visible_image(info.filename)
            ]
            members.sort(key=lambda info: _member_sort_key(info.filename))
            self._members = members
        return self._members

    @property
    def page_count(self) -> int:
        return len(self._images())

    def list_images(self) -> List[ImageInfo]:
        return [
            ImageInfo(info.filename, guess_mime_type(info.filename))
            for info in self._images()
        ]

    def extract_image(self, index: int) -> PageImage:
        members = self._images()
        _check_index(index, len(members))
        info = members[index]
        # Decompressed per request; nothing is extracted ahead of time.
        try:
            data = self.rf.read(info)
        except rarfile.Error as exc:
            raise CorruptArchiveError(
                f"Unable to read {info.filename} from {self.path.name}"
            ) from exc
        return PageImage(guess_mime_type(info.filename), data)

    def close(self) -> None:
        self.rf.close()

    def __enter__(self) -> "RarArchive":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class PdfDocument:
    """Paginated document; every page is an implicit JPEG image."""

    MIME_TYPE = "image/jpeg"

    def __init__(self, path: Path, dpi: int = 240, quality: int = 85):
        self.path = path
        self.dpi = dpi
        self.quality = quality
        try:
            self.doc = pymupdf.open(path)
        except Exception as exc:
            # PyMuPDF reports format problems with several exception types.
            raise CorruptArchiveError(f"Not a readable document: {path.name}") from exc
        if self.doc.needs_pass:
            self.doc.close()
            raise CorruptArchiveError(f"Document is encrypted: {path.name}")

    @property
    def page_count(self) -> int:
        return self.doc.page_count

    def list_images(self) -> List[ImageInfo]:
        return [
            ImageInfo(f"page-{number:04d}", self.MIME_TYPE)
            for number in range(1, self.page_count + 1)
        ]

    def extract_image(self, index: int) -> PageImage:
        _check_index(index, self.page_count)
        try:
            page = self.doc.load_page(index)
            pix = page.get_pixmap(dpi=self.dpi, alpha=False)
            image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=self.quality)
        except (RuntimeError, ValueError, OSError) as exc:
            raise RenderError(
                f"Unable to render page {index + 1} of {self.path.name}"
            ) from exc
        return PageImage(self.MIME_TYPE, buffer.getvalue())

    def close(self) -> None:
        self.doc.close()

    def __enter__(self) -> "PdfDocument":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_archive(
    path: Path,
    archive_format: Optional[ArchiveFormat] = None,
    render: Optional[RenderConfig] = None,
) -> Archive:
    """Open an archive, detecting format by extension with fallback.

    Zip and rar containers are tried as declared first; if that fails the
    other container is tried (handles misnamed .cbz/.cbr files).
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    archive_format = archive_format or format_for_path(path)
    if archive_format is None:
        raise ValueError(f"Unsupported archive format: {path.suffix}")

    if archive_format is ArchiveFormat.DOCUMENT:
        render = render or RenderConfig()
        return PdfDocument(path, dpi=render.dpi, quality=render.quality)

    if archive_format is ArchiveFormat.ZIP:
        primary, fallback = ZipArchive, RarArchive
    else:
        primary, fallback = RarArchive, ZipArchive

    try:
        return primary(path)
    except CorruptArchiveError as exc:
        try:
            return fallback(path)
        except CorruptArchiveError:
            raise exc


def read_page(
    path: Path,
    archive_format: ArchiveFormat,
    index: int,
    render: Optional[RenderConfig] = None,
) -> PageImage:
    """Open the archive, extract one page and close it again."""
    with open_archive(path, archive_format, render) as archive:
        return archive.extract_image(index)
