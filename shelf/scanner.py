"""Filesystem scanner for Shelf.

Walks the library once and builds the in-memory catalog:
- archive probes (page count, first page type) run on a bounded thread pool
- siblings are sorted only after every probe for their directory finished
- broken archives are dropped, and directories left without files are pruned
"""

from __future__ import annotations

import dataclasses
import os
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Tuple

from .archive import open_archive
from .catalog import Catalog
from .config import RenderConfig, ShelfConfig
from .errors import CorruptArchiveError, ThumbnailNotFoundError
from .identity import make_id_factory
from .logging_config import get_logger
from .models import ArchiveFormat, Directory, Entry, File, format_for_path
from .naming import format_file_name, natural_key
from .thumbnails import resolve_thumbnail
from .utils import short_path

logger = get_logger(__name__)

VOLUME_PREFIX = "Vol"


@dataclasses.dataclass
class ScanStats:
    directories: int = 0
    files: int = 0
    broken: int = 0
    pruned: int = 0

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


class ProbeResult(NamedTuple):
    page_count: int
    image_type: str


def _should_ignore(name: str, ignore_patterns: Iterable[str]) -> bool:
    """Hidden names (including macOS ``._*`` files) and configured patterns."""
    if name.startswith("."):
        return True
    return name in ignore_patterns


def _timestamp(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


def sibling_sort_key(entry: Entry):
    """Directories first, then ``Vol...`` names, then natural name order."""
    return (
        not entry.is_directory,
        not entry.name.startswith(VOLUME_PREFIX),
        natural_key(entry.name),
        entry.name,
        str(entry.path),
    )


def sort_siblings(entries: Iterable[Entry]) -> List[Entry]:
    return sorted(entries, key=sibling_sort_key)


def probe_archive(
    path: Path,
    archive_format: Optional[ArchiveFormat] = None,
    render: Optional[RenderConfig] = None,
) -> ProbeResult:
    """Validate an archive and return its page count and first page type.

    Raises if the archive is corrupt or holds no pages.
    """
    with open_archive(path, archive_format, render) as archive:
        images = archive.list_images()
    if not images:
        raise CorruptArchiveError(f"No images found in {path.name}")
    return ProbeResult(len(images), images[0].mime_type)


class CatalogBuilder:
    """Builds one immutable ``Catalog`` from a library root."""

    def __init__(
        self,
        root: Path,
        *,
        supported_formats: Optional[Iterable[str]] = None,
        ignore_patterns: Iterable[str] = (),
        identity: str = "path",
        render: Optional[RenderConfig] = None,
        max_workers: int = 4,
    ):
        self.root = Path(root).expanduser().resolve()
        self.supported_formats = (
            tuple(supported_formats) if supported_formats is not None else None
        )
        self.ignore_patterns = tuple(ignore_patterns)
        self.render = render
        self.max_workers = max(1, max_workers)
        self.stats = ScanStats()
        self._make_id = make_id_factory(self.root, identity)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._visited: set = set()
        self._seen_ids: set = set()

    @classmethod
    def from_config(cls, config: ShelfConfig) -> "CatalogBuilder":
        return cls(
            config.library_path,
            supported_formats=config.scanner.supported_formats,
            ignore_patterns=config.scanner.ignore_patterns,
            identity=config.catalog.identity,
            render=config.render,
            max_workers=config.scanner.max_workers,
        )

    def build(self) -> Catalog:
        """Scan the whole tree. Fails only if the root itself is unreadable."""
        root_stat = self.root.stat()
        if not self.root.is_dir():
            raise NotADirectoryError(f"Library path is not a directory: {self.root}")

        self.stats = ScanStats()
        self._visited = set()
        self._seen_ids = set()
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="ShelfProbe"
        ) as executor:
            self._executor = executor
            try:
                root = self._scan_directory(self.root, None, root_stat)
            finally:
                self._executor = None

        return Catalog(root)

    def _scan_directory(
        self, path: Path, parent_id: Optional[str], dir_stat: os.stat_result
    ) -> Optional[Directory]:
        entry_id = self._make_id(path, dir_stat)
        is_root = parent_id is None

        # Symlinked folders can loop back on themselves
        key = (dir_stat.st_dev, dir_stat.st_ino)
        if key in self._visited or entry_id in self._seen_ids:
            logger.warning(f"Skipping {short_path(path)} (already scanned)")
            return None
        self._visited.add(key)
        self._seen_ids.add(entry_id)

        try:
            with os.scandir(path) as it:
                dirents = sorted(it, key=lambda d: d.name)
        except OSError as exc:
            if is_root:
                raise
            logger.warning(f"Unable to list {short_path(path)}: {exc}")
            self.stats.pruned += 1
            return None

        # Submit this level's probes first so they run while we descend.
        probes: List[Future] = []
        subdirs: List[Path] = []
        for dirent in dirents:
            if _should_ignore(dirent.name, self.ignore_patterns):
                continue
            try:
                is_dir = dirent.is_dir()
            except OSError:
                continue
            if is_dir:
                subdirs.append(Path(dirent.path))
                continue
            archive_format = format_for_path(dirent.name, self.supported_formats)
            if archive_format is None:
                continue
            probes.append(
                self._executor.submit(
                    self._probe_file, Path(dirent.path), archive_format, entry_id, path.name
                )
            )

        children: List[Entry] = []
        for subdir in subdirs:
            try:
                sub_stat = subdir.stat()
            except OSError as exc:
                logger.warning(f"Unable to stat {short_path(subdir)}: {exc}")
                continue
            child = self._scan_directory(subdir, entry_id, sub_stat)
            if child is not None:
                children.append(child)

        for probe in probes:
            file_entry = probe.result()
            if file_entry is None or file_entry.broken:
                self.stats.broken += 1
                continue
            if file_entry.id in self._seen_ids:
                # Hard links share an inode, and so an id under that strategy
                logger.warning(f"Skipping {short_path(file_entry.path)} (duplicate id)")
                continue
            self._seen_ids.add(file_entry.id)
            self.stats.files += 1
            children.append(file_entry)

        children = sort_siblings(children)
        file_count = sum(1 for child in children if isinstance(child, File))

        if not children and not is_root:
            logger.debug(f"Pruned {short_path(path)} (no readable files)")
            self.stats.pruned += 1
            return None

        if children:
            updated_at = max(child.updated_at for child in children)
        else:
            updated_at = _timestamp(dir_stat.st_mtime)

        directory = Directory(
            id=entry_id,
            parent_id=parent_id,
            name=path.name or str(path),
            path=path,
            updated_at=updated_at,
            children=tuple(children),
            file_count=file_count,
        )
        try:
            image_type = resolve_thumbnail(directory).image_type
        except ThumbnailNotFoundError:
            image_type = None

        self.stats.directories += 1
        logger.debug(f"[SCAN] {short_path(path)} ({file_count} files)")
        return dataclasses.replace(directory, image_type=image_type)

    def _probe_file(
        self,
        path: Path,
        archive_format: ArchiveFormat,
        parent_id: str,
        parent_name: str,
    ) -> Optional[File]:
        try:
            stat = path.stat()
        except OSError as exc:
            logger.debug(f"✗ {short_path(path)} - vanished during scan: {exc}")
            return None

        page_count, image_type, broken = 0, "", False
        try:
            page_count, image_type = probe_archive(path, archive_format, self.render)
        except Exception as exc:
            logger.debug(f"✗ {short_path(path)} - BROKEN: {exc}")
            broken = True

        return File(
            id=self._make_id(path, stat),
            parent_id=parent_id,
            name=format_file_name(path.name, parent_name),
            path=path,
            updated_at=_timestamp(stat.st_mtime),
            archive_format=archive_format,
            size=stat.st_size,
            page_count=page_count,
            image_type=image_type,
            broken=broken,
        )


def build_catalog(root: Path, **options) -> Catalog:
    """Build a catalog for ``root``; see ``CatalogBuilder`` for options."""
    return CatalogBuilder(root, **options).build()


def scan_library(config: ShelfConfig) -> Tuple[Catalog, ScanStats]:
    """Build the catalog for the configured library and log a summary."""
    base = config.library_path.expanduser().resolve()
    if not base.exists():
        raise FileNotFoundError(f"Library path does not exist: {base}")

    builder = CatalogBuilder.from_config(config)
    catalog = builder.build()
    stats = builder.stats
    logger.info(
        f"Catalog built: {stats.directories} folders, {stats.files} files, "
        f"{stats.broken} broken, {stats.pruned} pruned."
    )
    return catalog, stats
