"""The catalog index: every built entry, addressable by id.

A ``Catalog`` is an arena (entries in depth-first build order) plus an
id -> position map. It is never mutated once constructed; a filesystem
change produces a new catalog that replaces the old one in a
``CatalogHolder``.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Iterator, Optional, Tuple

from .errors import EntryNotFoundError
from .models import Directory, Entry, File


def _walk(root: Directory) -> Iterator[Entry]:
    stack: list[Entry] = [root]
    while stack:
        entry = stack.pop()
        yield entry
        if isinstance(entry, Directory):
            stack.extend(reversed(entry.children))


class Catalog:
    def __init__(self, root: Directory, entries: Optional[Iterable[Entry]] = None):
        self.root = root
        self._entries: Tuple[Entry, ...] = tuple(
            entries if entries is not None else _walk(root)
        )
        positions: Dict[str, int] = {}
        for position, entry in enumerate(self._entries):
            if entry.id in positions:
                raise ValueError(f"Duplicate entry id {entry.id!r} ({entry.path})")
            positions[entry.id] = position
        self._positions = positions

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._positions

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def lookup(self, entry_id: str) -> Entry:
        position = self._positions.get(entry_id)
        if position is None:
            raise EntryNotFoundError(entry_id)
        return self._entries[position]

    def get_directory(self, entry_id: str) -> Directory:
        entry = self.lookup(entry_id)
        if not isinstance(entry, Directory):
            raise EntryNotFoundError(entry_id, kind="directory")
        return entry

    def get_file(self, entry_id: str) -> File:
        entry = self.lookup(entry_id)
        if not isinstance(entry, File):
            raise EntryNotFoundError(entry_id, kind="file")
        return entry

    def children(self, entry_id: str) -> Tuple[Entry, ...]:
        return self.get_directory(entry_id).children

    @property
    def files(self) -> Tuple[File, ...]:
        return tuple(entry for entry in self._entries if isinstance(entry, File))

    @property
    def directories(self) -> Tuple[Directory, ...]:
        return tuple(
            entry for entry in self._entries if isinstance(entry, Directory)
        )


class CatalogHolder:
    """Owns the live catalog; rebuilds are swapped in whole."""

    def __init__(self, catalog: Optional[Catalog] = None):
        self._catalog = catalog
        self._lock = threading.Lock()

    def get(self) -> Catalog:
        with self._lock:
            catalog = self._catalog
        if catalog is None:
            raise RuntimeError("Catalog has not been built yet")
        return catalog

    def replace(self, catalog: Catalog) -> None:
        with self._lock:
            self._catalog = catalog

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._catalog is not None
