"""Tests for the catalog index and the thumbnail resolver."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from shelf.catalog import Catalog, CatalogHolder
from shelf.errors import EntryNotFoundError, NotFoundError, ThumbnailNotFoundError
from shelf.models import ROOT_ID, ArchiveFormat, Directory, File
from shelf.thumbnails import resolve_thumbnail

EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _file(entry_id: str, parent_id: str) -> File:
    return File(
        id=entry_id,
        parent_id=parent_id,
        name=entry_id,
        path=Path("/lib") / f"{entry_id}.cbz",
        updated_at=EPOCH,
        archive_format=ArchiveFormat.ZIP,
        size=10,
        page_count=2,
        image_type="image/jpeg",
    )


def _tree() -> Directory:
    nested = Directory(
        id="series",
        parent_id="publisher",
        name="Series",
        path=Path("/lib/Publisher/Series"),
        updated_at=EPOCH,
        children=(_file("issue-1", "series"),),
        file_count=1,
    )
    publisher = Directory(
        id="publisher",
        parent_id=ROOT_ID,
        name="Publisher",
        path=Path("/lib/Publisher"),
        updated_at=EPOCH,
        children=(nested,),
    )
    return Directory(
        id=ROOT_ID,
        parent_id=None,
        name="lib",
        path=Path("/lib"),
        updated_at=EPOCH,
        children=(publisher, _file("one-shot", ROOT_ID)),
        file_count=1,
    )


def test_lookup_every_entry():
    catalog = Catalog(_tree())

    assert len(catalog) == 5
    assert [entry.id for entry in catalog] == [ROOT_ID, "publisher", "series", "issue-1", "one-shot"]
    for entry in catalog:
        assert catalog.lookup(entry.id) is entry
    assert "series" in catalog
    assert "missing" not in catalog


def test_lookup_unknown_id_raises_not_found():
    catalog = Catalog(_tree())
    with pytest.raises(NotFoundError):
        catalog.lookup("missing")


def test_kind_specific_lookups():
    catalog = Catalog(_tree())

    assert catalog.get_file("issue-1").page_count == 2
    assert [c.id for c in catalog.children(ROOT_ID)] == ["publisher", "one-shot"]
    with pytest.raises(EntryNotFoundError):
        catalog.get_file("series")
    with pytest.raises(EntryNotFoundError):
        catalog.get_directory("issue-1")
    assert len(catalog.files) == 2
    assert len(catalog.directories) == 3


def test_duplicate_ids_are_rejected():
    root = Directory(
        id=ROOT_ID,
        parent_id=None,
        name="lib",
        path=Path("/lib"),
        updated_at=EPOCH,
        children=(_file("same", ROOT_ID), _file("same", ROOT_ID)),
    )
    with pytest.raises(ValueError):
        Catalog(root)


def test_holder_swaps_catalogs():
    holder = CatalogHolder()
    assert not holder.ready
    with pytest.raises(RuntimeError):
        holder.get()

    first, second = Catalog(_tree()), Catalog(_tree())
    holder.replace(first)
    assert holder.get() is first
    holder.replace(second)
    assert holder.get() is second


def test_resolve_thumbnail_file_is_itself():
    issue = _file("issue-1", "series")
    assert resolve_thumbnail(issue) is issue


def test_resolve_thumbnail_descends_into_first_subdirectory():
    publisher = _tree().children[0]
    assert resolve_thumbnail(publisher).id == "issue-1"


def test_resolve_thumbnail_prefers_direct_files():
    root = _tree()
    assert resolve_thumbnail(root).id == "one-shot"


def test_resolve_thumbnail_empty_directory_raises():
    empty = Directory(
        id="empty",
        parent_id=ROOT_ID,
        name="Empty",
        path=Path("/lib/Empty"),
        updated_at=EPOCH,
    )
    with pytest.raises(ThumbnailNotFoundError):
        resolve_thumbnail(empty)
