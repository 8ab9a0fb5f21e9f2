"""Tests for the catalog builder."""

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from shelf.config import LibraryConfig, ScannerConfig, ShelfConfig
from shelf.models import ROOT_ID, ArchiveFormat, Directory, File
from shelf.scanner import CatalogBuilder, build_catalog, scan_library, sort_siblings
from shelf.thumbnails import get_thumbnail, resolve_thumbnail

from conftest import make_png, write_cbz, write_comic, write_corrupt, write_pdf

EPOCH = datetime(2020, 1, 1, tzinfo=timezone.utc)


def _file(name: str) -> File:
    return File(
        id=f"f-{name}",
        parent_id=ROOT_ID,
        name=name,
        path=Path("/lib") / f"{name}.cbz",
        updated_at=EPOCH,
        archive_format=ArchiveFormat.ZIP,
        size=1,
        page_count=1,
        image_type="image/png",
    )


def _dir(name: str) -> Directory:
    return Directory(
        id=f"d-{name}",
        parent_id=ROOT_ID,
        name=name,
        path=Path("/lib") / name,
        updated_at=EPOCH,
    )


def test_sort_siblings_natural_volume_order():
    entries = [_file("Vol 10"), _file("Vol 2"), _file("Vol 1")]
    assert [e.name for e in sort_siblings(entries)] == ["Vol 1", "Vol 2", "Vol 10"]


def test_sort_siblings_directories_first_then_volumes():
    entries = [_file("Annual"), _file("Vol 2"), _dir("Zeta"), _dir("Alpha"), _file("Vol 1")]
    ordered = sort_siblings(entries)
    assert [e.name for e in ordered] == ["Alpha", "Zeta", "Vol 1", "Vol 2", "Annual"]


def test_end_to_end_series_with_one_corrupt_volume(library):
    series = library / "Series (2021)"
    colors = {"p1.png": make_png("red"), "p2.png": make_png("green"), "p3.png": make_png("blue")}
    write_cbz(series / "Series Vol 1 (2021).cbz", colors)
    write_corrupt(series / "Series Vol 2 (2021).cbz")

    builder = CatalogBuilder(library)
    catalog = builder.build()

    assert catalog.root.id == ROOT_ID
    assert [child.name for child in catalog.root.children] == ["Series (2021)"]

    series_dir = catalog.root.children[0]
    assert isinstance(series_dir, Directory)
    assert [child.name for child in series_dir.children] == ["Vol 1"]
    assert series_dir.file_count == 1
    assert series_dir.image_type == "image/png"

    volume = series_dir.children[0]
    assert volume.page_count == 3
    assert volume.parent_id == series_dir.id
    assert resolve_thumbnail(series_dir) is volume
    assert get_thumbnail(series_dir).data == colors["p1.png"]

    assert builder.stats.broken == 1
    assert builder.stats.files == 1


def test_directory_with_only_broken_file_is_pruned(library):
    write_corrupt(library / "Broken" / "Broken 1.cbz")
    write_comic(library / "Good" / "Good 1.cbz")

    catalog = build_catalog(library)

    names = [child.name for child in catalog.root.children]
    assert names == ["Good"]
    broken_paths = {entry.path for entry in catalog}
    assert (library / "Broken").resolve() not in broken_paths
    assert len(catalog) == 3  # root, Good, Good 1


def test_directory_with_only_subdirectories_is_kept(library):
    write_comic(library / "Publisher" / "Series" / "Series 1.cbz")

    catalog = build_catalog(library)

    publisher = catalog.root.children[0]
    assert publisher.name == "Publisher"
    assert publisher.file_count == 0
    nested = resolve_thumbnail(publisher)
    assert nested.name == "1"
    assert publisher.image_type == "image/png"


def test_ids_are_stable_across_rebuilds(library):
    write_comic(library / "A" / "A 1.cbz")
    write_comic(library / "A" / "A 2.cbz")
    write_pdf(library / "B" / "B 1.pdf")

    first = {entry.path: entry.id for entry in build_catalog(library)}
    second = {entry.path: entry.id for entry in build_catalog(library)}

    assert first == second
    assert len(set(first.values())) == len(first)


def test_inode_identity_strategy(library):
    write_comic(library / "A" / "A 1.cbz")

    catalog = build_catalog(library, identity="inode")

    ids = [entry.id for entry in catalog]
    assert ids[0] == ROOT_ID
    assert all(entry_id.startswith("I") for entry_id in ids[1:])


def test_files_sorted_naturally_within_series(library):
    for n in (10, 2, 1):
        write_comic(library / "X" / f"X Vol {n}.cbz", pages=1)
    write_comic(library / "X" / "X Annual.cbz", pages=1)
    write_comic(library / "X" / "Extras" / "Sketches.cbz", pages=1)

    catalog = build_catalog(library, max_workers=2)

    series = catalog.root.children[0]
    assert [c.name for c in series.children] == ["Extras", "Vol 1", "Vol 2", "Vol 10", "Annual"]
    assert series.file_count == 4
    # the first file directly inside wins over the leading subdirectory
    assert resolve_thumbnail(series).name == "Vol 1"


def test_ignores_hidden_unknown_and_disabled_formats(library):
    write_comic(library / "S" / "S 1.cbz")
    write_comic(library / "S" / "._S 1.cbz")
    write_comic(library / ".hidden" / "H 1.cbz")
    (library / "S" / "notes.txt").write_text("hi")
    write_pdf(library / "S" / "S 2.pdf")

    catalog = build_catalog(library, supported_formats=("cbz",))

    series = catalog.root.children
    assert [d.name for d in series] == ["S"]
    assert [f.name for f in series[0].children] == ["1"]


def test_ignore_patterns_skip_folders(library):
    write_comic(library / "@eaDir" / "thumb.cbz")
    write_comic(library / "Real" / "Real 1.cbz")

    catalog = build_catalog(library, ignore_patterns=("@eaDir",))

    assert [d.name for d in catalog.root.children] == ["Real"]


def test_directory_updated_at_is_latest_child(library):
    old = write_comic(library / "S" / "S 1.cbz")
    new = write_comic(library / "S" / "S 2.cbz")
    os.utime(old, (1_500_000_000, 1_500_000_000))
    os.utime(new, (1_600_000_000, 1_600_000_000))

    catalog = build_catalog(library)

    series = catalog.root.children[0]
    assert series.updated_at == datetime.fromtimestamp(1_600_000_000, tz=timezone.utc)
    assert catalog.root.updated_at == series.updated_at


def test_pdf_files_are_catalogued(library):
    write_pdf(library / "Docs" / "Manual.pdf", pages=2)

    catalog = build_catalog(library)

    doc = catalog.root.children[0].children[0]
    assert doc.archive_format is ArchiveFormat.DOCUMENT
    assert doc.page_count == 2
    assert doc.image_type == "image/jpeg"
    assert doc.media_type == "application/pdf"


def test_empty_archive_is_broken(library):
    write_cbz(library / "S" / "S 1.cbz", {"readme.txt": b"no pages"})

    builder = CatalogBuilder(library)
    catalog = builder.build()

    assert catalog.root.children == ()
    assert builder.stats.broken == 1


def test_empty_root_is_still_indexed(library):
    catalog = build_catalog(library)

    assert len(catalog) == 1
    assert catalog.root.file_count == 0
    assert catalog.root.image_type is None


def test_missing_root_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_catalog(tmp_path / "nope")


def test_scan_library_reports_stats(library):
    write_comic(library / "S" / "S 1.cbz")
    write_corrupt(library / "S" / "S 2.cbz")
    write_corrupt(library / "T" / "T 1.cbz")
    config = ShelfConfig(
        library=LibraryConfig(path=library, name="Test"),
        scanner=ScannerConfig(workers=2),
    )

    catalog, stats = scan_library(config)

    assert stats.as_dict() == {"directories": 2, "files": 1, "broken": 2, "pruned": 1}
    assert len(catalog) == 3


def test_symlink_loop_is_scanned_once(library):
    write_comic(library / "S" / "S 1.cbz")
    os.symlink(library, library / "S" / "loop", target_is_directory=True)

    catalog = build_catalog(library)

    series = catalog.root.children[0]
    assert [c.name for c in series.children] == ["1"]
