"""Shared fixtures: tiny real archives built with Pillow and zipfile."""

import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image


def make_png(color: str = "red", size=(10, 10)) -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def write_cbz(path: Path, members: dict) -> Path:
    """Write a zip archive; ``members`` maps internal names to bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return path


def write_comic(path: Path, pages: int = 3) -> Path:
    colors = ["red", "green", "blue", "white", "black"]
    members = {
        f"page{n}.png": make_png(colors[(n - 1) % len(colors)])
        for n in range(1, pages + 1)
    }
    return write_cbz(path, members)


def write_pdf(path: Path, pages: int = 2) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    images = [Image.new("RGB", (20, 30), color=c) for c in ("red", "blue", "green")[:pages]]
    images[0].save(path, "PDF", save_all=True, append_images=images[1:])
    return path


def write_corrupt(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"this is not an archive")
    return path


@pytest.fixture
def library(tmp_path) -> Path:
    lib = tmp_path / "books"
    lib.mkdir()
    return lib
