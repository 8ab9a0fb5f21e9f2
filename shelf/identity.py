"""Stable entry identifiers.

Two strategies, selected by ``[catalog] identity``:

- ``path``: hash of the library-relative path. Survives inode reuse and a
  library mounted at a different location.
- ``inode``: inode number plus birth time. Changes when a file is replaced
  in place under the same name. Where no birth time is reported (Linux) the
  inode change time is used, which also moves on chmod, rename and link
  count changes.
"""

from __future__ import annotations

import hashlib
import os
import unicodedata
from pathlib import Path
from typing import Callable, Optional

from .models import ROOT_ID

IdFactory = Callable[[Path, os.stat_result], str]


def path_id(path: Path, library_root: Path) -> str:
    try:
        relative = path.relative_to(library_root).as_posix()
    except ValueError:
        relative = path.as_posix()
    normalized = unicodedata.normalize("NFC", relative)
    return hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:16]


def inode_id(stat: os.stat_result) -> str:
    # st_birthtime is only reported on macOS/BSD/Windows; ctime is the
    # closest stand-in elsewhere.
    birth = getattr(stat, "st_birthtime", None)
    if birth is None:
        birth = stat.st_ctime
    return f"I{stat.st_ino}D{int(birth * 1000)}"


def make_id_factory(library_root: Path, strategy: str = "path") -> IdFactory:
    """Return ``(path, stat) -> id`` for the given strategy.

    The library root always maps to the reserved ``index`` id.
    """
    root = library_root.resolve()

    def factory(path: Path, stat: Optional[os.stat_result] = None) -> str:
        if path == root:
            return ROOT_ID
        if strategy == "inode":
            return inode_id(stat if stat is not None else path.stat())
        return path_id(path, root)

    return factory
