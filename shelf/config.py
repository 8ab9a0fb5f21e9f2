"""Config management for Shelf.

Reads `config.ini` from the data directory (``DATA_DIR`` env var, defaulting
to the project root beside main.py).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import LoggingConfig, get_logger

logger = get_logger(__name__)


def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds config.ini and shelf.log. The catalog itself is never persisted.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"
DEFAULT_LOG_FILE = DATA_DIR / "shelf.log"

IDENTITY_STRATEGIES = ("path", "inode")


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str = "My Comic Library"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 4577


@dataclasses.dataclass
class ScannerConfig:
    supported_formats: tuple[str, ...] = ("cbz", "cbr", "pdf")
    ignore_patterns: tuple[str, ...] = (".DS_Store", "Thumbs.db", "@eaDir")
    workers: int = 0  # 0 means pick from cpu count

    @property
    def max_workers(self) -> int:
        if self.workers > 0:
            return self.workers
        return min(8, os.cpu_count() or 1)


@dataclasses.dataclass
class CatalogConfig:
    identity: str = "path"


@dataclasses.dataclass
class RenderConfig:
    """Rasterization settings for paginated documents."""

    dpi: int = 240
    quality: int = 85


@dataclasses.dataclass
class MonitoringConfig:
    enabled: bool = True
    debounce_seconds: int = 2


@dataclasses.dataclass
class ShelfConfig:
    library: LibraryConfig
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    catalog: CatalogConfig = dataclasses.field(default_factory=CatalogConfig)
    render: RenderConfig = dataclasses.field(default_factory=RenderConfig)
    monitoring: MonitoringConfig = dataclasses.field(default_factory=MonitoringConfig)
    logging: LoggingConfig = dataclasses.field(default_factory=LoggingConfig)

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port


def _parse_bool(value: str, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> ShelfConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in the data directory.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    library = LibraryConfig(
        path=pathlib.Path(
            parser.get("library", "path", fallback="/path/to/comics")
        ).expanduser(),
        name=parser.get("library", "name", fallback="My Comic Library"),
    )

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=4577),
    )

    scanner = ScannerConfig(
        supported_formats=tuple(
            f.lower().lstrip(".")
            for f in _parse_list(
                parser.get("scanner", "supported_formats", fallback="cbz,cbr,pdf")
            )
        ),
        ignore_patterns=_parse_list(
            parser.get(
                "scanner",
                "ignore_patterns",
                fallback=".DS_Store,Thumbs.db,@eaDir",
            )
        ),
        workers=parser.getint("scanner", "workers", fallback=0),
    )

    identity = parser.get("catalog", "identity", fallback="path").strip().lower()
    if identity not in IDENTITY_STRATEGIES:
        logger.warning(f"Unknown identity strategy {identity!r}, using 'path'")
        identity = "path"

    render = RenderConfig(
        dpi=parser.getint("render", "dpi", fallback=240),
        quality=parser.getint("render", "quality", fallback=85),
    )

    monitoring = MonitoringConfig(
        enabled=_parse_bool(
            parser.get("monitoring", "enabled", fallback="true"), True
        ),
        debounce_seconds=parser.getint(
            "monitoring", "debounce_seconds", fallback=2
        ),
    )

    log_file = parser.get("logging", "file", fallback="").strip()
    logging_settings = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO").strip().upper(),
        file=pathlib.Path(log_file).expanduser() if log_file else DEFAULT_LOG_FILE,
        max_bytes=parser.getint("logging", "max_bytes", fallback=10 * 1024 * 1024),
        backup_count=parser.getint("logging", "backup_count", fallback=5),
    )

    return ShelfConfig(
        library=library,
        server=server,
        scanner=scanner,
        catalog=CatalogConfig(identity=identity),
        render=render,
        monitoring=monitoring,
        logging=logging_settings,
    )


def write_default_config(
    config_path: pathlib.Path, library_path: pathlib.Path, library_name: str
) -> None:
    """Write a config.ini with default settings for the given library."""
    parser = configparser.ConfigParser()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["server"] = {
        "host": "0.0.0.0",
        "port": "4577",
    }
    parser["scanner"] = {
        "supported_formats": "cbz,cbr,pdf",
        "ignore_patterns": ".DS_Store,Thumbs.db,@eaDir",
        "workers": "0",
    }
    parser["catalog"] = {
        "identity": "path",
    }
    parser["render"] = {
        "dpi": "240",
        "quality": "85",
    }
    parser["monitoring"] = {
        "enabled": "true",
        "debounce_seconds": "2",
    }
    parser["logging"] = {
        "level": "INFO",
        "file": str(DEFAULT_LOG_FILE),
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)

