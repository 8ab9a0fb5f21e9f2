"""Logging setup for Shelf.

Console output goes through Rich at the configured level. When a log file is
configured every record, including per-archive probe failures logged at
debug, is also written to a rotating file.
"""

from __future__ import annotations

import dataclasses
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# Third-party loggers that are chatty at INFO/DEBUG
QUIET_LOGGERS = ("watchdog", "uvicorn.access", "PIL", "rarfile", "multipart")

_installed_handlers: List[logging.Handler] = []


@dataclasses.dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[Path] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


def _remove_installed_handlers() -> None:
    root_logger = logging.getLogger()
    while _installed_handlers:
        handler = _installed_handlers.pop()
        root_logger.removeHandler(handler)
        handler.close()


def setup_logging(
    settings: Optional[LoggingConfig] = None, level: Optional[str] = None
) -> None:
    """Install the console and (optional) file handlers on the root logger.

    ``level`` overrides the configured console level, e.g. for ``--verbose``.
    Calling again replaces the handlers from the previous call.
    """
    settings = settings or LoggingConfig()
    console_level = getattr(logging, (level or settings.level).upper(), logging.INFO)

    _remove_installed_handlers()
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    console = Console(theme=Theme({"logging.level.info": "bold cyan"}))
    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(console_level)
    _installed_handlers.append(console_handler)

    if settings.file is not None:
        settings.file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        _installed_handlers.append(file_handler)

    for handler in _installed_handlers:
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
