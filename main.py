"""Shelf CLI entry point."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Optional

import typer

from shelf.catalog import CatalogHolder
from shelf.config import DEFAULT_CONFIG_PATH, LibraryConfig, ShelfConfig, load_config, write_default_config
from shelf.logging_config import setup_logging
from shelf.monitor import start_file_monitoring
from shelf.opds import run_server
from shelf.scanner import scan_library


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Shelf comic catalog CLI")
logger = logging.getLogger("shelf")

STARTUP_BANNER = r"""
     _          _  __
 ___| |__   ___| |/ _|
/ __| '_ \ / _ \ | |_
\__ \ | | |  __/ |  _|
|___/_| |_|\___|_|_|
"""


def _ensure_config(library_path: Optional[Path] = None) -> ShelfConfig:
    """Load config.ini; ``library_path`` overrides the configured library."""
    try:
        config = load_config()
    except FileNotFoundError:
        if library_path is not None:
            return ShelfConfig(library=LibraryConfig(path=library_path.expanduser()))
        typer.echo("[ERROR] config.ini not found. Run: shelf init --library /path/to/comics")
        raise typer.Exit(code=1)
    if library_path is not None:
        config = dataclasses.replace(
            config, library=dataclasses.replace(config.library, path=library_path.expanduser())
        )
    return config


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your comics folder"),
    name: str = typer.Option("My Comic Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    write_default_config(config_path, library, name)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan(
    path: Optional[Path] = typer.Option(None, "--path", help="Scan this folder instead of the configured library"),
    verbose: bool = typer.Option(False, "--verbose", help="Log every folder and broken file"),
) -> None:
    """Build the catalog once and report what was found."""
    config = _ensure_config(path)
    setup_logging(config.logging, level="DEBUG" if verbose else None)
    try:
        catalog, stats = scan_library(config)
    except OSError as exc:
        typer.echo(f"[ERROR] Unable to read library: {exc}")
        raise typer.Exit(code=1)

    typer.echo(
        "✓ Scan completed: "
        f"{stats.directories} folders, "
        f"{stats.files} files, "
        f"{stats.broken} broken, "
        f"{stats.pruned} empty folders skipped."
    )
    typer.echo(f"  Catalog entries: {len(catalog)}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
    no_watch: bool = typer.Option(False, "--no-watch", help="Disable file monitoring"),
) -> None:
    """Build the catalog and start the OPDS server."""
    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.CYAN, bold=True))
    config = _ensure_config()
    setup_logging(config.logging)

    logger.info("Building catalog...")
    try:
        catalog, _ = scan_library(config)
    except OSError as exc:
        logger.error(f"Unable to read library: {exc}")
        raise typer.Exit(code=1)
    holder = CatalogHolder(catalog)

    observer = None
    if not no_watch and config.monitoring.enabled:
        observer = start_file_monitoring(config, holder)
    elif no_watch:
        logger.info("File monitoring disabled")

    try:
        run_server(config, holder, host=host, port=port, monitoring_enabled=observer is not None)
    except KeyboardInterrupt:
        pass
    finally:
        if observer:
            observer.stop()
            observer.join()


if __name__ == "__main__":
    app()
