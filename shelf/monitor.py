"""Filesystem monitoring for Shelf.

Uses Watchdog to notice archives and folders appearing, changing or
disappearing. Catalog entries are immutable, so a burst of events is
collapsed into a single full rebuild that replaces the live catalog.
"""

from __future__ import annotations

import queue
import time
from collections import Counter
from pathlib import Path
from threading import Event, Thread
from typing import Callable, Dict, List, NamedTuple, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .catalog import CatalogHolder
from .config import ShelfConfig
from .logging_config import get_logger
from .models import format_for_path
from .scanner import scan_library
from .utils import short_path

logger = get_logger(__name__)

BATCH_WINDOW = 1.0  # Seconds to wait for more events


class MonitorTask(NamedTuple):
    action: str
    path: Path


def _is_hidden(path: Path) -> bool:
    # Covers macOS ._* files and editor temp files
    return path.name.startswith(".")


class LibraryEventHandler(FileSystemEventHandler):
    """Handle filesystem events and push them to a processing queue."""

    def __init__(
        self,
        task_queue: queue.Queue,
        debounce_seconds: int = 2,
        supported_formats: Optional[tuple] = None,
    ):
        super().__init__()
        self.task_queue = task_queue
        self.debounce_seconds = debounce_seconds
        self.supported_formats = supported_formats
        self._last_modified: Dict[str, float] = {}

    def _is_archive(self, path: Path) -> bool:
        return format_for_path(path, self.supported_formats) is not None

    def on_created(self, event: FileSystemEvent) -> None:
        path = Path(event.src_path)
        if _is_hidden(path):
            return

        if event.is_directory or self._is_archive(path):
            self.task_queue.put(MonitorTask("created", path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = Path(event.src_path)
        if _is_hidden(path):
            return

        # A deleted path can no longer be inspected; folders have no suffix.
        if event.is_directory or self._is_archive(path) or not path.suffix:
            self.task_queue.put(MonitorTask("deleted", path))

    def on_moved(self, event: FileSystemEvent) -> None:
        src_path = Path(event.src_path)
        dest_path = Path(event.dest_path)

        if _is_hidden(src_path) and _is_hidden(dest_path):
            return

        self.task_queue.put(MonitorTask("moved", dest_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        path = Path(event.src_path)
        if _is_hidden(path) or not self._is_archive(path):
            return

        # Simple debounce for files that are still being written
        now = time.time()
        key = str(path)
        last = self._last_modified.get(key, 0)
        if now - last < self.debounce_seconds:
            return

        self._last_modified[key] = now
        self.task_queue.put(MonitorTask("modified", path))

        # Prune stale entries to prevent unbounded growth
        cutoff = now - self.debounce_seconds * 2
        self._last_modified = {
            k: v for k, v in self._last_modified.items() if v > cutoff
        }


def drain_batch(
    task_queue: queue.Queue,
    first_task: MonitorTask,
    window: float = BATCH_WINDOW,
) -> List[MonitorTask]:
    """Collect every task that arrives within ``window`` seconds."""
    batch = [first_task]
    start_time = time.time()

    while (time.time() - start_time) < window:
        try:
            batch.append(task_queue.get_nowait())
        except queue.Empty:
            time.sleep(0.1)

    for _ in range(len(batch)):
        try:
            task_queue.task_done()
        except ValueError:
            pass  # more task_done calls than puts
    return batch


def describe_batch(batch: List[MonitorTask]) -> str:
    """Summarize a batch as e.g. ``2 created, 1 deleted``."""
    counts = Counter(task.action for task in batch)
    return ", ".join(f"{count} {action}" for action, count in sorted(counts.items()))


def rebuild_catalog(config: ShelfConfig, holder: CatalogHolder) -> bool:
    """Rebuild from disk and swap it in; keep the old catalog on failure."""
    try:
        catalog, _ = scan_library(config)
    except Exception as exc:
        logger.error(f"✗ Rebuild failed, keeping previous catalog: {exc}")
        return False
    holder.replace(catalog)
    return True


def process_queue(
    task_queue: queue.Queue,
    rebuild: Callable[[], bool],
    stop_event: Event,
    window: float = BATCH_WINDOW,
) -> None:
    """Worker loop: one rebuild per batch of filesystem events."""
    while not stop_event.is_set():
        try:
            first_task = task_queue.get(timeout=1.0)
        except queue.Empty:
            continue

        batch = drain_batch(task_queue, first_task, window)
        logger.info(f"[~] Library changed ({describe_batch(batch)}), rebuilding catalog")
        for task in batch:
            logger.debug(f"    {task.action}: {short_path(task.path)}")
        rebuild()


def start_file_monitoring(
    config: ShelfConfig, holder: CatalogHolder
) -> Optional[Observer]:
    """Start filesystem monitoring if enabled in config."""
    if not config.monitoring.enabled:
        return None

    library_path = config.library_path
    if not library_path.exists():
        logger.error(f"Library path does not exist: {library_path}")
        return None

    task_queue: queue.Queue = queue.Queue()
    stop_event = Event()
    window = max(BATCH_WINDOW, float(config.monitoring.debounce_seconds))

    worker = Thread(
        target=process_queue,
        args=(task_queue, lambda: rebuild_catalog(config, holder), stop_event, window),
        daemon=True,
        name="ShelfMonitorWorker",
    )
    worker.start()

    event_handler = LibraryEventHandler(
        task_queue,
        config.monitoring.debounce_seconds,
        config.scanner.supported_formats,
    )

    observer = Observer()
    observer.schedule(event_handler, str(library_path), recursive=True)
    observer.start()

    return observer
