"""Library folder watcher for opportunistic uploads.

This module provides:
- LibraryWatcher: Watches the library folder using watchdog
- NewImageHandler: Collects new images and enqueues them once they settle

New or moved-in images are handed to the scheduler after a short settle
delay, so files still being copied are not hashed half-written. The
periodic poll still covers anything the watcher misses.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from photomirror.client.library import FolderPhotoLibrary
    from photomirror.client.sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_DELAY = 2.0  # seconds


def _event_path(raw: str | bytes) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return Path(raw)


class NewImageHandler(FileSystemEventHandler):
    """Event handler that enqueues new images after a settle delay."""

    def __init__(
        self,
        library: FolderPhotoLibrary,
        scheduler: SyncScheduler,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        super().__init__()
        self._library = library
        self._scheduler = scheduler
        self._settle_delay = settle_delay

        self._pending: set[Path] = set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def _schedule_flush(self) -> None:
        """Restart the settle timer (lock held)."""
        if self._timer:
            self._timer.cancel()
        self._timer = threading.Timer(self._settle_delay, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def _add(self, path: Path) -> None:
        if not self._library.is_image(path):
            return
        with self._lock:
            self._pending.add(path)
            self._schedule_flush()

    def flush(self) -> int:
        """Enqueue every pending image.

        Returns:
            Number of images admitted by the queue.
        """
        with self._lock:
            paths = sorted(self._pending)
            self._pending.clear()
            self._timer = None

        admitted = 0
        for path in paths:
            asset = self._library.asset_for_path(path.resolve())
            if asset is None:
                continue
            if self._scheduler.enqueue(asset):
                admitted += 1
                logger.debug("Watcher queued %s", asset.asset_id)
        if admitted:
            logger.info("Watcher queued %d new images", admitted)
        return admitted

    def on_created(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileCreatedEvent):
            self._add(_event_path(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        # Extends the settle delay of files still being written
        if isinstance(event, FileModifiedEvent):
            path = _event_path(event.src_path)
            with self._lock:
                if path in self._pending:
                    self._schedule_flush()

    def on_moved(self, event: FileSystemEvent) -> None:
        if isinstance(event, FileMovedEvent):
            self._add(_event_path(event.dest_path))

    def stop(self) -> None:
        """Cancel the pending flush."""
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()


class LibraryWatcher:
    """Watches a library folder and feeds new images to the scheduler."""

    def __init__(
        self,
        library: FolderPhotoLibrary,
        scheduler: SyncScheduler,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        """Initialize the watcher.

        Args:
            library: Folder library to watch.
            scheduler: Scheduler receiving new assets.
            settle_delay: Quiet time before a new file is enqueued.

        Raises:
            ValueError: If the library folder does not exist.
        """
        if not library.root.is_dir():
            raise ValueError(f"Library path must be a directory: {library.root}")

        self._library = library
        self._handler = NewImageHandler(library, scheduler, settle_delay)
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def handler(self) -> NewImageHandler:
        return self._handler

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start watching for new images."""
        if self._running:
            return
        self._observer.schedule(self._handler, str(self._library.root), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s for new images", self._library.root)

    def stop(self) -> None:
        """Stop watching."""
        if not self._running:
            return
        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> LibraryWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
