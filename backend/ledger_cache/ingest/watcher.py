"""Filesystem watcher that reloads configuration files on change."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict

from watchdog.events import FileSystemEvent, PatternMatchingEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from ledger_cache.core.logging import get_logger

FileChangeCallback = Callable[[Path], None]

logger = get_logger(__name__)


@dataclass
class WatchedFile:
    id: str
    path: Path
    callback: FileChangeCallback


class FileChangeHandler(PatternMatchingEventHandler):
    """Dispatch changes of one file to its callback."""

    def __init__(self, watched: WatchedFile) -> None:
        super().__init__(
            patterns=[watched.path.name],
            ignore_directories=True,
            case_sensitive=True,
        )
        self.watched = watched

    def _dispatch_change(self, path: str) -> None:
        if Path(path).name != self.watched.path.name:
            return
        try:
            self.watched.callback(self.watched.path)
        except Exception:
            logger.exception("Reload callback for %s failed", self.watched.path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._dispatch_change(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._dispatch_change(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._dispatch_change(event.dest_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._dispatch_change(event.src_path)


class Watcher:
    """High-level wrapper around watchdog observers."""

    def __init__(self) -> None:
        self._observer: BaseObserver = Observer()
        self._lock = threading.Lock()
        self._files: Dict[str, WatchedFile] = {}
        self._started = False

    def add_file(self, watch_id: str, path: Path, callback: FileChangeCallback) -> None:
        normalized_path = path.expanduser().resolve()
        watched = WatchedFile(id=watch_id, path=normalized_path, callback=callback)
        handler = FileChangeHandler(watched)
        with self._lock:
            normalized_path.parent.mkdir(parents=True, exist_ok=True)
            self._observer.schedule(handler, str(normalized_path.parent), recursive=False)
            self._files[watch_id] = watched
        logger.info("Watching %s for changes", normalized_path)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._observer.start()
            self._started = True

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._observer.stop()
            self._observer.join(timeout=5)
            self._started = False

    def close(self) -> None:
        self.stop()
        with self._lock:
            self._observer.unschedule_all()
            self._files.clear()


__all__ = ["Watcher", "FileChangeHandler", "WatchedFile", "FileChangeCallback"]
