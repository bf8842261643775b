"""Filesystem watcher that reports changes to module files."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .modules.loader import MODULE_SUFFIX

LOGGER = logging.getLogger(__name__)


class ModuleWatcher:
    """Watch repository roots recursively for ``.bzl`` changes."""

    def __init__(
        self,
        roots: Iterable[Path],
        *,
        debounce_seconds: float = 0.2,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._roots = tuple(Path(root).expanduser() for root in roots)
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._callbacks: list[Callable[[Path], None]] = []
        self._debounce = max(0.0, debounce_seconds)
        self._lock = threading.Lock()

    def on_change(self, callback: Callable[[Path], None]) -> None:
        """Register callback invoked with the path of a changed module file."""

        self._callbacks.append(callback)

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            observer = self._observer_factory()
            handler = _ModuleEventHandler(self._emit, debounce_seconds=self._debounce)
            for root in self._roots:
                if not root.is_dir():
                    LOGGER.warning("Not watching missing directory %s", root)
                    continue
                observer.schedule(handler, str(root), recursive=True)
            observer.start()
            self._observer = observer

    def stop(self) -> None:
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join module observer thread")
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def _emit(self, path: Path) -> None:
        for callback in list(self._callbacks):
            try:
                callback(path)
            except Exception:  # keep the observer thread alive
                LOGGER.exception("Change callback failed for %s", path)


class _ModuleEventHandler(FileSystemEventHandler):
    """Forward module file events, collapsing bursts per path."""

    def __init__(self, callback: Callable[[Path], None], *, debounce_seconds: float) -> None:
        super().__init__()
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._recent: dict[Path, float] = {}
        self._recent_lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        self._handle(event, event.dest_path)

    def _handle(self, event: FileSystemEvent, raw_path: str | bytes) -> None:
        if event.is_directory:
            return
        path = _event_path(raw_path)
        if path.suffix != MODULE_SUFFIX:
            return
        if self._should_emit(path):
            self._callback(path)

    def _should_emit(self, path: Path) -> bool:
        if self._debounce_seconds <= 0:
            return True
        now = time.monotonic()
        with self._recent_lock:
            last = self._recent.get(path)
            if last is not None and now - last < self._debounce_seconds:
                return False
            self._recent[path] = now
            threshold = now - max(self._debounce_seconds * 4, 1.0)
            for stale in [item for item, ts in self._recent.items() if ts < threshold]:
                self._recent.pop(stale, None)
            return True


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["ModuleWatcher"]
