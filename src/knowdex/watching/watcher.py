"""Filesystem watcher: one watchdog observer and one worker thread per root.

Observer callbacks only translate events and put them on the root's bounded
queue. The worker drains the queue and calls the change callback, so a slow
re-index never blocks the OS notification thread. When the queue overflows
the pending events are dropped and a full re-scan is requested instead.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from knowdex.filters.chain import FilterChain

logger = logging.getLogger(__name__)

_STOP = object()


class ChangeKind(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class WatchError(RuntimeError):
    """Watching could not be started (missing root, OS watch limit)."""


ChangeCallback = Callable[[Path, ChangeKind], None]


class _QueueingHandler(FileSystemEventHandler):
    """Translate watchdog events into ``(path, kind)`` queue items."""

    def __init__(self, watch: _RootWatch, filter_chain: FilterChain | None) -> None:
        super().__init__()
        self._watch = watch
        self._filter_chain = filter_chain

    def on_created(self, event: FileSystemEvent) -> None:
        self._offer(_decode(event.src_path), ChangeKind.CREATE)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._offer(_decode(event.src_path), ChangeKind.MODIFY)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._offer(_decode(event.src_path), ChangeKind.DELETE)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._offer(_decode(event.src_path), ChangeKind.DELETE)
        self._offer(_decode(event.dest_path), ChangeKind.CREATE)

    def _offer(self, path: Path, kind: ChangeKind) -> None:
        if (
            kind is not ChangeKind.DELETE
            and self._filter_chain is not None
            and path.name != ".gitignore"
            and self._filter_chain.should_exclude(path, self._watch.root)
        ):
            return
        try:
            self._watch.events.put_nowait((path, kind))
        except queue.Full:
            if not self._watch.overflowed.is_set():
                logger.warning("Watch queue overflow for %s; will re-scan", self._watch.root)
            self._watch.overflowed.set()


def _decode(path: str | bytes) -> Path:
    return Path(os.fsdecode(path))


@dataclass
class _RootWatch:
    root: Path
    events: queue.Queue
    overflowed: threading.Event = field(default_factory=threading.Event)
    stopping: threading.Event = field(default_factory=threading.Event)
    observer: Any = None
    worker: threading.Thread | None = None


class FileWatcher:
    """Watch folder trees and forward changes to a callback.

    Args:
        project_id: Used in thread names and log messages.
        on_change: Called from the root's worker thread for every change.
            Exceptions are logged and the loop continues.
        filter_chain: Create/modify events for excluded paths are dropped.
        on_overflow: Called once a backlog was dropped; expected to re-scan.
        on_failure: Called with a reason when a root disappears or its
            observer thread dies.
        queue_size: Capacity of each root's event queue.
        poll_interval: Seconds between root liveness checks when idle.
        observer_factory: Builds a watchdog observer (injectable for tests).
    """

    def __init__(
        self,
        project_id: str,
        on_change: ChangeCallback,
        *,
        filter_chain: FilterChain | None = None,
        on_overflow: Callable[[], None] | None = None,
        on_failure: Callable[[str], None] | None = None,
        queue_size: int = 1000,
        poll_interval: float = 0.5,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        self.project_id = project_id
        self.on_change = on_change
        self.filter_chain = filter_chain
        self.on_overflow = on_overflow
        self.on_failure = on_failure
        self.queue_size = queue_size
        self.poll_interval = poll_interval
        self._observer_factory = observer_factory
        self._watches: list[_RootWatch] = []
        self._lock = threading.Lock()
        self._failed = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return bool(self._watches)

    @property
    def roots(self) -> list[Path]:
        with self._lock:
            return [w.root for w in self._watches]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, roots: list[Path | str]) -> None:
        """Start one observer and one worker per root; no-op if running.

        Raises:
            WatchError: If a root is not a directory or the OS refuses the
                watch. Anything already started is stopped again.
        """
        with self._lock:
            if self._watches:
                logger.debug("Watcher for %s already running", self.project_id)
                return
            self._failed = False
            started: list[_RootWatch] = []
            try:
                for raw in dict.fromkeys(Path(os.path.abspath(r)) for r in roots):
                    if not raw.is_dir():
                        raise WatchError(f"Watch root is not a directory: {raw}")
                    started.append(self._start_root(raw))
            except (OSError, WatchError) as exc:
                for watch in started:
                    self._stop_root(watch)
                if isinstance(exc, WatchError):
                    raise
                raise WatchError(f"Cannot start watching: {exc}") from exc
            self._watches = started
        logger.info("Watching %d folder(s) for project %s", len(started), self.project_id)

    def stop(self) -> bool:
        """Stop every observer and worker; return False if nothing was running.

        Safe to call from a worker thread (that worker is not joined).
        """
        with self._lock:
            watches, self._watches = self._watches, []
        for watch in watches:
            self._stop_root(watch)
        if watches:
            logger.info("Stopped watching for project %s", self.project_id)
        return bool(watches)

    def _start_root(self, root: Path) -> _RootWatch:
        watch = _RootWatch(root=root, events=queue.Queue(maxsize=self.queue_size))
        observer = self._observer_factory()
        observer.schedule(_QueueingHandler(watch, self.filter_chain), str(root), recursive=True)
        observer.daemon = True
        observer.start()
        watch.observer = observer
        watch.worker = threading.Thread(
            target=self._run_worker,
            args=(watch,),
            name=f"knowdex-watch-{self.project_id}-{root.name}",
            daemon=True,
        )
        watch.worker.start()
        return watch

    def _stop_root(self, watch: _RootWatch) -> None:
        watch.stopping.set()
        try:
            watch.events.put_nowait(_STOP)
        except queue.Full:
            pass  # worker sees the stopping flag at its next poll
        if watch.observer is not None:
            watch.observer.stop()
            if watch.observer is not threading.current_thread():
                watch.observer.join(timeout=5.0)
        if watch.worker is not None and watch.worker is not threading.current_thread():
            watch.worker.join(timeout=30.0)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run_worker(self, watch: _RootWatch) -> None:
        while not watch.stopping.is_set():
            try:
                item = watch.events.get(timeout=self.poll_interval)
            except queue.Empty:
                item = None

            if item is _STOP:
                break
            if watch.overflowed.is_set():
                self._recover_overflow(watch)
                continue
            if item is not None:
                path, kind = item
                if path == watch.root and kind is ChangeKind.DELETE:
                    self._fail(f"Watch root was deleted: {watch.root}")
                    break
                self._dispatch(path, kind)
            if not watch.root.is_dir():
                self._fail(f"Watch root was deleted: {watch.root}")
                break
            if not watch.observer.is_alive() and not watch.stopping.is_set():
                # Emitter threads die when the OS revokes or refuses a watch.
                self._fail(f"Watch observer for {watch.root} stopped unexpectedly")
                break

    def _dispatch(self, path: Path, kind: ChangeKind) -> None:
        try:
            self.on_change(path, kind)
        except Exception:
            logger.exception("Error handling %s of %s", kind.value, path)

    def _recover_overflow(self, watch: _RootWatch) -> None:
        dropped = 0
        while True:
            try:
                item = watch.events.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                watch.stopping.set()
                return
            dropped += 1
        watch.overflowed.clear()
        logger.warning("Dropped %d queued events for %s; re-scanning", dropped, watch.root)
        if self.on_overflow is not None:
            try:
                self.on_overflow()
            except Exception:
                logger.exception("Re-scan after watch overflow failed")

    def _fail(self, reason: str) -> None:
        with self._lock:
            if self._failed:
                return
            self._failed = True
        logger.error("%s (project %s)", reason, self.project_id)
        if self.on_failure is not None:
            self.on_failure(reason)
        else:
            self.stop()
