"""Tests for FileWatcher with an in-process fake observer."""

from __future__ import annotations

import queue
import threading
import time

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from knowdex.filters import FilterChain, HiddenPathFilter
from knowdex.watching import ChangeKind, FileWatcher, WatchError


class FakeObserver:
    """Records the scheduled handler; tests call its on_* methods directly."""

    created: list[FakeObserver] = []

    def __init__(self) -> None:
        self.handler = None
        self.path = None
        self.daemon = False
        self.started = False
        self.stopped = False
        self.dead = False
        FakeObserver.created.append(self)

    def schedule(self, handler, path, recursive=False):
        self.handler = handler
        self.path = path

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self.started and not self.stopped and not self.dead


@pytest.fixture(autouse=True)
def _reset_observers():
    FakeObserver.created = []


@pytest.fixture
def received():
    return queue.Queue()


def _watcher(received, **kwargs) -> FileWatcher:
    kwargs.setdefault("poll_interval", 0.05)
    return FileWatcher(
        "proj",
        lambda path, kind: received.put((path, kind)),
        observer_factory=FakeObserver,
        **kwargs,
    )


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# ------------------------------------------------------------------
# Lifecycle
# ------------------------------------------------------------------


def test_start_requires_directory(tmp_path, received):
    watcher = _watcher(received)
    with pytest.raises(WatchError, match="not a directory"):
        watcher.start([tmp_path / "missing"])
    assert not watcher.is_running


def test_start_failure_stops_already_started_roots(tmp_path, received):
    good = tmp_path / "good"
    good.mkdir()
    watcher = _watcher(received)
    with pytest.raises(WatchError):
        watcher.start([good, tmp_path / "missing"])
    assert FakeObserver.created[0].stopped


def test_start_and_stop(tmp_path, received):
    watcher = _watcher(received)
    watcher.start([tmp_path, tmp_path])
    assert watcher.is_running
    assert watcher.roots == [tmp_path]
    [observer] = FakeObserver.created
    assert observer.started and observer.daemon
    assert observer.path == str(tmp_path)

    watcher.start([tmp_path])  # already running: no new observer
    assert len(FakeObserver.created) == 1

    assert watcher.stop() is True
    assert observer.stopped
    assert not watcher.is_running
    assert watcher.stop() is False


# ------------------------------------------------------------------
# Event translation
# ------------------------------------------------------------------


def test_events_forwarded_in_order(tmp_path, received):
    watcher = _watcher(received)
    watcher.start([tmp_path])
    handler = FakeObserver.created[0].handler
    a, b = tmp_path / "a.md", tmp_path / "b.md"
    try:
        handler.on_created(FileCreatedEvent(str(a)))
        handler.on_modified(FileModifiedEvent(str(a)))
        handler.on_moved(FileMovedEvent(str(a), str(b)))
        handler.on_deleted(FileDeletedEvent(str(b)))
        got = [received.get(timeout=3) for _ in range(5)]
    finally:
        watcher.stop()
    assert got == [
        (a, ChangeKind.CREATE),
        (a, ChangeKind.MODIFY),
        (a, ChangeKind.DELETE),
        (b, ChangeKind.CREATE),
        (b, ChangeKind.DELETE),
    ]


def test_directory_modify_ignored(tmp_path, received):
    watcher = _watcher(received)
    watcher.start([tmp_path])
    handler = FakeObserver.created[0].handler
    try:
        handler.on_modified(DirModifiedEvent(str(tmp_path / "sub")))
        handler.on_created(FileCreatedEvent(str(tmp_path / "marker.md")))
        assert received.get(timeout=3) == (tmp_path / "marker.md", ChangeKind.CREATE)
    finally:
        watcher.stop()
    assert received.empty()


def test_excluded_paths_dropped_except_deletes(tmp_path, received):
    watcher = _watcher(received, filter_chain=FilterChain([HiddenPathFilter()]))
    watcher.start([tmp_path])
    handler = FakeObserver.created[0].handler
    hidden = tmp_path / ".cache.md"
    try:
        handler.on_created(FileCreatedEvent(str(hidden)))
        handler.on_created(FileCreatedEvent(str(tmp_path / ".gitignore")))
        handler.on_deleted(FileDeletedEvent(str(hidden)))
        got = [received.get(timeout=3) for _ in range(2)]
    finally:
        watcher.stop()
    assert got == [(tmp_path / ".gitignore", ChangeKind.CREATE), (hidden, ChangeKind.DELETE)]


def test_callback_errors_do_not_stop_worker(tmp_path):
    seen = queue.Queue()

    def flaky(path, kind):
        seen.put(path)
        if path.name == "bad.md":
            raise RuntimeError("boom")

    watcher = FileWatcher("proj", flaky, observer_factory=FakeObserver, poll_interval=0.05)
    watcher.start([tmp_path])
    handler = FakeObserver.created[0].handler
    try:
        handler.on_created(FileCreatedEvent(str(tmp_path / "bad.md")))
        handler.on_created(FileCreatedEvent(str(tmp_path / "good.md")))
        assert seen.get(timeout=3).name == "bad.md"
        assert seen.get(timeout=3).name == "good.md"
    finally:
        watcher.stop()


# ------------------------------------------------------------------
# Overflow and failure
# ------------------------------------------------------------------


def test_overflow_requests_rescan(tmp_path):
    release = threading.Event()
    rescans = threading.Event()
    handled = []

    def slow(path, kind):
        handled.append(path.name)
        release.wait(timeout=5)

    watcher = FileWatcher(
        "proj",
        slow,
        on_overflow=rescans.set,
        queue_size=1,
        poll_interval=0.05,
        observer_factory=FakeObserver,
    )
    watcher.start([tmp_path])
    handler = FakeObserver.created[0].handler
    try:
        handler.on_created(FileCreatedEvent(str(tmp_path / "1.md")))
        assert _wait_for(lambda: handled == ["1.md"])
        handler.on_created(FileCreatedEvent(str(tmp_path / "2.md")))  # fills the queue
        handler.on_created(FileCreatedEvent(str(tmp_path / "3.md")))  # overflows
        release.set()
        assert rescans.wait(timeout=3)
    finally:
        watcher.stop()
    assert handled == ["1.md"]


def test_root_deletion_reports_failure(tmp_path, received):
    root = tmp_path / "kb"
    root.mkdir()
    failures = queue.Queue()
    watcher = _watcher(received, on_failure=failures.put)
    watcher.start([root])
    try:
        root.rmdir()
        reason = failures.get(timeout=3)
    finally:
        watcher.stop()
    assert "Watch root was deleted" in reason


def test_root_delete_event_without_failure_callback_stops(tmp_path, received):
    root = tmp_path / "kb"
    root.mkdir()
    watcher = _watcher(received)
    watcher.start([root])
    FakeObserver.created[0].handler.on_deleted(FileDeletedEvent(str(root)))
    assert _wait_for(lambda: not watcher.is_running)
    assert received.empty()


def test_dead_observer_reports_failure(tmp_path, received):
    failures = queue.Queue()
    watcher = _watcher(received, on_failure=failures.put)
    watcher.start([tmp_path])
    try:
        FakeObserver.created[0].dead = True
        reason = failures.get(timeout=3)
    finally:
        watcher.stop()
    assert "stopped unexpectedly" in reason
    assert str(tmp_path) in reason


def test_stop_does_not_report_observer_failure(tmp_path, received):
    failures = queue.Queue()
    watcher = _watcher(received, on_failure=failures.put)
    watcher.start([tmp_path])
    watcher.stop()
    time.sleep(0.2)
    assert failures.empty()
