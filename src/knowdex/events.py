"""Indexing lifecycle events and a synchronous, fire-and-forget event bus.

Subscribers render progress (CLI, UI); the index itself never depends on
delivery. A subscriber that raises is logged and skipped.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IndexingEvent:
    project_id: str
    project_name: str
    timestamp: datetime = field(default_factory=_now, compare=False, kw_only=True)

    def details(self) -> str:
        return ""


@dataclass(frozen=True)
class IndexingStarted(IndexingEvent):
    source_type: str = ""
    estimated_files: int = 0

    def details(self) -> str:
        return f"Indexing {self.project_name} ({self.source_type}): {self.estimated_files} resources"


@dataclass(frozen=True)
class IndexingInProgress(IndexingEvent):
    source_type: str = ""
    files_indexed: int = 0
    total_files: int = 0

    def details(self) -> str:
        return f"{self.project_name} ({self.source_type}): {self.files_indexed}/{self.total_files}"


@dataclass(frozen=True)
class IndexingCompleted(IndexingEvent):
    source_type: str = ""
    files_indexed: int = 0
    files_failed: int = 0

    def details(self) -> str:
        text = f"Indexed {self.project_name} ({self.source_type}): {self.files_indexed} resources"
        if self.files_failed:
            text += f", {self.files_failed} skipped"
        return text


@dataclass(frozen=True)
class IndexingFailed(IndexingEvent):
    source_type: str = ""
    error_message: str = ""

    def details(self) -> str:
        return f"Indexing {self.project_name} ({self.source_type}) failed: {self.error_message}"


@dataclass(frozen=True)
class WatchingStarted(IndexingEvent):
    roots: tuple[str, ...] = ()

    def details(self) -> str:
        return f"Watching {len(self.roots)} folder(s) for {self.project_name}"


@dataclass(frozen=True)
class WatchingStopped(IndexingEvent):
    def details(self) -> str:
        return f"Stopped watching {self.project_name}"


@dataclass(frozen=True)
class WatchingFailed(IndexingEvent):
    error_message: str = ""

    def details(self) -> str:
        return f"Watching {self.project_name} failed: {self.error_message}"


Handler = Callable[[IndexingEvent], None]


class EventBus:
    """Dispatch events to handlers subscribed by event type.

    A handler subscribed to ``IndexingEvent`` receives every event.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: IndexingEvent) -> None:
        with self._lock:
            targets = [
                h
                for event_type, handlers in self._handlers.items()
                if isinstance(event, event_type)
                for h in handlers
            ]
        for handler in targets:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", type(event).__name__)
