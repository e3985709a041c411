"""Indexing coordinator: one full diff-and-embed pass per knowledge source.

A pass enumerates the source's resources, hashes each one, and compares the
hashes with the index state store. Removed resources are deleted from the
embedding store; dirty resources are removed, re-extracted, chunked, embedded
and flushed, and only then is their new hash recorded. The hash map is saved
with ``batch_save`` at the end of the pass and at periodic checkpoints, so a
crash mid-pass only costs redundant re-processing on the next run.

Status machine::

    NOT_STARTED -> INDEXING -> READY | WATCHING | FAILED

FAILED is left only by calling ``start_indexing()`` again.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum

from knowdex.config import KnowdexConfig
from knowdex.db.state import IndexStateStore, StateStoreError
from knowdex.db.vectors import EmbeddingStore, VectorStoreError
from knowdex.embedding import EmbeddingError, EmbeddingModel
from knowdex.events import (
    EventBus,
    IndexingCompleted,
    IndexingEvent,
    IndexingFailed,
    IndexingInProgress,
    IndexingStarted,
    WatchingFailed,
    WatchingStarted,
    WatchingStopped,
)
from knowdex.extract.base import ExtractionError
from knowdex.indexing.content_processor import ResourceContentProcessor
from knowdex.indexing.hybrid_indexer import HybridIndexer
from knowdex.indexing.text_processor import TextProcessor
from knowdex.sources import KnowledgeSourceConfig

logger = logging.getLogger(__name__)

# Progress events are emitted every N resources and on the last one.
PROGRESS_EVENT_INTERVAL = 10

# Per-resource failures: logged, counted, retried on the next pass.
RESOURCE_ERRORS = (ExtractionError, OSError, UnicodeError)


class IndexStatus(str, Enum):
    NOT_STARTED = "not_started"
    INDEXING = "indexing"
    READY = "ready"
    WATCHING = "watching"
    FAILED = "failed"


@dataclass(frozen=True)
class IndexProgress:
    status: IndexStatus = IndexStatus.NOT_STARTED
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    error: str | None = None


@dataclass
class IndexingContext:
    """Collaborators injected into every coordinator.

    The caller owns the lifecycle of the stores and their connections.
    """

    project_id: str
    project_name: str
    embedding_model: EmbeddingModel
    embedding_store: EmbeddingStore
    state_store: IndexStateStore
    config: KnowdexConfig = field(default_factory=KnowdexConfig)
    event_bus: EventBus | None = None
    extra_excludes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResourceContent:
    """Extracted text of one resource and the metadata to stamp on its segments."""

    text: str
    text_like: bool
    metadata: dict[str, str]


class PassCancelled(Exception):
    """The coordinator was closed while a pass was running."""


# Errors that abort a whole pass. Enumeration failures (OSError) land here
# because per-resource errors are handled inside the loop.
PASS_ERRORS = (EmbeddingError, VectorStoreError, StateStoreError, PassCancelled, *RESOURCE_ERRORS)


ProgressListener = Callable[[IndexProgress], None]


class IndexingCoordinator(ABC):
    """Orchestrates indexing (and optionally watching) of one knowledge source.

    Subclasses enumerate, hash and extract resources; the pass algorithm,
    progress, events, and the locking discipline live here. Use as a
    context manager or call ``close()``.
    """

    def __init__(self, source: KnowledgeSourceConfig, context: IndexingContext) -> None:
        self.source = source
        self.context = context
        self.source_type = source.source_type
        cfg = context.config

        self.indexer = HybridIndexer(
            context.embedding_store,
            context.embedding_model,
            context.project_id,
            batch_size=cfg.embedding.batch_size,
        )
        self.text_processor = TextProcessor.for_model(
            context.embedding_model.model_name, cfg.chunking
        )
        self.content_processor = ResourceContentProcessor(self.text_processor)

        # Serializes passes and single-file updates from the watcher.
        self.write_lock = threading.RLock()
        self._watch_lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._progress = IndexProgress()
        self._listeners: list[ProgressListener] = []
        self._cancel = threading.Event()
        self._closed = False

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def list_resources(self) -> list[str]:
        """Return the identifiers of every resource currently in the source."""

    @abstractmethod
    def compute_hash(self, resource: str) -> str:
        """Return the content hash of *resource*'s raw bytes."""

    @abstractmethod
    def load_content(self, resource: str) -> ResourceContent | None:
        """Extract *resource*; None when it cannot be extracted."""

    def _start_watcher(self) -> bool:
        return False

    def _detach_watcher(self) -> Callable[[], object] | None:
        """Unhook the live watcher and return its stop function, if any."""
        return None

    def _watcher_active(self) -> bool:
        return False

    # ------------------------------------------------------------------
    # Observable progress
    # ------------------------------------------------------------------

    @property
    def progress(self) -> IndexProgress:
        with self._progress_lock:
            return self._progress

    @property
    def status(self) -> IndexStatus:
        return self.progress.status

    def add_progress_listener(self, listener: ProgressListener) -> None:
        with self._progress_lock:
            self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        with self._progress_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _update_progress(self, **changes: object) -> IndexProgress:
        with self._progress_lock:
            self._progress = replace(self._progress, **changes)
            snapshot = self._progress
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Progress listener failed")
        return snapshot

    def _emit(self, event_cls: type[IndexingEvent], **fields: object) -> None:
        bus = self.context.event_bus
        if bus is None:
            return
        bus.emit(
            event_cls(
                project_id=self.context.project_id,
                project_name=self.context.project_name,
                **fields,
            )
        )

    # ------------------------------------------------------------------
    # Index pass
    # ------------------------------------------------------------------

    def start_indexing(self) -> bool:
        """Run a full pass; return True when index and state are consistent.

        Retrying after FAILED is done by calling this again.
        """
        with self.write_lock:
            ok = self._locked_pass()
        if not ok and self._watcher_active():
            # Joins watcher workers, so it must run without the write lock.
            self.stop_watching()
        return ok

    def _locked_pass(self) -> bool:
        if self._closed:
            logger.warning("Coordinator for %s is closed", self.source.resource_identifier)
            return False
        self._cancel.clear()
        self._update_progress(
            status=IndexStatus.INDEXING,
            total_files=0,
            processed_files=0,
            failed_files=0,
            error=None,
        )
        try:
            indexed, failed = self._run_pass()
        except PASS_ERRORS as exc:
            self.indexer.discard_batch()
            message = "Indexing cancelled" if isinstance(exc, PassCancelled) else str(exc)
            logger.error(
                "Indexing %s for %s failed: %s",
                self.source_type,
                self.context.project_id,
                message,
            )
            self._update_progress(status=IndexStatus.FAILED, error=message)
            self._emit(IndexingFailed, source_type=self.source_type, error_message=message)
            return False

        final = IndexStatus.WATCHING if self._watcher_active() else IndexStatus.READY
        self._update_progress(status=final)
        self._emit(
            IndexingCompleted,
            source_type=self.source_type,
            files_indexed=indexed,
            files_failed=failed,
        )
        logger.info(
            "Indexed %s for %s: %d resources (%d skipped)",
            self.source_type,
            self.context.project_id,
            indexed,
            failed,
        )
        return True

    def _run_pass(self) -> tuple[int, int]:
        ctx = self.context
        state = ctx.state_store

        model = ctx.embedding_model.model_name
        resources = self.list_resources()

        previous = state.hashes_for_source(ctx.project_id, self.source_type)
        # Rows recorded under another model have no vectors in this model's
        # table; leaving them out of the map makes those resources dirty.
        hashes = state.hashes_for_source(ctx.project_id, self.source_type, model)
        saved: dict[str, str] | None = dict(hashes) if hashes == previous else None
        if saved is None:
            logger.info(
                "%d %s resources were indexed with another embedding model; re-embedding",
                len(previous) - len(hashes),
                self.source_type,
            )
        total = len(resources)
        self._update_progress(total_files=total)
        self._emit(IndexingStarted, source_type=self.source_type, estimated_files=total)

        current = set(resources)
        for gone in sorted(p for p in previous if p not in current):
            self.indexer.remove_file_from_index(gone)
            hashes.pop(gone, None)
            logger.debug("Removed vanished resource %s", gone)

        processed = failed = 0
        interval = ctx.config.indexing.checkpoint_interval
        try:
            for resource in resources:
                if self._cancel.is_set():
                    raise PassCancelled()
                if not self._process(resource, hashes):
                    failed += 1
                processed += 1
                self._update_progress(processed_files=processed, failed_files=failed)
                if processed % PROGRESS_EVENT_INTERVAL == 0 or processed == total:
                    self._emit(
                        IndexingInProgress,
                        source_type=self.source_type,
                        files_indexed=processed,
                        total_files=total,
                    )
                if processed % interval == 0 and hashes != saved:
                    state.batch_save(ctx.project_id, hashes, self.source_type, model)
                    saved = dict(hashes)
        except (EmbeddingError, VectorStoreError, PassCancelled):
            # hashes only holds resources whose segments are stored; keep them.
            self.indexer.discard_batch()
            if hashes != saved:
                try:
                    state.batch_save(ctx.project_id, hashes, self.source_type, model)
                except StateStoreError:
                    logger.exception("Checkpoint after failed pass did not commit")
            raise

        if hashes != saved:
            state.batch_save(ctx.project_id, hashes, self.source_type, model)
        return processed - failed, failed

    def _process(self, resource: str, hashes: dict[str, str]) -> bool:
        """Bring one resource up to date; False on a per-resource failure."""
        try:
            new_hash = self.compute_hash(resource)
        except RESOURCE_ERRORS as exc:
            logger.warning("Cannot read %s: %s", resource, exc)
            return False

        if hashes.get(resource) == new_hash:
            return True

        hashes.pop(resource, None)
        self.indexer.remove_file_from_index(resource)
        try:
            ok = self.index_resource(resource)
        except RESOURCE_ERRORS as exc:
            logger.warning("Skipping %s: %s", resource, exc)
            return False
        if ok:
            hashes[resource] = new_hash
        return ok

    def index_resource(self, resource: str) -> bool:
        """Extract, chunk, embed and flush one resource.

        The caller removes stale segments first and records the hash after.
        Returns False when the resource cannot be extracted.
        """
        content = self.load_content(resource)
        if content is None:
            return False
        base_metadata = {
            **content.metadata,
            "project_id": self.context.project_id,
            "source_type": self.source_type,
        }
        segments = self.content_processor.build_segments(
            content.text, text_like=content.text_like, base_metadata=base_metadata
        )
        for segment in segments:
            self.indexer.add_segment_to_batch(segment, resource)
        self.indexer.flush_remaining_segments()
        return True

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def start_watching(self) -> bool:
        """Begin live watching; idempotent.

        Refused unless the last pass succeeded, since incremental updates
        assume the state store holds a consistent baseline.
        """
        if not self.source.watchable:
            logger.info("%s sources are not watched", self.source.kind)
            return False
        with self._watch_lock:
            if self._watcher_active():
                return True
            status = self.status
            if status is not IndexStatus.READY:
                logger.warning("Not watching %s: status is %s", self.source_type, status.value)
                return False
            if not self._start_watcher():
                return False
            roots = tuple(self.source.resource_identifiers)
        self._update_progress(status=IndexStatus.WATCHING)
        self._emit(WatchingStarted, roots=roots)
        return True

    def stop_watching(self) -> None:
        """Stop live watching; safe on a coordinator that is not watching."""
        with self._watch_lock:
            stop = self._detach_watcher()
        if stop is not None:
            # Joins worker threads, which may call back into stop_watching.
            stop()
            if self.status is IndexStatus.WATCHING:
                self._update_progress(status=IndexStatus.READY)
            self._emit(WatchingStopped)

    def _watch_failed(self, reason: str) -> None:
        """Called by the watcher when a root vanishes or the OS refuses a watch."""
        logger.error("Watching %s for %s failed: %s", self.source_type, self.context.project_id, reason)
        self.stop_watching()
        self._update_progress(status=IndexStatus.FAILED, error=reason)
        self._emit(WatchingFailed, error_message=reason)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop watching and wait for any in-flight pass to stop.

        A running pass is cancelled between resources; resources already
        embedded are checkpointed, none is recorded before its segments are
        stored. Safe to call more than once.
        """
        self._closed = True
        self._cancel.set()
        self.stop_watching()
        with self.write_lock:
            self.indexer.discard_batch()

    def __enter__(self) -> IndexingCoordinator:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
