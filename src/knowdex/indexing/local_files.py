"""Coordinator for local folders and explicitly listed local files."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from pathlib import Path

from knowdex.db.state import compute_file_hash
from knowdex.extract.local import LocalFileContentExtractor
from knowdex.filters import build_filter_chain
from knowdex.events import WatchingFailed
from knowdex.indexing.content_processor import file_metadata, normalize_path
from knowdex.indexing.coordinator import (
    IndexingContext,
    IndexingCoordinator,
    IndexStatus,
    ResourceContent,
)
from knowdex.sources import LocalFilesSource, LocalFoldersSource
from knowdex.watching.watcher import FileWatcher, WatchError

logger = logging.getLogger(__name__)


class LocalFilesIndexingCoordinator(IndexingCoordinator):
    """Index folder trees (watchable) or a fixed list of files.

    Folder enumeration prunes excluded directories through the filter chain
    before descending. Explicitly listed files bypass the chain and are only
    checked for a supported format.
    """

    def __init__(
        self,
        source: LocalFoldersSource | LocalFilesSource,
        context: IndexingContext,
    ) -> None:
        super().__init__(source, context)
        cfg = context.config
        self.extractor = LocalFileContentExtractor(max_file_bytes=cfg.indexing.max_file_bytes)
        self.filter_chain = build_filter_chain(cfg.indexing, context.extra_excludes)
        self.watcher_factory = FileWatcher
        self._watcher: FileWatcher | None = None

    @property
    def roots(self) -> list[Path]:
        return [Path(os.path.abspath(p)) for p in self.source.resource_identifiers]

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def list_resources(self) -> list[str]:
        # A fresh pass re-reads .gitignore files and project markers.
        self.filter_chain.invalidate()
        found: set[str] = set()
        for root in self.roots:
            if isinstance(self.source, LocalFilesSource):
                if not root.is_file():
                    logger.warning("File not found: %s", root)
                    continue
                if self.extractor.is_supported(root):
                    found.add(normalize_path(root))
                else:
                    logger.info("Skipping unsupported file %s", root)
                continue
            if not root.is_dir():
                logger.warning("Folder not found: %s", root)
                continue
            found.update(self.walk(root, root))
        return sorted(found)

    def walk(self, directory: Path, root: Path) -> Iterator[str]:
        """Yield normalized paths of indexable files below *directory*.

        Args:
            directory: Where to start walking.
            root: Root the filter chain evaluates relative paths against.
        """
        if directory != root and self.filter_chain.should_exclude(directory, root):
            return

        def _on_error(exc: OSError) -> None:
            logger.warning("Cannot list %s: %s", exc.filename, exc)

        for dirpath, dirnames, filenames in os.walk(directory, onerror=_on_error):
            here = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames if not self.filter_chain.excludes(here / d, True, root)
            )
            for name in sorted(filenames):
                path = here / name
                if self.filter_chain.excludes(path, False, root):
                    continue
                if not self.extractor.is_supported(path):
                    continue
                yield normalize_path(path)

    # ------------------------------------------------------------------
    # Per-resource hooks
    # ------------------------------------------------------------------

    def compute_hash(self, resource: str) -> str:
        return compute_file_hash(resource)

    def load_content(self, resource: str) -> ResourceContent | None:
        text = self.extractor.extract(resource)
        if text is None:
            return None
        return ResourceContent(
            text=text,
            text_like=self.extractor.is_text_like(resource),
            metadata=file_metadata(resource),
        )

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def _start_watcher(self) -> bool:
        from knowdex.watching.handler import FileChangeHandler  # avoid circular import

        watch_cfg = self.context.config.watching
        roots = self.roots
        handler = FileChangeHandler(self, self.filter_chain, roots)
        watcher = self.watcher_factory(
            self.context.project_id,
            handler.handle_file_change,
            filter_chain=self.filter_chain,
            on_overflow=self.start_indexing,
            on_failure=self._watch_failed,
            queue_size=watch_cfg.queue_size,
            poll_interval=watch_cfg.poll_interval,
        )
        try:
            watcher.start(roots)
        except WatchError as exc:
            reason = f"Cannot watch {self.source.resource_identifier}: {exc}"
            logger.error("%s", reason)
            self._update_progress(status=IndexStatus.FAILED, error=reason)
            self._emit(WatchingFailed, error_message=reason)
            return False
        self._watcher = watcher
        return True

    def _detach_watcher(self) -> Callable[[], object] | None:
        watcher, self._watcher = self._watcher, None
        return None if watcher is None else watcher.stop

    def _watcher_active(self) -> bool:
        return self._watcher is not None and self._watcher.is_running
