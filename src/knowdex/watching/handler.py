"""Apply one filesystem change to the index and the index state store."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from knowdex.filters.chain import FilterChain
from knowdex.indexing.content_processor import normalize_path
from knowdex.indexing.coordinator import RESOURCE_ERRORS
from knowdex.watching.watcher import ChangeKind

if TYPE_CHECKING:
    from knowdex.indexing.local_files import LocalFilesIndexingCoordinator

logger = logging.getLogger(__name__)


class FileChangeHandler:
    """Re-index exactly the resource a change event names.

    Uses the coordinator's extract → chunk → embed → flush sequence and its
    write lock, then upserts the state row for that single file only, so
    hashes of sibling files written concurrently are never clobbered.
    """

    def __init__(
        self,
        coordinator: LocalFilesIndexingCoordinator,
        filter_chain: FilterChain,
        roots: list[Path],
    ) -> None:
        self.coordinator = coordinator
        self.filter_chain = filter_chain
        self.roots = [Path(os.path.abspath(r)) for r in roots]

    @property
    def _project_id(self) -> str:
        return self.coordinator.context.project_id

    def handle_file_change(self, path: Path | str, kind: ChangeKind) -> None:
        """Bring the index in line with *path* after a *kind* change.

        Per-file extraction failures are logged and leave no state row, so
        the file is retried on its next change or the next full pass.
        Embedding and store failures propagate to the caller.
        """
        p = Path(os.path.abspath(path))
        if p.name == ".gitignore":
            self.filter_chain.invalidate()

        if kind is ChangeKind.DELETE:
            self._remove(p)
            return

        if p.is_dir():
            self._index_directory(p)
            return
        if not p.is_file():
            logger.debug("Ignoring %s of vanished path %s", kind.value, p)
            return
        if self._excluded(p):
            logger.debug("Ignoring excluded path %s", p)
            return
        self._reindex(p)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _root_for(self, path: Path) -> Path | None:
        for root in self.roots:
            if path == root or root in path.parents:
                return root
        return None

    def _excluded(self, path: Path) -> bool:
        if not self.coordinator.extractor.is_supported(path):
            return True
        return self.filter_chain.should_exclude(path, self._root_for(path))

    def _reindex(self, path: Path) -> None:
        coordinator = self.coordinator
        state = coordinator.context.state_store
        source_type = coordinator.source_type
        model = coordinator.context.embedding_model.model_name
        resource = normalize_path(path)

        with coordinator.write_lock:
            try:
                new_hash = coordinator.compute_hash(resource)
            except RESOURCE_ERRORS as exc:
                logger.warning("Cannot read %s: %s", resource, exc)
                return
            if state.get_file_hash(self._project_id, resource, source_type, model) == new_hash:
                logger.debug("Unchanged: %s", resource)
                return

            state.remove_file_state(self._project_id, resource, source_type)
            coordinator.indexer.remove_file_from_index(resource)
            try:
                ok = coordinator.index_resource(resource)
            except RESOURCE_ERRORS as exc:
                logger.warning("Skipping %s: %s", resource, exc)
                ok = False
            except Exception:
                coordinator.indexer.discard_batch()
                raise
            if ok:
                state.save_file_state(self._project_id, resource, new_hash, source_type, model)
                logger.info("Re-indexed %s", resource)

    def _remove(self, path: Path) -> None:
        coordinator = self.coordinator
        state = coordinator.context.state_store
        source_type = coordinator.source_type
        resource = normalize_path(path)
        prefix = resource.rstrip("/") + "/"

        with coordinator.write_lock:
            tracked = state.file_paths(self._project_id, source_type)
            targets = [p for p in tracked if p == resource or p.startswith(prefix)]
            if not targets:
                # Never recorded (e.g. extraction failed); drop any stray segments.
                targets = [resource]
            for target in targets:
                coordinator.indexer.remove_file_from_index(target)
                state.remove_file_state(self._project_id, target, source_type)
                logger.info("Removed %s from index", target)

    def _index_directory(self, directory: Path) -> None:
        root = self._root_for(directory)
        for file_path in self.coordinator.walk(directory, root or directory):
            self._reindex(Path(file_path))
