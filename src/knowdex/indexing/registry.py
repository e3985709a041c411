"""Map knowledge-source kinds to coordinator factories.

Built-in kinds are registered by ``default_registry()``. Other packages can
contribute coordinators through the ``knowdex.coordinators`` entry-point
group; each entry point names the source kind and loads a factory
``(source, context) -> IndexingCoordinator``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from importlib.metadata import entry_points

from knowdex.indexing.coordinator import IndexingContext, IndexingCoordinator
from knowdex.indexing.local_files import LocalFilesIndexingCoordinator
from knowdex.indexing.url import UrlIndexingCoordinator
from knowdex.sources import KnowledgeSourceConfig, LocalFilesSource, LocalFoldersSource, UrlSource

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "knowdex.coordinators"

CoordinatorFactory = Callable[[KnowledgeSourceConfig, IndexingContext], IndexingCoordinator]


class UnsupportedSourceError(LookupError):
    """No coordinator is registered for a source kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No indexing coordinator registered for source type '{kind}'")
        self.kind = kind


class CoordinatorRegistry:
    def __init__(self) -> None:
        self._factories: dict[str, CoordinatorFactory] = {}

    def register(self, kind: str, factory: CoordinatorFactory) -> None:
        """Register *factory* for *kind*, replacing any previous one."""
        if kind in self._factories:
            logger.debug("Replacing coordinator factory for %s", kind)
        self._factories[kind] = factory

    def unregister(self, kind: str) -> bool:
        return self._factories.pop(kind, None) is not None

    def has_provider(self, kind: str) -> bool:
        return kind in self._factories

    def kinds(self) -> list[str]:
        return sorted(self._factories)

    def create(self, source: KnowledgeSourceConfig, context: IndexingContext) -> IndexingCoordinator:
        """Build the coordinator for *source*.

        Raises:
            UnsupportedSourceError: If nothing is registered for the source kind.
        """
        factory = self._factories.get(source.kind)
        if factory is None:
            raise UnsupportedSourceError(source.kind)
        return factory(source, context)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register factories advertised by installed packages; return how many loaded."""
        loaded = 0
        for ep in entry_points(group=group):
            try:
                factory = ep.load()
            except (ImportError, AttributeError) as exc:
                logger.warning("Cannot load coordinator plugin %s: %s", ep.name, exc)
                continue
            self.register(ep.name, factory)
            loaded += 1
        return loaded


def default_registry(*, load_plugins: bool = True) -> CoordinatorRegistry:
    """Registry with the built-in kinds (and installed plugins, if any)."""
    registry = CoordinatorRegistry()
    registry.register(LocalFoldersSource.kind, LocalFilesIndexingCoordinator)
    registry.register(LocalFilesSource.kind, LocalFilesIndexingCoordinator)
    registry.register(UrlSource.kind, UrlIndexingCoordinator)
    if load_plugins:
        registry.load_entry_points()
    return registry
