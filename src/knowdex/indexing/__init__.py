"""Incremental indexing: chunking, batching, and per-source coordinators."""

from knowdex.indexing.coordinator import (
    IndexingContext,
    IndexingCoordinator,
    IndexProgress,
    IndexStatus,
    PassCancelled,
    ResourceContent,
)
from knowdex.indexing.hybrid_indexer import HybridIndexer
from knowdex.indexing.local_files import LocalFilesIndexingCoordinator
from knowdex.indexing.registry import CoordinatorRegistry, UnsupportedSourceError, default_registry
from knowdex.indexing.text_processor import LineChunk, TextProcessor
from knowdex.indexing.url import UrlIndexingCoordinator

__all__ = [
    "CoordinatorRegistry",
    "HybridIndexer",
    "IndexingContext",
    "IndexingCoordinator",
    "IndexProgress",
    "IndexStatus",
    "LineChunk",
    "LocalFilesIndexingCoordinator",
    "PassCancelled",
    "ResourceContent",
    "TextProcessor",
    "UnsupportedSourceError",
    "UrlIndexingCoordinator",
    "default_registry",
]
