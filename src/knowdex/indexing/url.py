"""Coordinator for web pages."""

from __future__ import annotations

import logging
import urllib.parse

from knowdex.db.state import compute_bytes_hash
from knowdex.extract.url import FetchedResource, UrlContentExtractor
from knowdex.indexing.coordinator import IndexingContext, IndexingCoordinator, ResourceContent
from knowdex.sources import UrlSource

logger = logging.getLogger(__name__)


class UrlIndexingCoordinator(IndexingCoordinator):
    """Fetch each URL once per pass; unchanged bodies are never converted.

    The change hash is taken over the fetched body bytes, so a page is only
    re-embedded when the server returns different content.
    """

    def __init__(self, source: UrlSource, context: IndexingContext) -> None:
        super().__init__(source, context)
        self.extractor = UrlContentExtractor(max_bytes=context.config.indexing.max_file_bytes)
        self._fetched: dict[str, FetchedResource] = {}

    def list_resources(self) -> list[str]:
        self._fetched.clear()
        return sorted(set(self.source.resource_identifiers))

    def compute_hash(self, resource: str) -> str:
        fetched = self.extractor.fetch(resource)
        self._fetched[resource] = fetched
        return compute_bytes_hash(fetched.body)

    def load_content(self, resource: str) -> ResourceContent | None:
        fetched = self._fetched.pop(resource, None)
        if fetched is None:
            fetched = self.extractor.fetch(resource)
        page = self.extractor.to_text(fetched)
        name = urllib.parse.urlparse(resource).path.rstrip("/").rsplit("/", 1)[-1]
        return ResourceContent(
            text=page.content,
            text_like=self.extractor.is_text_like(resource),
            metadata={
                "file_path": resource,
                "file_name": name or resource,
                "url": resource,
                "title": page.title,
                "content_type": page.content_type,
            },
        )
