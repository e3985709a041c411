"""Content extractor contract and shared exceptions."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ExtractionError(RuntimeError):
    """A resource could not be turned into text."""


class ResourceTooLargeError(ExtractionError):
    """A resource exceeds the configured size cap; nothing was read."""

    def __init__(self, resource: str, size: int, limit: int) -> None:
        super().__init__(
            f"Resource too large: '{resource}' is {size} bytes (limit {limit} bytes)"
        )
        self.resource = resource
        self.size = size
        self.limit = limit


class ContentExtractor(ABC):
    """Turn a resource identifier into plain text.

    ``extract`` returns ``None`` for unreadable or unsupported resources;
    callers skip such resources instead of aborting a pass. Oversized
    resources raise ResourceTooLargeError before any content is read.
    """

    @abstractmethod
    def extract(self, resource: str) -> str | None:
        """Return the text of *resource*, or None if it cannot be extracted."""

    @abstractmethod
    def is_text_like(self, resource: str) -> bool:
        """Return True when line numbers are meaningful for *resource*."""
