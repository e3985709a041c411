"""Content extraction for local files and web pages."""

from knowdex.extract.base import ContentExtractor, ExtractionError, ResourceTooLargeError
from knowdex.extract.local import LocalFileContentExtractor
from knowdex.extract.url import SsrfError, UrlContentExtractor

__all__ = [
    "ContentExtractor",
    "ExtractionError",
    "ResourceTooLargeError",
    "LocalFileContentExtractor",
    "SsrfError",
    "UrlContentExtractor",
]
