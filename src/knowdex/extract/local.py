"""Local file extraction: plain text, PDF (pypdf), and DOCX (python-docx)."""

from __future__ import annotations

import codecs
import logging
from pathlib import Path

import docx
import pypdf

from knowdex.extract.base import ContentExtractor, ResourceTooLargeError

logger = logging.getLogger(__name__)

_SNIFF_BYTES = 8192

TEXT_EXTENSIONS: frozenset[str] = frozenset(
    [
        # prose and markup
        ".txt", ".md", ".markdown", ".rst", ".adoc", ".org", ".tex",
        ".html", ".htm", ".xml", ".svg", ".csv", ".tsv",
        # config
        ".json", ".jsonl", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
        ".env", ".properties", ".gradle",
        # source code
        ".py", ".pyi", ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx",
        ".java", ".kt", ".kts", ".scala", ".groovy", ".go", ".rs",
        ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".swift", ".m",
        ".rb", ".php", ".pl", ".lua", ".r", ".dart", ".ex", ".exs",
        ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat",
        ".sql", ".graphql", ".proto", ".css", ".scss", ".less", ".vue", ".svelte",
    ]
)

# Rich documents: extracted through a decoder, never line-numbered.
RICH_EXTENSIONS: frozenset[str] = frozenset([".pdf", ".docx"])

# Formats we recognise but cannot decode.
UNSUPPORTED_EXTENSIONS: frozenset[str] = frozenset([".doc", ".ppt", ".xls"])


def looks_like_text(path: Path) -> bool:
    """Sniff the first 8 KiB: no NUL byte and decodable as UTF-8."""
    try:
        with open(path, "rb") as fh:
            sample = fh.read(_SNIFF_BYTES)
    except OSError:
        return False
    if b"\x00" in sample:
        return False
    try:
        codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
    except UnicodeDecodeError:
        return False
    return True


class LocalFileContentExtractor(ContentExtractor):
    """Extract text from files on the local filesystem.

    Args:
        max_file_bytes: Files above this size raise ResourceTooLargeError
            before any content is read.
    """

    def __init__(self, max_file_bytes: int = 5_000_000) -> None:
        self.max_file_bytes = max_file_bytes

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_supported(self, resource: str | Path) -> bool:
        path = Path(resource)
        ext = path.suffix.lower()
        if ext in UNSUPPORTED_EXTENSIONS:
            return False
        if ext in RICH_EXTENSIONS or ext in TEXT_EXTENSIONS:
            return True
        return looks_like_text(path)

    def is_text_like(self, resource: str | Path) -> bool:
        path = Path(resource)
        ext = path.suffix.lower()
        if ext in RICH_EXTENSIONS or ext in UNSUPPORTED_EXTENSIONS:
            return False
        if ext in TEXT_EXTENSIONS:
            return True
        return looks_like_text(path)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def extract(self, resource: str | Path) -> str | None:
        """Return the text content of *resource*.

        Returns None for missing, unreadable, unsupported, or malformed
        files. Raises ResourceTooLargeError when the file exceeds
        ``max_file_bytes``.
        """
        path = Path(resource)
        try:
            size = path.stat().st_size
        except OSError as exc:
            logger.warning("Cannot stat %s: %s", path, exc)
            return None
        if size > self.max_file_bytes:
            raise ResourceTooLargeError(str(path), size, self.max_file_bytes)

        ext = path.suffix.lower()
        if ext == ".pdf":
            return self._extract_pdf(path)
        if ext == ".docx":
            return self._extract_docx(path)
        if not self.is_supported(path):
            logger.info("Skipping unsupported file %s", path)
            return None
        return self._extract_text(path)

    def _extract_text(self, path: Path) -> str | None:
        try:
            with open(path, "rb") as fh:
                raw = fh.read(self.max_file_bytes + 1)
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return None
        if len(raw) > self.max_file_bytes:
            raise ResourceTooLargeError(str(path), len(raw), self.max_file_bytes)
        return raw.decode("utf-8-sig", errors="replace")

    @staticmethod
    def _extract_pdf(path: Path) -> str | None:
        """Extract all page text from the PDF at *path*."""
        try:
            reader = pypdf.PdfReader(str(path))
            parts: list[str] = []
            for page in reader.pages:
                stripped = (page.extract_text() or "").strip()
                if stripped:
                    parts.append(stripped)
        except Exception as exc:  # pypdf raises a wide range of types on malformed input
            logger.warning("Cannot extract PDF %s: %s", path, exc)
            return None
        return "\n\n".join(parts)

    @staticmethod
    def _extract_docx(path: Path) -> str | None:
        """Extract paragraph and table text from the DOCX at *path*."""
        try:
            document = docx.Document(str(path))
            parts = [p.text for p in document.paragraphs if p.text.strip()]
            for table in document.tables:
                for row in table.rows:
                    cells = [c.text.strip() for c in row.cells if c.text.strip()]
                    if cells:
                        parts.append(" | ".join(cells))
        except Exception as exc:  # malformed zip/xml surfaces as many exception types
            logger.warning("Cannot extract DOCX %s: %s", path, exc)
            return None
        return "\n".join(parts)
