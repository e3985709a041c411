"""Turn one resource's extracted text into ordered, metadata-tagged segments.

Shared by the index pass and the live change handler so a resource is
always chunked the same way regardless of what triggered the re-index.
"""

from __future__ import annotations

import os
from pathlib import Path

from knowdex.db.models import TextSegment
from knowdex.indexing.text_processor import TextProcessor


def normalize_path(path: str | Path) -> str:
    """Absolute, forward-slash form used as the ``file_path`` key."""
    return Path(os.path.abspath(path)).as_posix()


def file_metadata(path: str | Path) -> dict[str, str]:
    p = Path(path)
    return {
        "file_path": normalize_path(p),
        "file_name": p.name,
        "extension": p.suffix.lower().lstrip("."),
    }


class ResourceContentProcessor:
    """Chunk text and wrap each chunk in a TextSegment."""

    def __init__(self, text_processor: TextProcessor) -> None:
        self.text_processor = text_processor

    def build_segments(
        self,
        text: str,
        *,
        text_like: bool,
        base_metadata: dict[str, str],
    ) -> list[TextSegment]:
        """Return the segments for *text* in chunk order.

        Every segment carries *base_metadata* plus ``chunk_index`` and
        ``chunk_total``; line-tracked segments also carry ``start_line`` and
        ``end_line``. Blank text yields no segments.
        """
        if text_like:
            line_chunks = self.text_processor.chunk_text_with_line_numbers(text)
            total = len(line_chunks)
            return [
                self.text_processor.create_text_segment(
                    chunk.text,
                    {
                        **base_metadata,
                        "chunk_index": str(i),
                        "chunk_total": str(total),
                        "start_line": str(chunk.start_line),
                        "end_line": str(chunk.end_line),
                    },
                )
                for i, chunk in enumerate(line_chunks)
            ]

        chunks = self.text_processor.chunk_text(text)
        total = len(chunks)
        return [
            self.text_processor.create_text_segment(
                chunk,
                {**base_metadata, "chunk_index": str(i), "chunk_total": str(total)},
            )
            for i, chunk in enumerate(chunks)
        ]
