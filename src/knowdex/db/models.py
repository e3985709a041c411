"""Domain models for the knowdex database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class TextSegment:
    """A chunk of extracted text plus flat string metadata.

    Segments are the unit of embedding and of vector-store deletion; deletion
    is keyed by the ``file_path`` metadata entry, not by segment id.
    """

    text: str
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def file_path(self) -> str:
        return self.metadata.get("file_path", "")

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunk_index", "0"))

    @property
    def chunk_total(self) -> int:
        return int(self.metadata.get("chunk_total", "0"))

    @property
    def start_line(self) -> int | None:
        value = self.metadata.get("start_line")
        return int(value) if value is not None else None

    @property
    def end_line(self) -> int | None:
        value = self.metadata.get("end_line")
        return int(value) if value is not None else None

    def metadata_json(self) -> str:
        return json.dumps(self.metadata, sort_keys=True)


@dataclass
class IndexFileState:
    project_id: str
    source_type: str
    file_path: str
    file_hash: str
    indexed_at: str | None = None
    embedding_model: str = ""


@dataclass
class SearchHit:
    """One similarity-search result; lower distance is closer."""

    segment_id: str
    segment: TextSegment
    distance: float
