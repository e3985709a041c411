"""Batch segments into embedding calls and vector-store upserts.

Batching only amortizes per-call overhead: a flush embeds the whole batch in
one ``embed_all`` call and upserts it in one store transaction, so a batch
either lands completely or not at all.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from knowdex.db.models import TextSegment
from knowdex.db.vectors import EmbeddingStore
from knowdex.embedding import EmbeddingError, EmbeddingModel

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

_SEGMENT_NAMESPACE = uuid.UUID("6f1c1f64-54a4-4c5e-9a39-2f6f1a5d0b7e")


@dataclass
class _Pending:
    segment_id: str
    segment: TextSegment


def segment_id_for(project_id: str, file_path: str, chunk_index: int) -> str:
    """Deterministic id, so re-upserting a chunk replaces rather than duplicates."""
    return str(uuid.uuid5(_SEGMENT_NAMESPACE, f"{project_id}|{file_path}|{chunk_index}"))


class HybridIndexer:
    """Accumulate segments and write them to the embedding store in batches.

    Args:
        embedding_store: Destination store.
        embedding_model: Model used to embed segment text.
        project_id: Written into every segment's metadata and used to scope
            deletions.
        batch_size: Segments per embedding call.
    """

    def __init__(
        self,
        embedding_store: EmbeddingStore,
        embedding_model: EmbeddingModel,
        project_id: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.embedding_store = embedding_store
        self.embedding_model = embedding_model
        self.project_id = project_id
        self.batch_size = batch_size
        self._batch: list[_Pending] = []

    @property
    def pending(self) -> int:
        return len(self._batch)

    def add_segment_to_batch(self, segment: TextSegment, source_identifier: str) -> None:
        """Queue *segment* for *source_identifier*; flushes when the batch is full."""
        metadata = {**segment.metadata, "file_path": source_identifier, "project_id": self.project_id}
        stamped = TextSegment(text=segment.text, metadata=metadata)
        seg_id = segment_id_for(self.project_id, source_identifier, stamped.chunk_index)
        self._batch.append(_Pending(segment_id=seg_id, segment=stamped))
        if len(self._batch) >= self.batch_size:
            self.flush_remaining_segments()

    def flush_remaining_segments(self) -> int:
        """Embed and upsert everything queued; return the number written.

        Raises:
            EmbeddingError: If the model fails; the batch is discarded.
            VectorStoreError: If the upsert fails; the batch is discarded.
        """
        if not self._batch:
            return 0
        batch, self._batch = self._batch, []
        texts = [p.segment.text for p in batch]
        vectors = self.embedding_model.embed_all(texts)
        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding model returned {len(vectors)} vectors for {len(batch)} segments",
                model=getattr(self.embedding_model, "model_name", ""),
            )
        self.embedding_store.upsert_all(
            [p.segment_id for p in batch], vectors, [p.segment for p in batch]
        )
        logger.debug("Flushed %d segments", len(batch))
        return len(batch)

    def discard_batch(self) -> int:
        """Drop queued segments without writing them."""
        dropped = len(self._batch)
        self._batch = []
        return dropped

    def remove_file_from_index(self, source_identifier: str) -> int:
        """Delete every stored segment of *source_identifier* in this project."""
        removed = self.embedding_store.delete_where(
            {"project_id": self.project_id, "file_path": source_identifier}
        )
        if removed:
            logger.debug("Removed %d segments for %s", removed, source_identifier)
        return removed
