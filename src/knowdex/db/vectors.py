"""Embedding store backed by sqlite-vec virtual tables.

Segment text and metadata live in the ``segments`` table; vectors live in a
per-model ``vec_segments_<slug>`` vec0 table whose rowid equals
``segments.id``. Vec tables are created on demand by ensure_vec_table().
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Mapping, Sequence
from typing import Protocol

from knowdex.db.models import SearchHit, TextSegment

logger = logging.getLogger(__name__)

# Metadata keys stored as real columns; everything else is matched in JSON.
_COLUMN_KEYS = frozenset(["project_id", "file_path"])


class VectorStoreError(RuntimeError):
    """Raised when the embedding store cannot be read or written."""


class EmbeddingStore(Protocol):
    """What the indexing engine needs from a vector store."""

    def upsert(self, segment_id: str, vector: list[float], segment: TextSegment) -> None: ...

    def upsert_all(
        self,
        segment_ids: Sequence[str],
        vectors: Sequence[list[float]],
        segments: Sequence[TextSegment],
    ) -> None: ...

    def delete_where(self, metadata_filter: Mapping[str, str]) -> int: ...

    def search(
        self,
        vector: list[float],
        k: int = 10,
        metadata_filter: Mapping[str, str] | None = None,
    ) -> list[SearchHit]: ...

    def count(self, metadata_filter: Mapping[str, str] | None = None) -> int: ...


# ---------------------------------------------------------------------------
# Vec table helpers
# ---------------------------------------------------------------------------


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
        "ollama/nomic-embed-text" -> "ollama_nomic_embed_text"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_segments_{model_slug}"


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_segments_{model_slug} virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_segments_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0(embedding float[{dimensions}])"
        )
        conn.commit()

    return table


def _where_clause(metadata_filter: Mapping[str, str] | None) -> tuple[str, list[str]]:
    """Translate a metadata filter into a SQL WHERE fragment over ``segments``."""
    if not metadata_filter:
        return "1 = 1", []
    clauses: list[str] = []
    params: list[str] = []
    for key, value in sorted(metadata_filter.items()):
        if key in _COLUMN_KEYS:
            clauses.append(f"s.{key} = ?")
            params.append(str(value))
        else:
            clauses.append("json_extract(s.metadata, ?) = ?")
            params.extend([f'$."{key}"', str(value)])
    return " AND ".join(clauses), params


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqliteVecEmbeddingStore:
    """EmbeddingStore over a sqlite connection with sqlite-vec loaded.

    The connection is owned by the caller. Writes are serialized by an
    internal lock; ``upsert_all`` and ``delete_where`` are single transactions.
    """

    def __init__(self, conn: sqlite3.Connection, model: str, dimensions: int) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self.model = model
        self.dimensions = dimensions
        try:
            self.table = ensure_vec_table(conn, model_to_slug(model), dimensions)
        except sqlite3.Error as exc:
            raise VectorStoreError(f"Cannot create vector table for '{model}': {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, segment_id: str, vector: list[float], segment: TextSegment) -> None:
        self.upsert_all([segment_id], [vector], [segment])

    def upsert_all(
        self,
        segment_ids: Sequence[str],
        vectors: Sequence[list[float]],
        segments: Sequence[TextSegment],
    ) -> None:
        """Insert or replace every segment and its vector in one transaction.

        Raises:
            VectorStoreError: On length or dimension mismatch, or any sqlite
                error; the transaction is rolled back.
        """
        if not (len(segment_ids) == len(vectors) == len(segments)):
            raise VectorStoreError(
                f"upsert_all got {len(segment_ids)} ids, {len(vectors)} vectors "
                f"and {len(segments)} segments"
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise VectorStoreError(
                    f"Vector has {len(vector)} dimensions; store '{self.table}' "
                    f"expects {self.dimensions}"
                )
        with self._lock:
            try:
                with self._conn:
                    for segment_id, vector, segment in zip(segment_ids, vectors, segments):
                        self._delete_segment_id(segment_id)
                        cur = self._conn.execute(
                            """
                            INSERT INTO segments (segment_id, project_id, file_path, text, metadata)
                            VALUES (?, ?, ?, ?, ?)
                            """,
                            (
                                segment_id,
                                segment.metadata.get("project_id", ""),
                                segment.file_path,
                                segment.text,
                                segment.metadata_json(),
                            ),
                        )
                        self._conn.execute(
                            f"INSERT INTO {self.table}(rowid, embedding) VALUES (?, ?)",
                            (cur.lastrowid, json.dumps(vector)),
                        )
            except sqlite3.Error as exc:
                raise VectorStoreError(f"Failed to upsert segments: {exc}") from exc

    def delete_where(self, metadata_filter: Mapping[str, str]) -> int:
        """Delete every segment matching *metadata_filter*; return the count.

        An empty filter is refused rather than wiping the store.
        """
        if not metadata_filter:
            raise VectorStoreError("delete_where requires a non-empty metadata filter")
        where, params = _where_clause(metadata_filter)
        with self._lock:
            try:
                with self._conn:
                    ids = [
                        r[0]
                        for r in self._conn.execute(
                            f"SELECT s.id FROM segments s WHERE {where}", params
                        ).fetchall()
                    ]
                    if not ids:
                        return 0
                    for start in range(0, len(ids), 500):
                        part = ids[start : start + 500]
                        placeholders = ",".join("?" * len(part))
                        for table in self._vec_tables():
                            self._conn.execute(
                                f"DELETE FROM {table} WHERE rowid IN ({placeholders})",  # noqa: S608
                                part,
                            )
                        self._conn.execute(
                            f"DELETE FROM segments WHERE id IN ({placeholders})",  # noqa: S608
                            part,
                        )
            except sqlite3.Error as exc:
                raise VectorStoreError(f"Failed to delete segments: {exc}") from exc
        logger.debug("Deleted %d segments matching %s", len(ids), dict(metadata_filter))
        return len(ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(
        self,
        vector: list[float],
        k: int = 10,
        metadata_filter: Mapping[str, str] | None = None,
    ) -> list[SearchHit]:
        """Nearest-neighbour search. Returns hits sorted by distance.

        Unfiltered searches use the vec0 KNN index; filtered searches scan
        the matching segments with vec_distance_l2().
        """
        if k < 1:
            return []
        with self._lock:
            try:
                if metadata_filter:
                    where, params = _where_clause(metadata_filter)
                    rows = self._conn.execute(
                        f"""
                        SELECT s.segment_id, s.text, s.metadata,
                               vec_distance_l2(v.embedding, ?) AS distance
                        FROM segments s JOIN {self.table} v ON v.rowid = s.id
                        WHERE {where}
                        ORDER BY distance LIMIT ?
                        """,
                        [json.dumps(vector), *params, k],
                    ).fetchall()
                else:
                    rows = self._conn.execute(
                        f"""
                        SELECT s.segment_id, s.text, s.metadata, knn.distance
                        FROM (
                            SELECT rowid, distance FROM {self.table}
                            WHERE embedding MATCH ? AND k = ?
                        ) knn JOIN segments s ON s.id = knn.rowid
                        ORDER BY knn.distance
                        """,
                        (json.dumps(vector), k),
                    ).fetchall()
            except sqlite3.Error as exc:
                raise VectorStoreError(f"Vector search failed: {exc}") from exc
        return [
            SearchHit(
                segment_id=r["segment_id"],
                segment=TextSegment(text=r["text"], metadata=json.loads(r["metadata"])),
                distance=float(r["distance"]),
            )
            for r in rows
        ]

    def count(self, metadata_filter: Mapping[str, str] | None = None) -> int:
        """Count segments that have a vector for this store's model."""
        where, params = _where_clause(metadata_filter)
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT COUNT(*) FROM segments s JOIN {self.table} v ON v.rowid = s.id "
                    f"WHERE {where}",
                    params,
                ).fetchone()
            except sqlite3.Error as exc:
                raise VectorStoreError(f"Failed to count segments: {exc}") from exc
        return int(row[0])

    def segments_for_file(self, project_id: str, file_path: str) -> list[TextSegment]:
        """Return the stored segments of one file, ordered by chunk index."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT text, metadata FROM segments WHERE project_id = ? AND file_path = ?",
                (project_id, file_path),
            ).fetchall()
        segments = [TextSegment(text=r["text"], metadata=json.loads(r["metadata"])) for r in rows]
        return sorted(segments, key=lambda s: s.chunk_index)

    def file_paths(self, project_id: str) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT file_path FROM segments WHERE project_id = ? ORDER BY file_path",
                (project_id,),
            ).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _delete_segment_id(self, segment_id: str) -> None:
        row = self._conn.execute(
            "SELECT id FROM segments WHERE segment_id = ?", (segment_id,)
        ).fetchone()
        if row is None:
            return
        for table in self._vec_tables():
            self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (row[0],))
        self._conn.execute("DELETE FROM segments WHERE id = ?", (row[0],))

    def _vec_tables(self) -> list[str]:
        """Every model's vec table, so a removed segment leaves no stale vector."""
        rows = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name LIKE 'vec\\_segments\\_%' ESCAPE '\\' "
            "AND sql LIKE 'CREATE VIRTUAL TABLE%'"
        ).fetchall()
        tables = [r[0] for r in rows]
        return tables if self.table in tables else [self.table, *tables]
