"""Index state store: which content hash each indexed resource had.

One row per ``(project_id, source_type, file_path)``. A row is written only
after the resource's segments are in the embedding store, so the recorded
hash always describes content that is actually searchable. Each row also
names the embedding model that produced those segments; vectors live in a
per-model table, so a row recorded under another model proves nothing about
the current one.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path

from knowdex.db.models import IndexFileState

logger = logging.getLogger(__name__)

_HASH_BLOCK_SIZE = 65536


class StateStoreError(RuntimeError):
    """Raised when index state cannot be read or persisted."""


def compute_file_hash(path: Path | str) -> str:
    """Return the SHA-256 hex digest of the raw bytes of *path*."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_HASH_BLOCK_SIZE), b""):
            h.update(block)
    return h.hexdigest()


def compute_bytes_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class IndexStateStore:
    """Persistent ``(project, source type, path) → hash`` table.

    Wraps an open sqlite3.Connection owned by the caller. All methods are
    thread-safe with respect to each other.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def hashes_for_source(
        self, project_id: str, source_type: str, embedding_model: str | None = None
    ) -> dict[str, str]:
        """Return ``{file_path: file_hash}`` for one project and source type.

        With *embedding_model*, only rows recorded under that model are returned.
        """
        sql = (
            "SELECT file_path, file_hash FROM index_file_state "
            "WHERE project_id = ? AND source_type = ?"
        )
        params: tuple = (project_id, source_type)
        if embedding_model is not None:
            sql += " AND embedding_model = ?"
            params += (embedding_model,)
        rows = self._query(sql, params)
        return {r["file_path"]: r["file_hash"] for r in rows}

    def get_file_hash(
        self,
        project_id: str,
        file_path: str,
        source_type: str,
        embedding_model: str | None = None,
    ) -> str | None:
        rows = self._query(
            "SELECT file_hash, embedding_model FROM index_file_state "
            "WHERE project_id = ? AND source_type = ? AND file_path = ?",
            (project_id, source_type, file_path),
        )
        if not rows:
            return None
        if embedding_model is not None and rows[0]["embedding_model"] != embedding_model:
            return None
        return rows[0]["file_hash"]

    def get_file_states(self, project_id: str, source_type: str) -> list[IndexFileState]:
        rows = self._query(
            "SELECT project_id, source_type, file_path, file_hash, indexed_at, embedding_model "
            "FROM index_file_state WHERE project_id = ? AND source_type = ? "
            "ORDER BY file_path",
            (project_id, source_type),
        )
        return [
            IndexFileState(
                project_id=r["project_id"],
                source_type=r["source_type"],
                file_path=r["file_path"],
                file_hash=r["file_hash"],
                indexed_at=r["indexed_at"],
                embedding_model=r["embedding_model"],
            )
            for r in rows
        ]

    def file_paths(self, project_id: str, source_type: str) -> list[str]:
        return sorted(self.hashes_for_source(project_id, source_type))

    def file_count(self, project_id: str, source_type: str | None = None) -> int:
        if source_type is None:
            rows = self._query(
                "SELECT COUNT(*) AS n FROM index_file_state WHERE project_id = ?",
                (project_id,),
            )
        else:
            rows = self._query(
                "SELECT COUNT(*) AS n FROM index_file_state "
                "WHERE project_id = ? AND source_type = ?",
                (project_id, source_type),
            )
        return int(rows[0]["n"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def batch_save(
        self,
        project_id: str,
        file_hashes: Mapping[str, str],
        source_type: str,
        embedding_model: str = "",
    ) -> None:
        """Replace every row for ``(project_id, source_type)`` with *file_hashes*.

        Delete-then-bulk-insert in one transaction, so rows for resources that
        no longer exist do not survive. Every row is stamped with
        *embedding_model*. Rows whose hash and model are unchanged keep their
        previous ``indexed_at``.

        Raises:
            StateStoreError: If the transaction fails; nothing is changed.
        """
        with self._lock:
            try:
                with self._conn:
                    previous = {
                        r["file_path"]: (r["file_hash"], r["embedding_model"], r["indexed_at"])
                        for r in self._conn.execute(
                            "SELECT file_path, file_hash, embedding_model, indexed_at "
                            "FROM index_file_state "
                            "WHERE project_id = ? AND source_type = ?",
                            (project_id, source_type),
                        ).fetchall()
                    }
                    self._conn.execute(
                        "DELETE FROM index_file_state WHERE project_id = ? AND source_type = ?",
                        (project_id, source_type),
                    )
                    now = _now()
                    rows = []
                    for path, file_hash in sorted(file_hashes.items()):
                        old = previous.get(path)
                        unchanged = old is not None and old[:2] == (file_hash, embedding_model)
                        indexed_at = old[2] if unchanged else now
                        rows.append(
                            (project_id, source_type, path, file_hash, embedding_model, indexed_at)
                        )
                    self._conn.executemany(
                        "INSERT INTO index_file_state "
                        "(project_id, source_type, file_path, file_hash, embedding_model, indexed_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as exc:
                raise StateStoreError(
                    f"Failed to save index state for {project_id}/{source_type}: {exc}"
                ) from exc
        logger.debug(
            "Saved %d state rows for %s/%s", len(file_hashes), project_id, source_type
        )

    def save_file_state(
        self,
        project_id: str,
        file_path: str,
        file_hash: str,
        source_type: str,
        embedding_model: str = "",
    ) -> None:
        """Upsert the row for a single file, leaving sibling rows untouched."""
        self._write(
            """
            INSERT INTO index_file_state
                (project_id, source_type, file_path, file_hash, embedding_model, indexed_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, source_type, file_path) DO UPDATE SET
                file_hash = excluded.file_hash,
                embedding_model = excluded.embedding_model,
                indexed_at = excluded.indexed_at
            """,
            (project_id, source_type, file_path, file_hash, embedding_model, _now()),
        )

    def remove_file_state(self, project_id: str, file_path: str, source_type: str) -> int:
        return self._write(
            "DELETE FROM index_file_state "
            "WHERE project_id = ? AND source_type = ? AND file_path = ?",
            (project_id, source_type, file_path),
        )

    def clear_project_source(self, project_id: str, source_type: str) -> int:
        return self._write(
            "DELETE FROM index_file_state WHERE project_id = ? AND source_type = ?",
            (project_id, source_type),
        )

    def clear_project(self, project_id: str) -> int:
        """Remove all rows for *project_id* regardless of source type."""
        return self._write(
            "DELETE FROM index_file_state WHERE project_id = ?", (project_id,)
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StateStoreError(f"Failed to read index state: {exc}") from exc

    def _write(self, sql: str, params: tuple) -> int:
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StateStoreError(f"Failed to write index state: {exc}") from exc
            return cur.rowcount
