"""Forward-only schema migrations for .knowdex.db.

The state table and the segment table are versioned here. Per-model vec
tables (vec_segments_*) depend on the embedding dimensions and are created
on demand by ensure_vec_table().
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS index_file_state (
    project_id      TEXT NOT NULL,
    source_type     TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    file_hash       TEXT NOT NULL,
    indexed_at      DATETIME NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    PRIMARY KEY (project_id, source_type, file_path)
);

CREATE TABLE IF NOT EXISTS segments (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    segment_id      TEXT NOT NULL UNIQUE,
    project_id      TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    text            TEXT NOT NULL,
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_segments_project_file
    ON segments (project_id, file_path);
"""

# Rows recorded before v2 carry no model and are re-embedded on the next pass.
_V2_SQL = """
ALTER TABLE index_file_state ADD COLUMN embedding_model TEXT NOT NULL DEFAULT '';
"""

# Append-only. Each entry: (version: int, sql: str).
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def schema_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, 0 for a fresh database."""
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations in ascending version order.

    Each migration and its ``schema_version`` row commit together, so a
    failed migration leaves the database at the previous version.

    Returns:
        Number of migrations applied.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    current = schema_version(conn)
    applied = 0
    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        script = (
            f"BEGIN;\n{sql}\n"
            f"INSERT INTO schema_version (version) VALUES ({int(version)});\nCOMMIT;"
        )
        try:
            conn.executescript(script)
        except sqlite3.Error:
            conn.rollback()
            raise
        logger.debug("Applied schema migration %d", version)
        applied += 1
    return applied


def initialize(conn: sqlite3.Connection) -> None:
    """Bring the schema up to date (idempotent)."""
    run_migrations(conn)
