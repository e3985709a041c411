"""knowdex database layer."""

from knowdex.db.connection import Database
from knowdex.db.migrations import MIGRATIONS, initialize, run_migrations
from knowdex.db.models import IndexFileState, SearchHit, TextSegment
from knowdex.db.state import IndexStateStore, StateStoreError, compute_file_hash
from knowdex.db.vectors import (
    EmbeddingStore,
    SqliteVecEmbeddingStore,
    VectorStoreError,
    ensure_vec_table,
    model_to_slug,
    vec_table_name,
)

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "IndexFileState",
    "SearchHit",
    "TextSegment",
    "IndexStateStore",
    "StateStoreError",
    "compute_file_hash",
    "EmbeddingStore",
    "SqliteVecEmbeddingStore",
    "VectorStoreError",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
