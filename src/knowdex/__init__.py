"""knowdex — incremental indexing and change tracking for RAG knowledge sources."""
