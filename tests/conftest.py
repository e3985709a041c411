"""Shared pytest fixtures."""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

import pytest

from knowdex.config import ChunkingCfg, KnowdexConfig
from knowdex.db.connection import Database
from knowdex.db.migrations import initialize
from knowdex.db.state import IndexStateStore
from knowdex.db.vectors import SqliteVecEmbeddingStore
from knowdex.embedding import EmbeddingError
from knowdex.events import EventBus, IndexingEvent
from knowdex.indexing.coordinator import IndexingContext

FAKE_DIMS = 8


class FakeEmbeddingModel:
    """Deterministic embedding model: vectors derived from a hash of the text."""

    model_name = "fake/embed"
    dimensions = FAKE_DIMS

    def __init__(self, fail_on_call: int | None = None) -> None:
        self.calls = 0
        self.texts: list[str] = []
        self.fail_on_call = fail_on_call

    def embed(self, text: str) -> list[float]:
        return self.embed_all([text])[0]

    def embed_all(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail_on_call is not None and self.calls >= self.fail_on_call:
            raise EmbeddingError("model unavailable", model=self.model_name)
        self.texts.extend(texts)
        return [vector_for(t) for t in texts]


def vector_for(text: str) -> list[float]:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [b / 255.0 for b in digest[:FAKE_DIMS]]


class RecordingBus(EventBus):
    """EventBus that also keeps every emitted event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[IndexingEvent] = []
        self.subscribe(IndexingEvent, self.events.append)

    def of_type(self, event_type: type) -> list[IndexingEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def state_store(tmp_db):
    return IndexStateStore(tmp_db)


@pytest.fixture
def vector_store(tmp_db):
    return SqliteVecEmbeddingStore(tmp_db, FakeEmbeddingModel.model_name, FAKE_DIMS)


@pytest.fixture
def fake_model():
    return FakeEmbeddingModel()


@pytest.fixture
def event_bus():
    return RecordingBus()


@pytest.fixture
def small_config():
    """Config with small chunks so modest test files span several segments."""
    cfg = KnowdexConfig()
    cfg.chunking = ChunkingCfg(max_chars_per_chunk=600, overlap=0.1, max_overlap_chars=100)
    cfg.indexing.checkpoint_interval = 2
    cfg.embedding.batch_size = 4
    return cfg


@pytest.fixture
def make_context(fake_model, vector_store, state_store, event_bus, small_config):
    """Factory for an IndexingContext over the shared test stores."""

    def _make(model=None, config=None, project_id: str = "proj") -> IndexingContext:
        return IndexingContext(
            project_id=project_id,
            project_name="Test Project",
            embedding_model=model or fake_model,
            embedding_store=vector_store,
            state_store=state_store,
            config=config or small_config,
            event_bus=event_bus,
        )

    return _make


# ---------------------------------------------------------------------------
# CLI fixtures
# ---------------------------------------------------------------------------


class _EmbeddingResponse:
    def __init__(self, texts: list[str]) -> None:
        self.data = [{"embedding": vector_for(t)} for t in texts]


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Isolated global config, a fake API key, and no KNOWDEX_* overrides."""
    monkeypatch.setattr("knowdex.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("KNOWDEX_EMBEDDING_MODEL", raising=False)
    monkeypatch.delenv("KNOWDEX_MAX_FILE_BYTES", raising=False)
    monkeypatch.setenv("COLUMNS", "200")
    return tmp_path


@pytest.fixture
def fake_litellm(monkeypatch):
    """Replace litellm.embedding; returns the list of input batches it saw."""
    batches: list[list[str]] = []

    def _embedding(*, model, input, **kwargs):
        batches.append(list(input))
        return _EmbeddingResponse(list(input))

    monkeypatch.setattr("knowdex.embedding.litellm.embedding", _embedding)
    return batches


@pytest.fixture
def project(cli_env):
    """Project directory with knowdex.yaml and a small docs folder."""
    root = cli_env / "project"
    docs = root / "docs"
    docs.mkdir(parents=True)
    (docs / "intro.md").write_text("# Intro\nknowdex keeps the index fresh.\n", encoding="utf-8")
    (docs / "setup.txt").write_text("Install the package.\nRun the indexer.\n", encoding="utf-8")
    (root / "knowdex.yaml").write_text(
        "project:\n"
        "  id: demo\n"
        "  name: Demo Project\n"
        "embedding:\n"
        "  model: openai/text-embedding-3-small\n"
        f"  dimensions: {FAKE_DIMS}\n"
        "sources:\n"
        "  - type: local_folders\n"
        "    paths: [docs]\n",
        encoding="utf-8",
    )
    return root
