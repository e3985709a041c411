"""Tests for the IndexingCoordinator pass algorithm, using an in-memory source."""

from __future__ import annotations

import hashlib

import pytest

from conftest import FakeEmbeddingModel
from knowdex.events import IndexingCompleted, IndexingFailed, IndexingInProgress, IndexingStarted
from knowdex.db.state import StateStoreError
from knowdex.indexing.coordinator import IndexingCoordinator, IndexStatus, ResourceContent
from knowdex.sources import make_source


class DictCoordinator(IndexingCoordinator):
    """Coordinator over a dict of resource id -> text."""

    def __init__(self, resources: dict[str, str], context, **kwargs):
        super().__init__(make_source("local_files", sorted(resources) or ["none"]), context)
        self.resources = resources
        self.unreadable: set[str] = set()
        self.unextractable: set[str] = set()
        self.on_load = kwargs.get("on_load")

    def list_resources(self):
        return sorted(self.resources)

    def compute_hash(self, resource):
        if resource in self.unreadable:
            raise OSError(f"permission denied: {resource}")
        return hashlib.sha256(self.resources[resource].encode()).hexdigest()

    def load_content(self, resource):
        if self.on_load is not None:
            self.on_load(resource)
        if resource in self.unextractable:
            return None
        return ResourceContent(
            text=self.resources[resource], text_like=True, metadata={"file_path": resource}
        )


def _long_text(tag: str, lines: int = 60) -> str:
    return "".join(f"{tag} line {i} with some filler words\n" for i in range(lines))


@pytest.fixture
def resources():
    return {"/r/a.txt": "alpha content\n", "/r/b.txt": _long_text("beta"), "/r/c.txt": "gamma\n"}


@pytest.fixture
def save_calls(state_store, monkeypatch):
    calls = []
    original = state_store.batch_save

    def spy(project_id, hashes, source_type, embedding_model=""):
        calls.append(dict(hashes))
        return original(project_id, hashes, source_type, embedding_model)

    monkeypatch.setattr(state_store, "batch_save", spy)
    return calls


# ------------------------------------------------------------------
# Full pass
# ------------------------------------------------------------------


def test_first_pass_indexes_everything(make_context, resources, state_store, vector_store):
    coordinator = DictCoordinator(resources, make_context())
    assert coordinator.status is IndexStatus.NOT_STARTED

    assert coordinator.start_indexing() is True
    assert coordinator.status is IndexStatus.READY
    assert set(state_store.hashes_for_source("proj", "files")) == set(resources)
    assert vector_store.file_paths("proj") == sorted(resources)
    # The long resource spans several segments, each tagged with its source type.
    segments = vector_store.segments_for_file("proj", "/r/b.txt")
    assert len(segments) > 1
    assert all(s.metadata["source_type"] == "files" for s in segments)
    assert coordinator.progress.processed_files == 3


def test_second_pass_is_idempotent(make_context, resources, fake_model, save_calls):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()
    calls_after_first = fake_model.calls
    saves_after_first = len(save_calls)

    assert coordinator.start_indexing() is True
    assert fake_model.calls == calls_after_first
    assert len(save_calls) == saves_after_first


def test_changed_resource_replaces_its_segments(make_context, resources, fake_model, vector_store):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()
    assert len(vector_store.segments_for_file("proj", "/r/b.txt")) > 1

    resources["/r/b.txt"] = "beta is short now\n"
    fake_model.texts.clear()
    coordinator.start_indexing()

    assert fake_model.texts == ["beta is short now\n"]
    assert [s.text for s in vector_store.segments_for_file("proj", "/r/b.txt")] == [
        "beta is short now\n"
    ]


def test_removed_resource_is_purged(make_context, resources, state_store, vector_store):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()

    del resources["/r/a.txt"]
    coordinator.start_indexing()

    assert "/r/a.txt" not in state_store.hashes_for_source("proj", "files")
    assert vector_store.segments_for_file("proj", "/r/a.txt") == []
    assert vector_store.file_paths("proj") == ["/r/b.txt", "/r/c.txt"]


def test_empty_source_clears_previous_state(make_context, resources, state_store, vector_store):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()

    resources.clear()
    assert coordinator.start_indexing() is True
    assert state_store.hashes_for_source("proj", "files") == {}
    assert vector_store.count({"project_id": "proj"}) == 0


def test_empty_text_records_hash_without_segments(make_context, state_store, vector_store):
    coordinator = DictCoordinator({"/r/empty.txt": ""}, make_context())
    assert coordinator.start_indexing() is True
    assert "/r/empty.txt" in state_store.hashes_for_source("proj", "files")
    assert vector_store.count() == 0


# ------------------------------------------------------------------
# Per-resource failures
# ------------------------------------------------------------------


def test_unextractable_resource_skipped_and_retried(
    make_context, resources, state_store, event_bus, fake_model
):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.unextractable.add("/r/c.txt")

    assert coordinator.start_indexing() is True
    assert coordinator.progress.failed_files == 1
    assert "/r/c.txt" not in state_store.hashes_for_source("proj", "files")
    [completed] = event_bus.of_type(IndexingCompleted)
    assert (completed.files_indexed, completed.files_failed) == (2, 1)

    coordinator.unextractable.clear()
    fake_model.texts.clear()
    coordinator.start_indexing()
    assert fake_model.texts == ["gamma\n"]
    assert "/r/c.txt" in state_store.hashes_for_source("proj", "files")


def test_unreadable_resource_counts_as_failed(make_context, resources, state_store):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.unreadable.add("/r/a.txt")

    assert coordinator.start_indexing() is True
    assert coordinator.progress.failed_files == 1
    assert set(state_store.hashes_for_source("proj", "files")) == {"/r/b.txt", "/r/c.txt"}


def test_unreadable_resource_keeps_previous_segments(make_context, resources, vector_store):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()

    coordinator.unreadable.add("/r/a.txt")
    coordinator.start_indexing()
    assert len(vector_store.segments_for_file("proj", "/r/a.txt")) == 1


# ------------------------------------------------------------------
# Pass failures
# ------------------------------------------------------------------


def _short_resources(n: int) -> dict[str, str]:
    return {f"/r/{i:02d}.txt": f"resource {i}\n" for i in range(n)}


def test_embedding_failure_fails_pass_and_keeps_checkpoint(
    make_context, state_store, vector_store, event_bus
):
    # One flush per resource; the third call fails. Checkpoints every 2 resources.
    coordinator = DictCoordinator(_short_resources(5), make_context(FakeEmbeddingModel(fail_on_call=3)))

    assert coordinator.start_indexing() is False
    assert coordinator.status is IndexStatus.FAILED
    assert "model unavailable" in coordinator.progress.error
    assert set(state_store.hashes_for_source("proj", "files")) == {"/r/00.txt", "/r/01.txt"}
    assert vector_store.file_paths("proj") == ["/r/00.txt", "/r/01.txt"]
    [failed] = event_bus.of_type(IndexingFailed)
    assert "model unavailable" in failed.error_message
    assert event_bus.of_type(IndexingCompleted) == []


def test_failed_pass_saves_progress_between_checkpoints(make_context, small_config, state_store):
    small_config.indexing.checkpoint_interval = 100
    model = FakeEmbeddingModel(fail_on_call=3)
    coordinator = DictCoordinator(_short_resources(5), make_context(model, small_config))

    assert coordinator.start_indexing() is False
    assert set(state_store.hashes_for_source("proj", "files")) == {"/r/00.txt", "/r/01.txt"}


def test_retry_after_failure_resumes(make_context, state_store):
    resources = _short_resources(5)
    DictCoordinator(resources, make_context(FakeEmbeddingModel(fail_on_call=3))).start_indexing()

    model = FakeEmbeddingModel()
    coordinator = DictCoordinator(resources, make_context(model))
    assert coordinator.start_indexing() is True
    assert model.texts == ["resource 2\n", "resource 3\n", "resource 4\n"]
    assert len(state_store.hashes_for_source("proj", "files")) == 5


def test_interrupt_before_state_save_reembeds_next_pass(
    make_context, state_store, vector_store, fake_model, monkeypatch
):
    resources = {"/r/a.txt": "alpha content\n"}
    original = state_store.batch_save

    def interrupted(*args):
        monkeypatch.setattr(state_store, "batch_save", original)
        raise KeyboardInterrupt

    monkeypatch.setattr(state_store, "batch_save", interrupted)
    with pytest.raises(KeyboardInterrupt):
        DictCoordinator(resources, make_context()).start_indexing()
    assert fake_model.calls == 1
    assert state_store.hashes_for_source("proj", "files") == {}

    # A fresh process finds no recorded hash and embeds the resource again.
    assert DictCoordinator(resources, make_context()).start_indexing() is True
    assert fake_model.calls == 2
    assert [s.text for s in vector_store.segments_for_file("proj", "/r/a.txt")] == [
        "alpha content\n"
    ]
    assert vector_store.count({"project_id": "proj"}) == 1
    assert set(state_store.hashes_for_source("proj", "files")) == {"/r/a.txt"}


def test_final_state_save_failure_fails_pass(
    make_context, resources, small_config, state_store, event_bus, monkeypatch
):
    # No checkpoint is due, so the only save is the one closing the pass.
    small_config.indexing.checkpoint_interval = 100

    def broken(*args):
        raise StateStoreError("database is locked")

    monkeypatch.setattr(state_store, "batch_save", broken)
    coordinator = DictCoordinator(resources, make_context())

    assert coordinator.start_indexing() is False
    assert coordinator.status is IndexStatus.FAILED
    assert "database is locked" in coordinator.progress.error
    assert len(event_bus.of_type(IndexingFailed)) == 1
    assert event_bus.of_type(IndexingCompleted) == []


def test_close_cancels_running_pass(make_context, state_store):
    holder = {}

    def close_after_first(resource):
        if resource == "/r/01.txt":
            holder["c"].close()

    coordinator = DictCoordinator(_short_resources(4), make_context(), on_load=close_after_first)
    holder["c"] = coordinator

    assert coordinator.start_indexing() is False
    assert coordinator.progress.error == "Indexing cancelled"
    # Resources finished before the cancel are checkpointed.
    assert set(state_store.hashes_for_source("proj", "files")) == {"/r/00.txt", "/r/01.txt"}


def test_closed_coordinator_refuses_to_index(make_context, resources, fake_model):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.close()
    coordinator.close()
    assert coordinator.start_indexing() is False
    assert fake_model.calls == 0


# ------------------------------------------------------------------
# Progress and events
# ------------------------------------------------------------------


def test_events_in_order(make_context, event_bus):
    coordinator = DictCoordinator(_short_resources(12), make_context())
    coordinator.start_indexing()

    kinds = [type(e) for e in event_bus.events]
    assert kinds[0] is IndexingStarted
    assert kinds[-1] is IndexingCompleted
    progress = event_bus.of_type(IndexingInProgress)
    assert [e.files_indexed for e in progress] == [10, 12]
    assert event_bus.of_type(IndexingStarted)[0].estimated_files == 12
    assert all(e.project_name == "Test Project" for e in event_bus.events)


def test_progress_listener(make_context, resources):
    coordinator = DictCoordinator(resources, make_context())
    seen = []
    coordinator.add_progress_listener(seen.append)
    coordinator.start_indexing()
    coordinator.remove_progress_listener(seen.append)

    assert seen[0].status is IndexStatus.INDEXING
    assert seen[-1].status is IndexStatus.READY
    assert seen[-1].total_files == 3
    count = len(seen)
    coordinator.start_indexing()
    assert len(seen) == count


def test_broken_listener_does_not_fail_pass(make_context, resources):
    coordinator = DictCoordinator(resources, make_context())

    def broken(progress):
        raise RuntimeError("ui bug")

    coordinator.add_progress_listener(broken)
    assert coordinator.start_indexing() is True


def test_non_watchable_source_never_watches(make_context, resources):
    coordinator = DictCoordinator(resources, make_context())
    coordinator.start_indexing()
    assert coordinator.start_watching() is False
    assert coordinator.status is IndexStatus.READY
    coordinator.stop_watching()  # no-op


def test_context_manager_closes(make_context, resources):
    with DictCoordinator(resources, make_context()) as coordinator:
        coordinator.start_indexing()
    assert coordinator.start_indexing() is False
