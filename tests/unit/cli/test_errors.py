"""Tests for knowdex rich error messages."""

from __future__ import annotations

import pytest

from knowdex.cli.errors import (
    err_config,
    err_indexing_failed,
    err_no_api_key,
    err_no_db,
    err_no_sources,
    err_no_watchable_sources,
    err_unsupported_source,
    warn_embedding_model_mismatch,
    warn_watch_stopped,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_what_and_action(msg: str) -> bool:
    """Every error must contain a cause AND an actionable instruction."""
    lower = msg.lower()
    return any(
        kw in lower
        for kw in ["run:", "set:", "use:", "export ", "knowdex ", "pass --", "fix ", "known types"]
    )


# ---------------------------------------------------------------------------
# Every message is actionable
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "msg",
    [
        err_no_api_key("openai"),
        err_no_db(),
        err_no_sources(),
        err_no_watchable_sources(),
        err_config("chunking.overlap must be in [0, 1)"),
        err_indexing_failed("folders", "model unavailable"),
        err_unsupported_source("s3", ["files", "folders", "urls"]),
        warn_watch_stopped("watched folder was deleted"),
        warn_embedding_model_mismatch(["openai/small"], "ollama/nomic", 3),
    ],
)
def test_message_is_actionable(msg):
    assert _has_what_and_action(msg)


# ---------------------------------------------------------------------------
# Specifics
# ---------------------------------------------------------------------------


def test_no_api_key_known_provider():
    msg = err_no_api_key("cohere")
    assert "'cohere'" in msg
    assert "export COHERE_API_KEY=" in msg


def test_no_api_key_unknown_provider_guesses_env_var():
    assert "ACME_API_KEY" in err_no_api_key("acme")


def test_no_db_includes_path():
    msg = err_no_db("/tmp/x/.knowdex.db")
    assert "/tmp/x/.knowdex.db" in msg
    assert "knowdex init" in msg


def test_no_sources_shows_yaml_example():
    msg = err_no_sources()
    assert "--folder" in msg
    assert "type: local_folders" in msg


def test_config_names_file():
    msg = err_config("bad value", "/p/knowdex.yaml")
    assert "Invalid configuration: bad value" in msg
    assert "/p/knowdex.yaml" in msg


def test_indexing_failed_includes_reason():
    msg = err_indexing_failed("urls", "timeout")
    assert "Indexing urls failed: timeout" in msg
    assert "knowdex index" in msg


def test_unsupported_source_without_known_kinds():
    assert "(none)" in err_unsupported_source("s3", [])


def test_watch_stopped_is_a_warning():
    msg = warn_watch_stopped("root deleted")
    assert "Error" not in msg
    assert "knowdex watch" in msg


def test_embedding_model_mismatch_names_both_models():
    msg = warn_embedding_model_mismatch(["openai/small"], "ollama/nomic", 3)
    assert "3 resources" in msg
    assert "Database has:  openai/small" in msg
    assert "Config has:    ollama/nomic" in msg
    assert "knowdex index" in msg
