"""Tests for knowdex clear."""

from __future__ import annotations

from typer.testing import CliRunner

from knowdex.cli.main import app
from knowdex.db.connection import Database
from knowdex.db.state import IndexStateStore

runner = CliRunner()


def _args(project) -> list[str]:
    return ["--db", str(project / ".knowdex.db"), "--project-dir", str(project)]


def _state_count(project) -> int:
    conn = Database(project / ".knowdex.db").connect()
    try:
        return IndexStateStore(conn).file_count("demo")
    finally:
        conn.close()


def test_clear_all_with_yes(project, fake_litellm):
    runner.invoke(app, ["index", *_args(project)])
    result = runner.invoke(app, ["clear", "--yes", *_args(project)])
    assert result.exit_code == 0, result.output
    assert "Removed 2 segments and 2 state rows." in result.output
    assert _state_count(project) == 0


def test_clear_then_index_reembeds(project, fake_litellm):
    runner.invoke(app, ["index", *_args(project)])
    runner.invoke(app, ["clear", "-y", *_args(project)])
    fake_litellm.clear()
    runner.invoke(app, ["index", *_args(project)])
    assert len(fake_litellm) == 1
    assert len(fake_litellm[0]) == 2


def test_clear_other_source_type_keeps_folders(project, fake_litellm):
    runner.invoke(app, ["index", *_args(project)])
    result = runner.invoke(app, ["clear", "--source-type", "urls", "--yes", *_args(project)])
    assert result.exit_code == 0, result.output
    assert "Removed 0 segments and 0 state rows." in result.output
    assert _state_count(project) == 2


def test_clear_unknown_source_type(project):
    result = runner.invoke(app, ["clear", "--source-type", "ftp", "--yes", *_args(project)])
    assert result.exit_code == 1
    assert "Unknown source type" in result.output


def test_clear_declined(project, fake_litellm):
    runner.invoke(app, ["index", *_args(project)])
    result = runner.invoke(app, ["clear", *_args(project)], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled." in result.output
    assert _state_count(project) == 2


def test_clear_without_db(project):
    result = runner.invoke(app, ["clear", "--yes", *_args(project)])
    assert result.exit_code == 1
    assert "No database found" in result.output
