"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from knowdex.db.connection import Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / ".knowdex.db"
    db = Database(db_path)
    conn = db.connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_set(tmp_path):
    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / ".knowdex.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    # Connection is closed; further use raises ProgrammingError
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_context_manager_accepts_path_str(tmp_path):
    db = Database(str(tmp_path / ".knowdex.db"))
    assert isinstance(db.db_path, Path)
    with db as conn:
        result = conn.execute("SELECT 1").fetchone()[0]
    assert result == 1


def test_connection_usable_from_another_thread(tmp_path):
    import threading

    db = Database(tmp_path / ".knowdex.db")
    conn = db.connect()
    results: list[int] = []
    worker = threading.Thread(target=lambda: results.append(conn.execute("SELECT 7").fetchone()[0]))
    worker.start()
    worker.join()
    conn.close()
    assert results == [7]


def test_connect_migrate_creates_schema(tmp_path):
    db = Database(tmp_path / "nested" / ".knowdex.db")
    assert not db.exists
    conn = db.connect(migrate=True)
    tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert db.exists
    assert {"schema_version", "index_file_state", "segments"} <= tables


def test_connect_without_migrate_leaves_schema_alone(tmp_path):
    conn = Database(tmp_path / ".knowdex.db").connect()
    count = conn.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'").fetchone()[0]
    conn.close()
    assert count == 0
