"""SQLite connection layer for ``.knowdex.db`` with the sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from knowdex.db.migrations import initialize

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
)


class Database:
    """A project index file holding state rows, segments and vec tables.

    Every :meth:`connect` call opens an independent connection. Stores that
    must not block each other (state vs. vectors) get one each.
    """

    def __init__(self, db_path: Path | str, *, timeout: float = 30.0) -> None:
        """
        Args:
            db_path: Path to the SQLite database file (created if missing).
            timeout: Seconds to wait on a locked database before failing.
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

    @property
    def exists(self) -> bool:
        return self.db_path.is_file()

    def connect(self, *, migrate: bool = False) -> sqlite3.Connection:
        """Open a connection with sqlite-vec loaded.

        The connection may be used from watcher worker threads; the stores
        serialize access with their own locks.

        Args:
            migrate: Run pending schema migrations before returning.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        if migrate:
            initialize(conn)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
