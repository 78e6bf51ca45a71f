"""SQLite connection layer and store bootstrap."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from docmirror.db.schema import initialize

logger = logging.getLogger(__name__)

# Low-level faults that a fresh database file cures (truncated or
# half-checkpointed WAL after a crash).
_RECOVERABLE_MARKERS = ("disk i/o error", "short read", "sqlite_ioerr_short_read")


class Database:
    """Per-user SQLite database holding sources, crawl state, documents and chunks."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection with row access by name, FKs and WAL enabled."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None


def is_recoverable_error(exc: BaseException) -> bool:
    """True for storage faults that are fixed by recreating the database files."""
    if not isinstance(exc, sqlite3.DatabaseError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _RECOVERABLE_MARKERS)


def delete_db_files(db_path: Path) -> None:
    """Remove the database file and its -wal / -shm companions if present."""
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        path.unlink(missing_ok=True)


def open_store(db_path: Path | str) -> sqlite3.Connection:
    """Open (or create) the database and run migrations.

    A recoverable storage fault during initialization deletes the on-disk
    files and retries exactly once. Any other fault propagates.
    """
    db = Database(db_path)
    conn: sqlite3.Connection | None = None
    try:
        conn = db.connect()
        initialize(conn)
    except sqlite3.DatabaseError as exc:
        if conn is not None:
            conn.close()
        if not is_recoverable_error(exc):
            raise
        logger.warning("Recreating database %s after storage fault: %s", db.db_path, exc)
        delete_db_files(db.db_path)
        conn = db.connect()
        initialize(conn)
    return conn
