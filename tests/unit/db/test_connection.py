"""Tests for the Database connection layer and store bootstrap."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from docmirror.db import connection
from docmirror.db.connection import (
    Database,
    delete_db_files,
    is_recoverable_error,
    open_store,
)


def test_connect_creates_file_and_parent(tmp_path):
    db_path = tmp_path / "nested" / "docmirror.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / "docmirror.db").connect()
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
    conn.close()


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / "docmirror.db").connect()
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
    conn.close()


def test_row_factory(tmp_path):
    conn = Database(tmp_path / "docmirror.db").connect()
    row = conn.execute("SELECT 1 AS one").fetchone()
    assert row["one"] == 1
    conn.close()


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / "docmirror.db")
    with db as conn:
        conn.execute("SELECT 1")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


# ------------------------------------------------------------------
# Recovery
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "message",
    ["disk I/O error", "SQLITE_IOERR_SHORT_READ", "database disk i/o error: short read"],
)
def test_recoverable_errors(message):
    assert is_recoverable_error(sqlite3.OperationalError(message))


@pytest.mark.parametrize(
    "exc",
    [
        sqlite3.OperationalError("database is locked"),
        sqlite3.DatabaseError("file is not a database"),
        OSError("disk i/o error"),
    ],
)
def test_non_recoverable_errors(exc):
    assert not is_recoverable_error(exc)


def test_delete_db_files(tmp_path):
    db_path = tmp_path / "docmirror.db"
    for suffix in ("", "-wal", "-shm"):
        (tmp_path / f"docmirror.db{suffix}").write_bytes(b"x")
    delete_db_files(db_path)
    assert list(tmp_path.iterdir()) == []


def test_delete_db_files_missing_ok(tmp_path):
    delete_db_files(tmp_path / "absent.db")


def test_open_store_initializes_schema(tmp_path):
    conn = open_store(tmp_path / "docmirror.db")
    assert conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0] == 0
    conn.close()


def test_open_store_recovers_once(tmp_path):
    db_path = tmp_path / "docmirror.db"
    real_initialize = connection.initialize
    calls = []

    def _flaky(conn):
        calls.append(conn)
        if len(calls) == 1:
            raise sqlite3.OperationalError("disk I/O error")
        real_initialize(conn)

    with patch.object(connection, "initialize", side_effect=_flaky):
        conn = open_store(db_path)

    assert len(calls) == 2
    assert conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0] == 0
    conn.close()


def test_open_store_gives_up_after_one_retry(tmp_path):
    with patch.object(
        connection, "initialize", side_effect=sqlite3.OperationalError("disk I/O error")
    ) as init:
        with pytest.raises(sqlite3.OperationalError):
            open_store(tmp_path / "docmirror.db")
    assert init.call_count == 2


def test_open_store_propagates_other_faults(tmp_path):
    with patch.object(
        connection, "initialize", side_effect=sqlite3.OperationalError("database is locked")
    ) as init:
        with pytest.raises(sqlite3.OperationalError, match="locked"):
            open_store(tmp_path / "docmirror.db")
    assert init.call_count == 1
