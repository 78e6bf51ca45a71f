"""Tests for docmirror rich error messages."""

from __future__ import annotations

import pytest

from docmirror.cli.errors import (
    err_config,
    err_invalid_paths,
    err_invalid_url,
    err_no_db,
    err_source_config,
    err_source_not_found,
    warn_failed_pages,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_what_and_action(msg: str) -> bool:
    """Every error must contain a cause AND an actionable instruction."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "use ", "fix ", "retry", "remove", "prefixes are"])


# ---------------------------------------------------------------------------
# Every message is actionable
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "msg",
    [
        err_no_db("/tmp/x.db"),
        err_source_not_found(3),
        err_invalid_url("ftp://x"),
        err_invalid_paths("--allow", ValueError("Path prefix must start with '/'")),
        err_source_config(ValueError("Source 1 is missing a valid root_url")),
        err_config(ValueError("bad proxy")),
        warn_failed_pages(2, 5),
    ],
)
def test_messages_are_actionable(msg: str) -> None:
    assert _has_what_and_action(msg)
    assert "\n" in msg


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


def test_err_no_db_names_path() -> None:
    assert "/tmp/x.db" in err_no_db("/tmp/x.db")
    assert "docmirror source add-web" in err_no_db("/tmp/x.db")


def test_err_source_not_found_names_id() -> None:
    msg = err_source_not_found(42)
    assert "42" in msg
    assert "docmirror source list" in msg


def test_err_invalid_url_shows_example() -> None:
    assert "https://" in err_invalid_url("docs")


def test_err_invalid_paths_names_option_and_cause() -> None:
    msg = err_invalid_paths("--deny", ValueError("must start with '/'"))
    assert "--deny" in msg
    assert "must start with '/'" in msg


def test_warn_failed_pages_suggests_force() -> None:
    msg = warn_failed_pages(2, 5)
    assert "2 page(s)" in msg
    assert "docmirror ingest --source 5 --force" in msg
