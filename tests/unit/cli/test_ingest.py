"""Tests for docmirror ingest."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from docmirror.cli.main import app
from docmirror.crawl.errors import SourceConfigError
from docmirror.crawl.pipeline import IngestProgress, IngestResult
from docmirror.db.connection import open_store
from docmirror.db.repository import Repository

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _add_source(db_path: Path, root_url: str = "https://example.com/docs") -> int:
    conn = open_store(db_path)
    try:
        return Repository(conn).add_web_source("Example", root_url)
    finally:
        conn.close()


@pytest.fixture
def pipeline(monkeypatch: pytest.MonkeyPatch) -> dict:
    """Replace the crawl with a recorder; returns the captured call."""
    captured: dict = {"result": IngestResult(3, 2, 1, 0, "latest")}

    def _fake(repo, source, **kwargs):
        captured["source"] = source
        captured.update(kwargs)
        sink = kwargs["on_progress"]
        sink(IngestProgress("discovery", 0, 0, message="Discovering URLs..."))
        sink(IngestProgress("crawl", 0, 2, message="Crawling... (0/2)"))
        sink(IngestProgress("crawl", 1, 2, url="https://example.com/docs", status="success"))
        sink(IngestProgress("crawl", 1, 2, url="https://example.com/docs/old", status="skip",
                            message="HTTP 404"))
        if isinstance(captured["result"], Exception):
            raise captured["result"]
        return captured["result"]

    monkeypatch.setattr("docmirror.cli.ingest.ingest_web_source", _fake)
    return captured


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


def test_ingest_prints_summary(db_path: Path, pipeline: dict) -> None:
    sid = _add_source(db_path)
    result = runner.invoke(app, ["ingest", "--source", str(sid), "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    assert "3 processed" in result.output
    assert "2 updated" in result.output
    assert "1 skipped" in result.output
    assert "https://example.com/docs/old" in result.output
    assert pipeline["source"].id == sid


def test_ingest_passes_options(db_path: Path, pipeline: dict) -> None:
    sid = _add_source(db_path)
    result = runner.invoke(
        app,
        [
            "ingest", "-s", str(sid), "--db", str(db_path),
            "--force", "-c", "7", "--proxy", "http://proxy:3128",
            "--no-headless", "--chrome-path", "/opt/chrome",
        ],
    )

    assert result.exit_code == 0, result.output
    assert pipeline["force"] is True
    assert pipeline["concurrency"] == 7
    assert pipeline["proxy"] == "http://proxy:3128"
    assert pipeline["headless"].enabled is False
    assert pipeline["headless"].chrome_path == "/opt/chrome"


def test_ingest_defaults_from_config(db_path: Path, pipeline: dict, cli_config) -> None:
    cli_config.crawl.concurrency = 9
    cli_config.crawl.proxy = "http://cfg-proxy:8080"
    sid = _add_source(db_path)
    runner.invoke(app, ["ingest", "-s", str(sid), "--db", str(db_path)])

    assert pipeline["force"] is False
    assert pipeline["concurrency"] == 9
    assert pipeline["proxy"] == "http://cfg-proxy:8080"
    assert pipeline["headless"].enabled is True


def test_failed_pages_produce_retry_hint(db_path: Path, pipeline: dict) -> None:
    pipeline["result"] = IngestResult(3, 1, 0, 2, "latest")
    sid = _add_source(db_path)
    result = runner.invoke(app, ["ingest", "-s", str(sid), "--db", str(db_path)])

    assert result.exit_code == 0
    assert "2 page(s) failed" in result.output
    assert "--force" in result.output


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_missing_db_exits_1(tmp_path: Path, pipeline: dict) -> None:
    result = runner.invoke(app, ["ingest", "-s", "1", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_unknown_source_exits_1(db_path: Path, pipeline: dict) -> None:
    result = runner.invoke(app, ["ingest", "-s", "99", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "no source with id 99" in result.output


def test_invalid_proxy_exits_1(db_path: Path, pipeline: dict) -> None:
    sid = _add_source(db_path)
    result = runner.invoke(
        app, ["ingest", "-s", str(sid), "--db", str(db_path), "--proxy", "socks5://x:1"]
    )
    assert result.exit_code == 1
    assert "--proxy" in result.output
    assert "source" not in pipeline


def test_source_config_error_exits_1(db_path: Path, pipeline: dict) -> None:
    pipeline["result"] = SourceConfigError("Source 1 is missing a valid root_url")
    sid = _add_source(db_path)
    result = runner.invoke(app, ["ingest", "-s", str(sid), "--db", str(db_path)])
    assert result.exit_code == 1
    assert "missing a valid root_url" in result.output


def test_concurrency_must_be_positive(db_path: Path, pipeline: dict) -> None:
    result = runner.invoke(app, ["ingest", "-s", "1", "--db", str(db_path), "-c", "0"])
    assert result.exit_code != 0
