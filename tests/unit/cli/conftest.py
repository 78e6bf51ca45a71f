"""Fixtures for CLI tests: an isolated config and a ready database."""

from __future__ import annotations

from pathlib import Path

import pytest

from docmirror.config import DocmirrorConfig, StoreCfg
from docmirror.db.connection import open_store


@pytest.fixture(autouse=True)
def cli_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> DocmirrorConfig:
    """Every command sees defaults with the database under tmp_path."""
    cfg = DocmirrorConfig(store=StoreCfg(db_path=tmp_path / "default.db"))
    for module in ("ingest", "source", "status"):
        monkeypatch.setattr(f"docmirror.cli.{module}.load_config", lambda: cfg)
    return cfg


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "mirror.db"
    open_store(path).close()
    return path
