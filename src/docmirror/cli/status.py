"""docmirror status command.

Shows the database location and, per source, crawl-page and document counts.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docmirror.config import DocmirrorConfig, load_config
from docmirror.db.connection import open_store
from docmirror.db.repository import Repository

console = Console()


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mirror database (default from config)."),
    ] = None,
) -> None:
    """Show mirror status: database, sources, pages and documents."""
    # status works even with a broken config file
    try:
        cfg = load_config()
    except Exception:
        cfg = DocmirrorConfig()
    db_path = db if db is not None else cfg.store.db_path

    _show_database_panel(db_path)
    if not db_path.exists():
        return

    conn = open_store(db_path)
    try:
        _show_sources_table(conn, Repository(conn))
    finally:
        conn.close()


def _show_database_panel(db_path: Path) -> None:
    if db_path.exists():
        size_mb = db_path.stat().st_size / (1024 * 1024)
        body = f"Database:  {db_path} ({size_mb:.1f} MB)"
    else:
        body = (
            f"Database:  {db_path}\n"
            "[yellow]No database found.[/]\n"
            "  Run:  docmirror source add-web <URL>"
        )
    console.print(Panel(body, title="[bold]docmirror[/]", expand=False))


def _show_sources_table(conn: sqlite3.Connection, repo: Repository) -> None:
    sources = repo.list_sources()
    if not sources:
        console.print("[dim]No sources registered yet.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Pages (done/failed/total)", justify="right")
    table.add_column("Documents (active/total)", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Last sync")

    for src in sources:
        assert src.id is not None
        counts = repo.count_crawl_pages(src.id)
        failed = sum(1 for p in repo.list_crawl_pages(src.id) if p.status == "failed")
        documents = repo.list_documents(src.id)
        active = sum(1 for d in documents if d.active)
        table.add_row(
            str(src.id),
            src.name,
            f"{counts.done}/{failed}/{counts.total}",
            f"{active}/{len(documents)}",
            f"{_count_chunks(conn, src.id):,}",
            src.last_sync_at or "[dim]never[/]",
        )
    console.print(table)


def _count_chunks(conn: sqlite3.Connection, source_id: int) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) FROM chunks c
        JOIN documents d ON d.id = c.document_id
        WHERE d.source_id = ?
        """,
        (source_id,),
    ).fetchone()
    return row[0] if row else 0
