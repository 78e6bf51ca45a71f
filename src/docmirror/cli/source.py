"""docmirror source CLI commands.

Commands:
  docmirror source add-web URL   — register a documentation site (and crawl it)
  docmirror source list          — show registered sources with sync status
  docmirror source remove ID     — delete a source and everything mirrored from it
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from docmirror.cli.errors import (
    err_config,
    err_invalid_paths,
    err_invalid_url,
    err_no_db,
    err_source_not_found,
)
from docmirror.cli.ingest import run_ingest
from docmirror.config import ConfigError, load_config
from docmirror.crawl.urls import normalize_url, url_host
from docmirror.db.connection import open_store
from docmirror.db.models import PathPrefixes
from docmirror.db.repository import Repository

console = Console()

source_app = typer.Typer(
    name="source",
    help="Manage mirrored sources (add-web, list, remove).",
    add_completion=False,
)


@source_app.command("add-web")
def add_web_cmd(
    url: Annotated[str, typer.Argument(help="Root URL of the documentation site.")],
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Display name (default: the site host)."),
    ] = None,
    allow: Annotated[
        list[str] | None,
        typer.Option("--allow", help="Only crawl paths under this prefix (repeatable)."),
    ] = None,
    deny: Annotated[
        list[str] | None,
        typer.Option("--deny", help="Never crawl paths under this prefix (repeatable)."),
    ] = None,
    depth: Annotated[
        int,
        typer.Option("--depth", min=0, help="Maximum link depth from the root URL."),
    ] = 3,
    pages: Annotated[
        int,
        typer.Option("--pages", min=1, help="Maximum number of pages to crawl."),
    ] = 500,
    version: Annotated[
        str | None,
        typer.Option("--version", help="Version label for stored documents (default: latest)."),
    ] = None,
    force_headless: Annotated[
        bool,
        typer.Option("--force-headless", help="Always render pages in a headless browser."),
    ] = False,
    no_code_required: Annotated[
        bool,
        typer.Option("--no-code-required", help="Keep pages that contain no code blocks."),
    ] = False,
    no_ingest: Annotated[
        bool,
        typer.Option("--no-ingest", help="Register only; crawl later with docmirror ingest."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mirror database (default from config)."),
    ] = None,
) -> None:
    """Register a documentation web site as a source."""
    root = normalize_url(url)
    if root is None:
        console.print(err_invalid_url(url))
        raise typer.Exit(1)

    try:
        allowed = PathPrefixes.parse(allow)
    except ValueError as exc:
        console.print(err_invalid_paths("--allow", exc))
        raise typer.Exit(1) from None
    try:
        denied = PathPrefixes.parse(deny)
    except ValueError as exc:
        console.print(err_invalid_paths("--deny", exc))
        raise typer.Exit(1) from None

    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1) from None

    conn = open_store(db if db is not None else cfg.store.db_path)
    try:
        repo = Repository(conn)
        source_id = repo.add_web_source(
            name or url_host(root),
            root,
            allowed_paths=allowed,
            denied_paths=denied,
            max_depth=depth,
            max_pages=pages,
            version_label=version,
            force_headless=force_headless,
            require_code_snippets=not no_code_required,
        )
        console.print(f"[green]✓[/] Registered source [bold]{source_id}[/]: {root}")

        if no_ingest:
            console.print(f"  Crawl it with:  docmirror ingest --source {source_id}")
            return
        source = repo.get_source(source_id)
        assert source is not None
        run_ingest(repo, source, cfg)
    finally:
        conn.close()


@source_app.command("list")
def list_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mirror database (default from config)."),
    ] = None,
) -> None:
    """List registered sources and their last sync."""
    db_path = _resolve_db(db)
    if not db_path.exists():
        console.print("[yellow]No sources registered yet.[/]\n  Run:  docmirror source add-web <URL>")
        raise typer.Exit(0)

    conn = open_store(db_path)
    try:
        repo = Repository(conn)
        sources = repo.list_sources()
        if not sources:
            console.print("[yellow]No sources registered yet.[/]")
            raise typer.Exit(0)

        table = Table(title="Sources", show_header=True, header_style="bold")
        table.add_column("ID", justify="right")
        table.add_column("Name", style="bold")
        table.add_column("Root URL")
        table.add_column("Depth/Pages", justify="right")
        table.add_column("Last sync")

        for src in sources:
            if src.last_error:
                sync = f"[red]✗ {src.last_error}[/]"
            elif src.last_sync_at:
                sync = f"[green]✓[/] {src.last_sync_at}"
            else:
                sync = "[dim]never[/]"
            table.add_row(
                str(src.id),
                src.name,
                src.root_url or "",
                f"{src.max_depth}/{src.max_pages}",
                sync,
            )
        console.print(table)
    finally:
        conn.close()


@source_app.command("remove")
def remove_cmd(
    source_id: Annotated[int, typer.Argument(help="Id of the source to remove.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mirror database (default from config)."),
    ] = None,
) -> None:
    """Remove a source with its crawl state, documents and chunks."""
    db_path = _resolve_db(db)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    conn = open_store(db_path)
    try:
        repo = Repository(conn)
        source = repo.get_source(source_id)
        if source is None:
            console.print(err_source_not_found(source_id))
            raise typer.Exit(1)

        documents = repo.list_documents(source_id)
        pages = repo.count_crawl_pages(source_id)
        console.print(f"\nRemove source: [bold]{source.name}[/] ({source.root_url})")
        console.print(f"  Pages: {pages.total}  |  Documents: {len(documents)}")

        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        repo.remove_source(source_id)
        console.print(f"\n[green]✓[/] Removed source {source_id}")
    finally:
        conn.close()


def _resolve_db(db: Path | None) -> Path:
    if db is not None:
        return db
    try:
        return load_config().store.db_path
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1) from None
