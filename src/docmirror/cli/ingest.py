"""docmirror ingest — crawl a registered web source into the mirror.

Progress is rendered with rich; the crawl itself lives in
docmirror.crawl.pipeline and knows nothing about the terminal.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from docmirror.cli.errors import (
    err_config,
    err_no_db,
    err_source_config,
    err_source_not_found,
    warn_failed_pages,
)
from docmirror.config import ConfigError, DocmirrorConfig, HeadlessCfg, load_config, validate_proxy
from docmirror.crawl.errors import SourceConfigError
from docmirror.crawl.pipeline import IngestProgress, IngestResult, ingest_web_source
from docmirror.db.connection import open_store
from docmirror.db.models import Source
from docmirror.db.repository import Repository

console = Console()

_STATUS_MARKS = {"success": "[green]✓[/]", "skip": "[dim]↷[/]", "error": "[red]✗[/]"}


def ingest_cmd(
    source: Annotated[
        int,
        typer.Option("--source", "-s", help="Id of the source to crawl (see: docmirror source list)."),
    ],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the mirror database (default from config)."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Forget all crawl state and re-crawl from scratch."),
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-c", min=1, help="Pages fetched in parallel."),
    ] = None,
    proxy: Annotated[
        str | None,
        typer.Option("--proxy", help="http(s) proxy for discovery and page fetches."),
    ] = None,
    no_headless: Annotated[
        bool,
        typer.Option("--no-headless", help="Never start a headless browser."),
    ] = False,
    chrome_path: Annotated[
        str | None,
        typer.Option("--chrome-path", help="Chrome/Chromium executable for headless rendering."),
    ] = None,
) -> None:
    """Crawl a web source; unchanged pages are kept, changed pages are rebuilt."""
    try:
        cfg = load_config()
        proxy = validate_proxy(proxy, "--proxy")
    except ConfigError as exc:
        console.print(err_config(exc))
        raise typer.Exit(1) from None

    db_path = db if db is not None else cfg.store.db_path
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    conn = _open_db(db_path)
    try:
        repo = Repository(conn)
        record = repo.get_source(source)
        if record is None:
            console.print(err_source_not_found(source))
            raise typer.Exit(1)
        run_ingest(
            repo,
            record,
            cfg,
            force=force,
            concurrency=concurrency,
            proxy=proxy,
            headless=not no_headless,
            chrome_path=chrome_path,
        )
    finally:
        conn.close()


def run_ingest(
    repo: Repository,
    source: Source,
    cfg: DocmirrorConfig,
    *,
    force: bool = False,
    concurrency: int | None = None,
    proxy: str | None = None,
    headless: bool = True,
    chrome_path: str | None = None,
) -> IngestResult:
    """Run the pipeline for *source* with a rich progress display.

    Shared by ``docmirror ingest`` and ``docmirror source add-web``.
    """
    console.print(f"\n[bold]→ {source.name}[/] [dim]{source.root_url}[/]")
    headless_cfg = HeadlessCfg(
        enabled=headless and cfg.headless.enabled,
        chrome_path=chrome_path or cfg.headless.chrome_path,
        proxy=cfg.headless.proxy,
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Discovering…", total=None)

        def _on_progress(event: IngestProgress) -> None:
            if event.phase == "discovery":
                prog.update(task, description=event.message or "Discovering…")
                return
            if event.url is None:
                prog.update(task, description="Crawling…", total=max(event.total, 1))
                return
            prog.advance(task)
            if event.status in ("skip", "error"):
                mark = _STATUS_MARKS[event.status]
                prog.console.print(f"  {mark} {event.url} [dim]{event.message or ''}[/]")

        try:
            result = ingest_web_source(
                repo,
                source,
                force=force,
                concurrency=concurrency or cfg.crawl.concurrency,
                proxy=proxy or cfg.crawl.proxy,
                headless=headless_cfg,
                crawl=cfg.crawl,
                chunking=cfg.chunking,
                on_progress=_on_progress,
            )
        except SourceConfigError as exc:
            console.print(err_source_config(exc))
            raise typer.Exit(1) from None

    console.print(
        f"  [green]✓[/] {result.processed} processed · {result.updated} updated · "
        f"{result.skipped} skipped · {result.failed} failed "
        f"[dim](version {result.version_label})[/]"
    )
    if result.deactivated:
        console.print(f"  [dim]{result.deactivated} document(s) no longer on the site marked inactive[/]")
    if result.failed:
        console.print(warn_failed_pages(result.failed, source.id or 0))
    return result


def _open_db(db_path: Path) -> sqlite3.Connection:
    """Open (or create) the mirror database and run migrations."""
    return open_store(db_path)
