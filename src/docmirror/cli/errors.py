"""docmirror rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from docmirror.cli.errors import err_source_not_found
    console.print(err_source_not_found(3))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str) -> str:
    """No mirror database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  docmirror source add-web <URL>"
    )


def err_source_not_found(source_id: int) -> str:
    """Source id not registered."""
    return (
        f"[yellow]Source not found:[/] no source with id {source_id}.\n"
        "  Run:  docmirror source list  to see registered sources."
    )


def err_invalid_url(url: str) -> str:
    """Root URL cannot be crawled."""
    return (
        f"[red]Error:[/] '{url}' is not a crawlable URL.\n"
        "  Use an absolute http(s) URL, e.g.  https://docs.example.com/guide"
    )


def err_invalid_paths(option: str, exc: Exception) -> str:
    """Malformed --allow / --deny prefix."""
    return (
        f"[red]Error:[/] Invalid {option} value: {exc}\n"
        f"  Prefixes are URL paths starting with '/', e.g.  {option} /docs"
    )


def err_source_config(exc: Exception) -> str:
    """Source cannot be ingested as configured."""
    return (
        f"[red]Error:[/] {exc}\n"
        "  Remove the source and register it again:  docmirror source add-web <URL>"
    )


def err_config(exc: Exception) -> str:
    """Config file or environment value is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {exc}\n"
        "  Fix docmirror.yaml, ~/.docmirror/config.yaml or the DOCMIRROR_* variables."
    )


def warn_failed_pages(failed: int, source_id: int) -> str:
    """Some pages failed and will not be retried until a forced run."""
    return (
        f"[yellow]⚠[/] {failed} page(s) failed and stay failed on later runs.\n"
        f"  Retry them with:  docmirror ingest --source {source_id} --force"
    )
