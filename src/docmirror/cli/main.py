"""docmirror CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from docmirror.cli.ingest import ingest_cmd
from docmirror.cli.source import source_app
from docmirror.cli.status import status_cmd


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"docmirror {_installed_version()}")
        raise typer.Exit()


def _installed_version() -> str:
    try:
        return importlib.metadata.version("docmirror")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger("docmirror")
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(show_path=False, rich_tracebacks=verbose))


app = typer.Typer(
    name="docmirror",
    help=(
        "docmirror — local, searchable mirrors of documentation sites.\n\n"
        "  docmirror source add-web URL   Register a site (and crawl it).\n"
        "  docmirror ingest --source ID   Re-crawl a site; only changed pages are rebuilt."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """docmirror — local, searchable mirrors of documentation sites."""
    _configure_logging(verbose)


app.command("ingest")(ingest_cmd)
app.command("status")(status_cmd)
app.add_typer(source_app, name="source")


@app.command("version")
def version_cmd() -> None:
    """Show the installed docmirror version."""
    typer.echo(f"docmirror {_installed_version()}")


if __name__ == "__main__":
    app()
