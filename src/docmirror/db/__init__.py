"""docmirror database layer."""

from docmirror.db.connection import Database, open_store
from docmirror.db.migrations import MIGRATIONS, run_migrations
from docmirror.db.repository import Repository
from docmirror.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "open_store",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
