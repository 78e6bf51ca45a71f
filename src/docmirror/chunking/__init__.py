"""Chunk builders — split stored document content into search units."""

from __future__ import annotations

from collections.abc import Callable

from docmirror.chunking.base import BaseChunker
from docmirror.chunking.markdown import MarkdownChunker
from docmirror.db.models import ChunkDraft

# (content, path, title, prefix) -> drafts
ChunkBuilder = Callable[[str, str, str, list[str]], list[ChunkDraft]]

__all__ = [
    "BaseChunker",
    "ChunkBuilder",
    "MarkdownChunker",
]
