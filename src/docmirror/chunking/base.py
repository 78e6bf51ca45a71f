"""Base chunker interface for document chunk builders."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

from docmirror.db.models import ChunkDraft


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``split()``; ``build()`` turns the resulting texts
    into ``ChunkDraft`` objects carrying the document's context prefix.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required.
    """

    def __init__(self, chunk_size: int = 512, overlap: float = 0.10) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def split(self, content: str) -> list[str]:
        """Split *content* into ordered chunk texts (empty list for blank input)."""

    def build(
        self,
        content: str,
        path: str,
        title: str,
        prefix: list[str] | None = None,
    ) -> list[ChunkDraft]:
        """Chunk a document's content.

        Args:
            content: Normalized markdown of the document.
            path: Canonical document path (stored in chunk metadata).
            title: Document title.
            prefix: Leading context tokens, e.g. the site host.

        Returns:
            Ordered list of ChunkDraft objects with sequential ``chunk_index``.
        """
        context_prefix = " > ".join([*(prefix or []), title or path])
        metadata = json.dumps({"path": path, "title": title})
        return [
            ChunkDraft(chunk_index=i, text=t, context_prefix=context_prefix, metadata=metadata)
            for i, t in enumerate(self.split(content))
        ]

    def __call__(
        self, content: str, path: str, title: str, prefix: list[str] | None = None
    ) -> list[ChunkDraft]:
        return self.build(content, path, title, prefix)

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    def _split_fixed_window(self, text: str) -> list[str]:
        """Split *text* into fixed-window segments with overlap.

        Window size = ``self.chunk_size * 4`` characters.
        Overlap     = ``self.overlap`` fraction of window size.
        Segments are stripped; empty segments are omitted.
        """
        if not text.strip():
            return []

        char_size = self.chunk_size * 4
        overlap_chars = int(char_size * self.overlap)
        step = max(1, char_size - overlap_chars)

        segments: list[str] = []
        pos = 0
        length = len(text)

        while pos < length:
            end = min(pos + char_size, length)
            segment = text[pos:end].strip()
            if segment:
                segments.append(segment)
            if end >= length:
                break
            pos += step

        return segments
