"""Markdown chunker — heading-aware splits with fixed-window fallback."""

from __future__ import annotations

import re

from docmirror.chunking.base import BaseChunker

# Matches H1, H2, H3 headings at the start of a line.
_HEADING_RE = re.compile(r"^#{1,3} .+", re.MULTILINE)
_FENCE_RE = re.compile(r"^(```|~~~)", re.MULTILINE)


class MarkdownChunker(BaseChunker):
    """Split Markdown on H1/H2/H3 heading boundaries.

    Strategy:
    - Each heading + its following content is a *section*; content before
      the first heading (preamble) becomes its own section.
    - Headings inside fenced code blocks are not boundaries (a ``# comment``
      line in a shell snippet is not a heading).
    - Sections that exceed ``chunk_size`` tokens are further split with
      ``_split_fixed_window()``.
    - No headings at all → fixed-window splitting of the whole document.
    """

    def split(self, content: str) -> list[str]:
        if not content.strip():
            return []

        sections = self._split_on_headings(content)
        if not sections:
            return self._split_fixed_window(content)

        texts: list[str] = []
        for section in sections:
            if self.count_tokens(section) <= self.chunk_size:
                texts.append(section)
            else:
                texts.extend(self._split_fixed_window(section))

        return [t for t in texts if t.strip()]

    def _split_on_headings(self, content: str) -> list[str]:
        """Split *content* on H1/H2/H3 boundaries outside code fences.

        Returns an empty list if no headings are found (signals fallback).
        """
        fenced = _fenced_spans(content)
        matches = [
            m for m in _HEADING_RE.finditer(content)
            if not any(start <= m.start() < end for start, end in fenced)
        ]
        if not matches:
            return []

        sections: list[str] = []

        if matches[0].start() > 0:
            preamble = content[: matches[0].start()].strip()
            if preamble:
                sections.append(preamble)

        for i, match in enumerate(matches):
            start = match.start()
            end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
            section = content[start:end].strip()
            if section:
                sections.append(section)

        return sections


def _fenced_spans(content: str) -> list[tuple[int, int]]:
    """Return (start, end) offsets of fenced code blocks; an unclosed fence runs to EOF."""
    spans: list[tuple[int, int]] = []
    fences = list(_FENCE_RE.finditer(content))
    for i in range(0, len(fences), 2):
        start = fences[i].start()
        end = fences[i + 1].end() if i + 1 < len(fences) else len(content)
        spans.append((start, end))
    return spans
