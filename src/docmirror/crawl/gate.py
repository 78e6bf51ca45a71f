"""Content gate: decide whether a fetched page becomes a document."""

from __future__ import annotations

import hashlib
import re

from docmirror.crawl.errors import PageSkipped

TOO_SMALL = "Document too small after sanitization"
MISSING_CODE = "Document missing code snippets"

_FENCE_RE = re.compile(r"^[ \t]{0,3}(```|~~~)", re.MULTILINE)
_INDENTED_RE = re.compile(r"(?:^|\n\n)((?: {4}|\t)\S.*(?:\n(?: {4}|\t).*)*)")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_WS_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def sanitize(markdown: str) -> str:
    """Normalize line endings, drop control characters and collapse blank runs."""
    text = markdown.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_RE.sub("", text)
    text = _TRAILING_WS_RE.sub("", text)
    return _BLANK_RUN_RE.sub("\n\n", text).strip()


def contains_code_snippet(markdown: str) -> bool:
    """True if *markdown* has a fenced or indented code block."""
    if len(_FENCE_RE.findall(markdown)) >= 2:
        return True
    return _INDENTED_RE.search(markdown) is not None


def check_content(markdown: str, *, min_chars: int = 100, require_code: bool = True) -> str:
    """Sanitize *markdown* and return it if it passes the gate.

    Raises:
        PageSkipped: If the sanitized text is shorter than *min_chars*, or
            *require_code* is set and no code block is present.
    """
    text = sanitize(markdown)
    if len(text) < min_chars:
        raise PageSkipped(TOO_SMALL)
    if require_code and not contains_code_snippet(text):
        raise PageSkipped(MISSING_CODE)
    return text


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
