"""Domain models for the docmirror database layer."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

PAGE_STATUSES = ("pending", "fetching", "done", "failed")

_BAD_PREFIX_RE = re.compile(r"[\s?#]|://")


@dataclass(frozen=True)
class PathPrefixes:
    """Validated set of URL path prefixes used for allow/deny scope rules.

    Built once when a source is registered; malformed entries raise
    immediately instead of being dropped at crawl time.
    """

    prefixes: tuple[str, ...] = ()

    @classmethod
    def parse(cls, values: list[str] | tuple[str, ...] | str | None) -> PathPrefixes:
        """Parse a list (or comma-separated string) of path prefixes.

        Raises:
            ValueError: If an entry does not start with "/" or contains a
                scheme, whitespace, query or fragment.
        """
        if values is None:
            return cls()
        if isinstance(values, str):
            values = [v for v in (p.strip() for p in values.split(",")) if v]

        seen: list[str] = []
        for raw in values:
            if not isinstance(raw, str):
                raise ValueError(f"Path prefix must be a string, got {raw!r}")
            value = raw.strip()
            if not value.startswith("/"):
                raise ValueError(f"Path prefix must start with '/': {raw!r}")
            if _BAD_PREFIX_RE.search(value):
                raise ValueError(f"Path prefix must be a bare path: {raw!r}")
            if value != "/":
                value = value.rstrip("/")
            if value not in seen:
                seen.append(value)
        return cls(tuple(seen))

    @classmethod
    def from_json(cls, raw: str | None) -> PathPrefixes:
        if not raw:
            return cls()
        return cls.parse(json.loads(raw))

    def to_json(self) -> str:
        return json.dumps(list(self.prefixes))

    def matches(self, path: str) -> bool:
        """True if *path* equals a prefix or lies below one (segment-aware)."""
        for prefix in self.prefixes:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def __bool__(self) -> bool:
        return bool(self.prefixes)

    def __iter__(self):
        return iter(self.prefixes)


@dataclass
class Source:
    id: int | None
    name: str
    root_url: str | None
    kind: str = "web"
    allowed_paths: PathPrefixes = field(default_factory=PathPrefixes)
    denied_paths: PathPrefixes = field(default_factory=PathPrefixes)
    max_depth: int = 3
    max_pages: int = 500
    version_label: str | None = None
    force_headless: bool = False
    require_code_snippets: bool = True
    last_sync_at: str | None = None
    last_error: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class CrawlPage:
    id: int
    source_id: int
    url: str
    normalized_url: str
    depth: int
    status: str = "pending"
    last_crawled_at: str | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class PageCounts:
    total: int = 0
    pending: int = 0
    done: int = 0


@dataclass
class DocumentDraft:
    """Document fields as produced by a crawl, before the store assigns an id."""

    source_id: int
    path: str
    uri: str
    title: str
    content_hash: str
    content: str
    version_label: str
    content_type: str = "text/markdown"


@dataclass
class Document:
    id: int
    source_id: int
    path: str
    uri: str
    title: str
    content_hash: str
    content_type: str
    content: str
    version_label: str
    active: bool = True
    updated_at: str | None = None


@dataclass
class ChunkDraft:
    """One chunk produced by a chunk builder, not yet bound to a document."""

    chunk_index: int
    text: str
    context_prefix: str = ""
    metadata: str = field(default_factory=lambda: "{}")

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)


@dataclass
class Chunk:
    document_id: int
    chunk_index: int
    text: str
    context_prefix: str = ""
    metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    rowid: int | None = None  # set after insert; None for unsaved chunks

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)
