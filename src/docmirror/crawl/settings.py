"""Per-run crawl configuration derived from a Source and the loaded config."""

from __future__ import annotations

from dataclasses import dataclass

from docmirror.config import DEFAULT_USER_AGENT, CrawlCfg
from docmirror.crawl.errors import SourceConfigError
from docmirror.crawl.urls import ScopeFilter, normalize_url
from docmirror.db.models import Source


@dataclass(frozen=True)
class CrawlConfig:
    """Everything the fetcher, gate and scheduler need to know about one run."""

    root_url: str
    scope: ScopeFilter
    max_depth: int = 3
    max_pages: int = 500
    force_headless: bool = False
    require_code_snippets: bool = True
    min_content_chars: int = 100
    timeout_seconds: float = 30.0
    max_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 5
    user_agent: str = DEFAULT_USER_AGENT
    allow_private_hosts: bool = False

    @classmethod
    def for_source(cls, source: Source, crawl: CrawlCfg | None = None) -> CrawlConfig:
        """Build the run configuration for *source*.

        Raises:
            SourceConfigError: If the source is unregistered or has no usable web root URL.
        """
        if source.id is None:
            raise SourceConfigError("Source is not registered (no id); add it before ingesting")
        if source.kind != "web":
            raise SourceConfigError(f"Source {source.id} is not a web source (kind={source.kind!r})")
        root = normalize_url(source.root_url)
        if root is None:
            raise SourceConfigError(f"Source {source.id} is missing a valid root_url")
        crawl = crawl or CrawlCfg()
        return cls(
            root_url=root,
            scope=ScopeFilter(root, source.allowed_paths, source.denied_paths),
            max_depth=source.max_depth,
            max_pages=source.max_pages,
            force_headless=source.force_headless,
            require_code_snippets=source.require_code_snippets,
            min_content_chars=crawl.min_content_chars,
            timeout_seconds=crawl.timeout_seconds,
            max_bytes=crawl.max_bytes,
            max_redirects=crawl.max_redirects,
            user_agent=crawl.user_agent,
            allow_private_hosts=crawl.allow_private_hosts,
        )
