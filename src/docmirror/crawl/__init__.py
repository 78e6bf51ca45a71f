"""docmirror crawl engine — discovery, fetching, gating, scheduling."""

from docmirror.crawl.discovery import DiscoveryResult, discover_urls
from docmirror.crawl.errors import FetchError, PageSkipped, SourceConfigError, SsrfError
from docmirror.crawl.fetcher import FetchedPage, HttpFetcher
from docmirror.crawl.pipeline import IngestProgress, IngestResult, ingest_web_source
from docmirror.crawl.scheduler import CrawlScheduler, CrawlSummary
from docmirror.crawl.settings import CrawlConfig
from docmirror.crawl.urls import ScopeFilter, normalize_url

__all__ = [
    "CrawlConfig",
    "CrawlScheduler",
    "CrawlSummary",
    "DiscoveryResult",
    "FetchError",
    "FetchedPage",
    "HttpFetcher",
    "IngestProgress",
    "IngestResult",
    "PageSkipped",
    "ScopeFilter",
    "SourceConfigError",
    "SsrfError",
    "discover_urls",
    "ingest_web_source",
    "normalize_url",
]
