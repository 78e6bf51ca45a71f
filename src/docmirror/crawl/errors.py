"""Crawl error taxonomy.

Page-level outcomes:
  - PageSkipped, and FetchError with a status in SKIPPABLE_STATUSES → skip
    (page marked done, reason recorded, counted as skipped).
  - Any other exception → failure (page marked failed, counted as failed).
Run-level:
  - SourceConfigError aborts a run before any crawling starts.
"""

from __future__ import annotations

# "not found" / "gone": the page is legitimately absent, not broken.
SKIPPABLE_STATUSES: frozenset[int] = frozenset({404, 410})


class CrawlError(Exception):
    """Base class for errors raised by the crawl engine."""


class SourceConfigError(CrawlError, ValueError):
    """Raised when a source lacks configuration the run requires (e.g. root URL)."""


class PageSkipped(CrawlError):
    """A fetched page was rejected by the content gate."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class FetchError(CrawlError):
    """Transport-level failure for one URL.

    Attributes:
        url: The URL that was requested.
        status: HTTP status code, or None when no response was received.
    """

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class SsrfError(FetchError):
    """Raised when a URL resolves to a private or reserved address."""


def is_skippable(exc: BaseException) -> bool:
    """True if *exc* should count as a skip rather than a failure."""
    if isinstance(exc, PageSkipped):
        return True
    return isinstance(exc, FetchError) and exc.status in SKIPPABLE_STATUSES
