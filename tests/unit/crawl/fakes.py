"""In-memory stand-ins for the network side of the crawl engine."""

from __future__ import annotations

import threading

from docmirror.crawl.discovery import DiscoveryResult
from docmirror.crawl.errors import FetchError
from docmirror.crawl.fetcher import FetchedPage
from docmirror.crawl.urls import normalize_url, url_path

CODE = "\n\n```python\nimport example\nexample.run()\n```\n"


def doc(title: str, body: str = "", *, code: bool = True) -> str:
    text = f"# {title}\n\n" + (body or f"Reference material for {title}. " * 6)
    return text + (CODE if code else "")


class FakeSite:
    """A tiny web site: url -> (markdown, links) or an exception to raise.

    *redirects* maps a requested url to the url that is actually served.
    """

    def __init__(
        self,
        pages: dict | None = None,
        manifests: dict | None = None,
        redirects: dict[str, str] | None = None,
    ) -> None:
        self.redirects: dict[str, str] = dict(redirects or {})
        self.pages: dict = dict(pages or {})
        self.manifests: dict[str, list[str]] = dict(manifests or {})
        self.fetched: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, url, config):
        with self._lock:
            self.fetched.append(url)
        url = self.redirects.get(url, url)
        entry = self.pages.get(url)
        if entry is None:
            raise FetchError(url, f"HTTP 404 fetching '{url}'", status=404)
        if isinstance(entry, BaseException):
            raise entry
        markdown, links = entry
        return FetchedPage(
            url=url,
            markdown=markdown,
            title=markdown.splitlines()[0].lstrip("# ") if markdown else "",
            path=url_path(normalize_url(url)),
            links=list(links),
        )

    def fetch_manifest(self, url, config):
        with self._lock:
            self.fetched.append(url)
        if url not in self.manifests:
            raise FetchError(url, f"HTTP 404 fetching '{url}'", status=404)
        return list(self.manifests[url])


def fake_discover(urls: list[str], *, manifest: bool = False, sitemap: bool = True):
    calls: list[tuple] = []

    def discover(root_url, proxy=None, **options):
        calls.append((root_url, proxy))
        discover.options.append(options)
        return DiscoveryResult(urls=list(urls), manifest_found=manifest, sitemap_found=sitemap)

    discover.calls = calls
    discover.options = []
    return discover
