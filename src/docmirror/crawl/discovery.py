"""Discovery — propose the initial candidate URLs for a crawl.

Two well-known sources are checked: an llms.txt manifest (under the root
path, then at the site origin) and /sitemap.xml at the origin, following a
sitemap index one level down. Nothing found, or a network error, just
yields fewer candidates; the caller always seeds the root URL itself.

Every request goes through the same guards as page fetches: http(s) only,
SSRF check on the target and on each redirect hop, and a redirect cap.
"""

from __future__ import annotations

import http.client
import logging
import urllib.error
import urllib.parse
import urllib.request
import xml.etree.ElementTree as ElementTree
from collections.abc import Callable
from dataclasses import dataclass, field

from docmirror.config import DEFAULT_USER_AGENT
from docmirror.crawl.errors import FetchError
from docmirror.crawl.fetcher import HttpFetcher, _LimitedRedirectHandler
from docmirror.crawl.urls import MANIFEST_FILENAME, normalize_url

logger = logging.getLogger(__name__)

# url -> body text, or None when absent/unreachable
TextFetcher = Callable[[str], "str | None"]

_MAX_SUB_SITEMAPS = 10
_MAX_BYTES = 10 * 1024 * 1024
_TIMEOUT = 15.0
_MAX_REDIRECTS = 5


@dataclass
class DiscoveryResult:
    urls: list[str] = field(default_factory=list)
    manifest_found: bool = False
    sitemap_found: bool = False


def discover_urls(
    root_url: str,
    proxy: str | None = None,
    *,
    allow_private_hosts: bool = False,
    max_redirects: int = _MAX_REDIRECTS,
    fetch_text: TextFetcher | None = None,
) -> DiscoveryResult:
    """Look for a manifest and a sitemap on *root_url*'s site.

    Args:
        root_url: Normalized root URL of the source.
        proxy: Optional http(s) proxy for discovery requests.
        allow_private_hosts: Skip the SSRF guard (internal documentation sites).
        max_redirects: Redirect hops allowed per request.
        fetch_text: Override for the network call (tests).

    Returns:
        DiscoveryResult with candidates deduplicated in first-seen order.
        The manifest URL itself is a candidate; its links are expanded
        later by the scheduler.
    """
    fetch = fetch_text or _UrllibTextFetcher(
        proxy, allow_private_hosts=allow_private_hosts, max_redirects=max_redirects
    )
    result = DiscoveryResult()
    seen: set[str] = set()

    def _add(url: str | None) -> None:
        normalized = normalize_url(url) if url else None
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.urls.append(normalized)

    manifest = _find_manifest(root_url, fetch)
    if manifest:
        result.manifest_found = True
        _add(manifest)

    sitemap_urls = _read_sitemap(root_url, fetch)
    if sitemap_urls is not None:
        result.sitemap_found = True
        for url in sitemap_urls:
            _add(url)

    logger.info(
        "Discovery for %s: %d candidates (llms.txt: %s, sitemap: %s)",
        root_url,
        len(result.urls),
        result.manifest_found,
        result.sitemap_found,
    )
    return result


def _origin(url: str) -> str:
    parts = urllib.parse.urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def manifest_candidates(root_url: str) -> list[str]:
    """llms.txt locations to try, most specific first."""
    parts = urllib.parse.urlsplit(root_url)
    candidates = []
    path = (parts.path or "/").rstrip("/")
    if path:
        candidates.append(f"{_origin(root_url)}{path}/{MANIFEST_FILENAME}")
    origin_manifest = f"{_origin(root_url)}/{MANIFEST_FILENAME}"
    if origin_manifest not in candidates:
        candidates.append(origin_manifest)
    return candidates


def _find_manifest(root_url: str, fetch: TextFetcher) -> str | None:
    for url in manifest_candidates(root_url):
        body = fetch(url)
        # Sites that answer every path with their HTML shell do not count.
        if body and body.strip() and not body.lstrip().startswith("<"):
            logger.debug("Found manifest at %s", url)
            return url
    return None


def _read_sitemap(root_url: str, fetch: TextFetcher) -> list[str] | None:
    """Return the page URLs listed by the site's sitemap, or None if absent."""
    url = f"{_origin(root_url)}/sitemap.xml"
    body = fetch(url)
    if not body:
        return None

    page_urls = sitemap_locations(body, "urlset")
    if page_urls is not None:
        return page_urls

    sub_sitemaps = sitemap_locations(body, "sitemapindex")
    if sub_sitemaps is None:
        return None
    if len(sub_sitemaps) > _MAX_SUB_SITEMAPS:
        logger.debug(
            "Sitemap index at %s lists %d sitemaps; reading the first %d",
            url,
            len(sub_sitemaps),
            _MAX_SUB_SITEMAPS,
        )
    urls: list[str] = []
    for sub_url in sub_sitemaps[:_MAX_SUB_SITEMAPS]:
        sub_body = fetch(sub_url)
        if sub_body:
            urls.extend(sitemap_locations(sub_body, "urlset") or [])
    return urls


def sitemap_locations(body: str, root_tag: str) -> list[str] | None:
    """Return the ``<loc>`` values of a sitemap document.

    None when *body* is not XML or its root element is not *root_tag*
    (namespaces ignored). Entities and CDATA sections are decoded by the
    XML parser.
    """
    try:
        root = ElementTree.fromstring(body.lstrip("\ufeff \t\r\n"))
    except ElementTree.ParseError:
        return None
    if _local_name(root.tag) != root_tag:
        return None
    return [
        element.text.strip()
        for element in root.iter()
        if _local_name(element.tag) == "loc" and element.text and element.text.strip()
    ]


def _local_name(tag: object) -> str:
    return str(tag).rsplit("}", 1)[-1].lower()


class _UrllibTextFetcher:
    """GET a URL and return its text, or None on any HTTP or network failure."""

    def __init__(
        self,
        proxy: str | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        allow_private_hosts: bool = False,
        max_redirects: int = _MAX_REDIRECTS,
    ) -> None:
        self._proxy = proxy
        self._user_agent = user_agent
        self._allow_private_hosts = allow_private_hosts
        self._max_redirects = max_redirects

    def __call__(self, url: str) -> str | None:
        try:
            HttpFetcher._validate_scheme(url)
            if not self._allow_private_hosts:
                HttpFetcher._check_ssrf(url)
        except FetchError as exc:
            logger.debug("Discovery skipped %s: %s", url, exc)
            return None

        request = urllib.request.Request(url, headers={"User-Agent": self._user_agent})
        try:
            with self._opener().open(request, timeout=_TIMEOUT) as response:
                body = response.read(_MAX_BYTES)
                charset = response.headers.get_content_charset() or "utf-8"
        except urllib.error.HTTPError as exc:
            logger.debug("Discovery request %s: HTTP %s", url, exc.code)
            return None
        except urllib.error.URLError as exc:
            logger.debug("Discovery request %s failed: %s", url, exc.reason)
            return None
        # OSError covers timeouts and resets; HTTPException covers
        # RemoteDisconnected, BadStatusLine and IncompleteRead.
        except (FetchError, OSError, http.client.HTTPException, ValueError) as exc:
            logger.debug("Discovery request %s failed: %s", url, exc)
            return None
        try:
            return body.decode(charset, errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")

    def _opener(self) -> urllib.request.OpenerDirector:
        # Fresh redirect handler per request: it counts hops.
        handlers: list[urllib.request.BaseHandler] = [
            _LimitedRedirectHandler(self._max_redirects, check_ssrf=not self._allow_private_hosts)
        ]
        if self._proxy:
            handlers.append(
                urllib.request.ProxyHandler({"http": self._proxy, "https": self._proxy})
            )
        return urllib.request.build_opener(*handlers)
