"""Page fetcher — one URL in, normalized markdown + outbound links out.

Security requirements (plain HTTP path):
- SSRF guard: the hostname is resolved and private/loopback/link-local
  ranges are rejected before any connection is made, and again for every
  redirect target (unless the crawl allows private hosts).
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: HTML, plain text and markdown.
- Response body capped at CrawlConfig.max_bytes.
- Timeout and redirect limit from CrawlConfig. The timeout bounds the whole
  request, not just each socket read.
"""

from __future__ import annotations

import http.client
import ipaddress
import logging
import re
import socket
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from http.client import HTTPResponse
from typing import TYPE_CHECKING

import html2text
from bs4 import BeautifulSoup, Tag

from docmirror.crawl.errors import FetchError, SsrfError
from docmirror.crawl.urls import normalize_url, url_path

if TYPE_CHECKING:
    from docmirror.crawl.headless import HeadlessRenderer
    from docmirror.crawl.settings import CrawlConfig

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = {"https", "http"}
_HTML_TYPES = {"text/html", "application/xhtml+xml"}
_TEXT_TYPES = {"text/plain", "text/markdown", "text/x-markdown"}

# Link targets that are never documentation pages.
_ASSET_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".css", ".js",
    ".map", ".woff", ".woff2", ".ttf", ".zip", ".tar", ".gz", ".tgz", ".pdf",
    ".mp4", ".webm", ".mp3", ".xml", ".json", ".wasm",
)

_STRIP_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg", "head"]
_MAIN_SELECTORS = ["main", "article", "[role=main]", ".markdown-body", "#content", ".content"]

# Signs of a client-rendered shell page.
_JS_APP_RE = re.compile(
    r'id=["\'](?:root|app|__next|__nuxt|docusaurus)["\']'
    r"|__NEXT_DATA__"
    r"|enable javascript"
    r"|javascript is required",
    re.IGNORECASE,
)
_JS_SHELL_MAX_TEXT = 200

_MD_LINK_RE = re.compile(r"\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
_BARE_URL_RE = re.compile(r"(?<![(<\[])\bhttps?://[^\s<>()\[\]\"']+")
_MD_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_PLACEHOLDER = "DOCMIRRORCODEBLOCK{:04d}"
_PLACEHOLDER_RE = re.compile(r"DOCMIRRORCODEBLOCK(\d{4})")
_LANG_CLASS_RE = re.compile(r"^(?:language|lang|highlight-source)-([\w+#.-]+)$")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_READ_CHUNK = 64 * 1024


@dataclass
class FetchedPage:
    """Normalized result of fetching one URL."""

    url: str
    markdown: str
    title: str
    path: str
    links: list[str] = field(default_factory=list)


def _converter() -> html2text.HTML2Text:
    h = html2text.HTML2Text()
    h.ignore_images = True
    h.ignore_links = False
    h.body_width = 0
    h.unicode_snob = True
    return h


class HttpFetcher:
    """Fetch documentation pages over HTTP, falling back to a headless renderer.

    Args:
        proxy: Optional http(s) proxy URL for plain fetches.
        renderer: Started HeadlessRenderer, or None when headless is disabled.
    """

    def __init__(self, proxy: str | None = None, renderer: HeadlessRenderer | None = None) -> None:
        self.proxy = proxy
        self.renderer = renderer

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, url: str, config: CrawlConfig) -> FetchedPage:
        """Fetch *url* and convert it to a FetchedPage.

        Raises:
            FetchError: On transport errors, HTTP error statuses, unsupported
                content types or oversized bodies.
        """
        if config.force_headless:
            if self.renderer is not None:
                return html_to_page(self.renderer.render(url, config), url)
            logger.debug("force_headless set but no renderer available; plain fetch for %s", url)

        body, content_type, final_url = self._fetch(url, config)
        text = _decode(body, content_type)

        if content_type.split(";", 1)[0] in _TEXT_TYPES:
            return text_to_page(text, final_url)

        page = html_to_page(text, final_url)
        if self.renderer is not None and needs_javascript(text, page.markdown):
            logger.debug("Re-rendering client-side app page %s headlessly", url)
            return html_to_page(self.renderer.render(url, config), url)
        return page

    def fetch_manifest(self, url: str, config: CrawlConfig) -> list[str]:
        """Fetch an llms.txt manifest and return the absolute links it lists."""
        body, content_type, final_url = self._fetch(url, config)
        return parse_manifest(_decode(body, content_type), final_url)

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _fetch(self, url: str, config: CrawlConfig) -> tuple[bytes, str, str]:
        """Validate and fetch *url*. Returns (body, content_type, final_url)."""
        deadline = time.monotonic() + config.timeout_seconds
        self._validate_scheme(url)
        if not config.allow_private_hosts:
            self._check_ssrf(url)

        handlers: list[urllib.request.BaseHandler] = [
            _LimitedRedirectHandler(config.max_redirects, check_ssrf=not config.allow_private_hosts)
        ]
        if self.proxy:
            handlers.append(urllib.request.ProxyHandler({"http": self.proxy, "https": self.proxy}))
        opener = urllib.request.build_opener(*handlers)
        request = urllib.request.Request(
            url,
            headers={
                "User-Agent": config.user_agent,
                "Accept": "text/html,application/xhtml+xml,text/markdown,text/plain;q=0.9,*/*;q=0.5",
            },
        )

        try:
            response: HTTPResponse = opener.open(request, timeout=config.timeout_seconds)
        except urllib.error.HTTPError as exc:
            raise FetchError(url, f"HTTP {exc.code} fetching '{url}'", status=exc.code) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, FetchError):
                raise exc.reason from exc
            raise FetchError(url, f"Failed to fetch '{url}': {exc.reason}") from exc
        except (TimeoutError, socket.timeout) as exc:
            raise FetchError(
                url, f"Timed out after {config.timeout_seconds:g}s fetching '{url}'"
            ) from exc
        except (OSError, http.client.HTTPException) as exc:
            raise FetchError(url, f"Failed to fetch '{url}': {exc!r}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _HTML_TYPES and ct not in _TEXT_TYPES:
                raise FetchError(url, f"Unsupported Content-Type '{ct}' for '{url}'")
            try:
                body = _read_body(response, url, config, deadline)
            except (TimeoutError, socket.timeout) as exc:
                raise FetchError(
                    url, f"Timed out after {config.timeout_seconds:g}s reading '{url}'"
                ) from exc
            except (OSError, http.client.HTTPException) as exc:
                raise FetchError(url, f"Failed to read '{url}': {exc!r}") from exc
            charset = response.headers.get_content_charset() or "utf-8"
            final_url = response.geturl() or url

        if len(body) > config.max_bytes:
            raise FetchError(
                url, f"Response body exceeds {config.max_bytes:,} byte limit for '{url}'"
            )
        return body, f"{ct};{charset}", final_url

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise FetchError(
                url,
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed.",
            )

    @staticmethod
    def _check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges.

        Raises SsrfError if any resolved address is private, loopback,
        link-local, or otherwise reserved.
        """
        hostname = urllib.parse.urlparse(url).hostname
        if not hostname:
            raise FetchError(url, f"URL has no hostname: {url}")

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise FetchError(url, f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            try:
                ip = ipaddress.ip_address(addrinfo[4][0])
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    url,
                    f"URL resolves to private address ({ip}). "
                    "Set crawl.allow_private_hosts to mirror internal sites.",
                )


def _read_body(response: HTTPResponse, url: str, config: CrawlConfig, deadline: float) -> bytes:
    """Read at most max_bytes + 1 bytes, failing once *deadline* has passed."""
    chunks: list[bytes] = []
    size = 0
    while size <= config.max_bytes:
        if time.monotonic() > deadline:
            raise FetchError(
                url, f"Timed out after {config.timeout_seconds:g}s fetching '{url}'"
            )
        chunk = response.read(min(_READ_CHUNK, config.max_bytes + 1 - size))
        if not chunk:
            break
        chunks.append(chunk)
        size += len(chunk)
    return b"".join(chunks)


# ------------------------------------------------------------------
# Conversion
# ------------------------------------------------------------------


def html_to_page(html: str, url: str) -> FetchedPage:
    """Convert an HTML document to markdown, title and outbound links."""
    soup = BeautifulSoup(html, "html.parser")
    base = url
    base_tag = soup.find("base", href=True)
    if isinstance(base_tag, Tag):
        base = urllib.parse.urljoin(url, str(base_tag["href"]))

    title = _extract_title(soup)
    links = _extract_links(soup, base)

    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()

    root = _main_content(soup)
    blocks = _replace_code_blocks(root)
    markdown = _converter().handle(str(root))
    markdown = _restore_code_blocks(markdown, blocks)
    markdown = _BLANK_RUN_RE.sub("\n\n", markdown).strip()

    path = url_path(normalize_url(url) or url)
    return FetchedPage(url=url, markdown=markdown, title=title or path, path=path, links=links)


def text_to_page(text: str, url: str) -> FetchedPage:
    """Wrap a plain-text or markdown response as a FetchedPage."""
    path = url_path(normalize_url(url) or url)
    match = _MD_TITLE_RE.search(text)
    title = match.group(1).strip() if match else path
    return FetchedPage(
        url=url,
        markdown=text.strip(),
        title=title,
        path=path,
        links=parse_manifest(text, url),
    )


def parse_manifest(text: str, base_url: str) -> list[str]:
    """Extract absolute http(s) links from markdown links and bare URLs."""
    candidates = _MD_LINK_RE.findall(text) + _BARE_URL_RE.findall(text)
    links: list[str] = []
    seen: set[str] = set()
    for raw in candidates:
        normalized = normalize_url(raw.rstrip(".,;:"), base_url)
        if normalized and normalized not in seen and not _is_asset(normalized):
            seen.add(normalized)
            links.append(normalized)
    return links


def needs_javascript(html: str, markdown: str) -> bool:
    """True when a page looks like an empty client-side app shell."""
    return len(markdown.strip()) < _JS_SHELL_MAX_TEXT and bool(_JS_APP_RE.search(html))


def _decode(body: bytes, content_type: str) -> str:
    _, _, charset = content_type.partition(";")
    try:
        return body.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def _extract_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    return h1.get_text(" ", strip=True) if h1 else ""


def _extract_links(soup: BeautifulSoup, base: str) -> list[str]:
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.startswith("#"):
            continue
        normalized = normalize_url(href, base)
        if normalized and normalized not in seen and not _is_asset(normalized):
            seen.add(normalized)
            links.append(normalized)
    return links


def _is_asset(url: str) -> bool:
    return urllib.parse.urlsplit(url).path.lower().endswith(_ASSET_EXTENSIONS)


def _main_content(soup: BeautifulSoup) -> Tag | BeautifulSoup:
    for selector in _MAIN_SELECTORS:
        found = soup.select_one(selector)
        if found is not None and found.get_text(strip=True):
            return found
    return soup.body or soup


def _replace_code_blocks(root: Tag | BeautifulSoup) -> list[str]:
    """Swap each <pre> for a placeholder; return the fenced markdown blocks."""
    blocks: list[str] = []
    for pre in root.find_all("pre"):
        code = pre.find("code")
        language = (_code_language(code) if isinstance(code, Tag) else "") or _code_language(pre)
        text = pre.get_text().strip("\n")
        blocks.append(f"```{language}\n{text}\n```")
        pre.replace_with(_placeholder_tag(_PLACEHOLDER.format(len(blocks) - 1)))
    return blocks


def _placeholder_tag(text: str) -> Tag:
    return BeautifulSoup(f"<p>{text}</p>", "html.parser").p


def _restore_code_blocks(markdown: str, blocks: list[str]) -> str:
    def _sub(match: re.Match[str]) -> str:
        index = int(match.group(1))
        return f"\n{blocks[index]}\n" if index < len(blocks) else match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, markdown)


def _code_language(tag: Tag) -> str:
    for cls in tag.get("class") or []:
        match = _LANG_CLASS_RE.match(str(cls))
        if match:
            return match.group(1)
    return ""


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Cap redirects at *max_redirects* and re-run the SSRF guard on each hop."""

    def __init__(self, max_redirects: int, check_ssrf: bool = True) -> None:
        self._max_redirects = max_redirects
        self._check_ssrf = check_ssrf
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                req.full_url,
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'.",
            )
        HttpFetcher._validate_scheme(newurl)
        if self._check_ssrf:
            HttpFetcher._check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
