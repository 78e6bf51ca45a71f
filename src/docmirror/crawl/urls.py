"""URL normalization and crawl-scope decisions."""

from __future__ import annotations

import re
import urllib.parse

from docmirror.db.models import PathPrefixes, Source

MANIFEST_FILENAME = "llms.txt"

_DEFAULT_PORTS = {"http": 80, "https": 443}
_MULTI_SLASH_RE = re.compile(r"/{2,}")


def normalize_url(url: str | None, base: str | None = None) -> str | None:
    """Return the canonical form of *url*, or None if it cannot be crawled.

    Relative references resolve against *base*. Only http(s) URLs with a
    host are accepted. Scheme and host are lowercased, default ports and
    credentials dropped, duplicate slashes collapsed, the fragment removed
    and a trailing slash stripped (the bare root stays "/"). The query
    string is kept.
    """
    if not url or not url.strip():
        return None
    try:
        absolute = urllib.parse.urljoin(base, url.strip()) if base else url.strip()
        parts = urllib.parse.urlsplit(absolute)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None

    host = parts.hostname.lower()
    if ":" in host:
        host = f"[{host}]"
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = _MULTI_SLASH_RE.sub("/", parts.path or "/")
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    return urllib.parse.urlunsplit((scheme, host, path, parts.query, ""))


def url_path(url: str) -> str:
    """Canonical document path of a normalized URL: path plus query, if any."""
    parts = urllib.parse.urlsplit(url)
    path = parts.path or "/"
    return f"{path}?{parts.query}" if parts.query else path


def url_host(url: str) -> str:
    return urllib.parse.urlsplit(url).netloc


def is_manifest_url(url: str) -> bool:
    """True for an llms.txt link listing (fetching it yields links, not a document)."""
    path = urllib.parse.urlsplit(url).path
    return path.rsplit("/", 1)[-1].lower() == MANIFEST_FILENAME


def default_allowed_paths(root_url: str) -> PathPrefixes:
    """Implicit allow-list for a source registered without one.

    A root below the site origin (``https://x.dev/docs``) confines the crawl
    to that subtree; a root at ``/`` leaves the allow-list empty.
    """
    path = urllib.parse.urlsplit(root_url).path or "/"
    if path == "/":
        return PathPrefixes()
    return PathPrefixes.parse([path.rstrip("/") or "/"])


class ScopeFilter:
    """Decide whether a normalized URL belongs to a source's crawl.

    In scope means: same host as the root, path under an allowed prefix
    (or no allow-list), and path under no denied prefix.
    """

    def __init__(
        self,
        root_url: str,
        allowed: PathPrefixes | None = None,
        denied: PathPrefixes | None = None,
    ) -> None:
        root = normalize_url(root_url)
        if root is None:
            raise ValueError(f"Not a crawlable root URL: {root_url!r}")
        self.root_url = root
        self.host = url_host(root)
        self.allowed = allowed if allowed else default_allowed_paths(root)
        self.denied = denied or PathPrefixes()

    @classmethod
    def for_source(cls, source: Source) -> ScopeFilter:
        return cls(source.root_url or "", source.allowed_paths, source.denied_paths)

    def in_scope(self, url: str) -> bool:
        parts = urllib.parse.urlsplit(url)
        if parts.netloc != self.host:
            return False
        path = parts.path or "/"
        if self.allowed and not self.allowed.matches(path):
            return False
        return not self.denied.matches(path)
