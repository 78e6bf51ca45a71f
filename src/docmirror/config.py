"""docmirror configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site — not in this module)
  2. Environment variables  (DOCMIRROR_DB_PATH, DOCMIRROR_CONCURRENCY, DOCMIRROR_PROXY)
  3. Per-project docmirror.yaml
  4. Global ~/.docmirror/config.yaml
  5. Hardcoded defaults

Environment variables are read once, here, and land on the returned
DocmirrorConfig; nothing downstream consults os.environ.
Global config must never contain credentials (proxy passwords included).
All YAML reads use yaml.safe_load() — never yaml.load().
"""

from __future__ import annotations

import os
import re
import urllib.parse
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".docmirror"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "docmirror.yaml"

DEFAULT_DB_PATH: Path = _GLOBAL_CONFIG_DIR / "docmirror.db"
DEFAULT_CONCURRENCY: int = 4
DEFAULT_USER_AGENT: str = "docmirror/0.1 (+https://github.com/docmirror/docmirror)"

# Key names that suggest a credential — forbidden in global config.
_SECRET_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

# Known top-level sections — unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(["store", "crawl", "headless", "chunking"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StoreCfg:
    """Location of the mirror database (docmirror.yaml: store:)."""

    db_path: Path = DEFAULT_DB_PATH


@dataclass
class CrawlCfg:
    """Fetch and scheduling settings (docmirror.yaml: crawl:).

    Attributes:
        concurrency: Pages fetched in parallel per batch.
        timeout_seconds: Upper bound for one HTTP fetch or headless navigation.
        max_bytes: Response bodies larger than this are rejected.
        max_redirects: Redirect chain limit per fetch.
        user_agent: Sent with every HTTP request.
        min_content_chars: Content gate threshold after sanitization.
        allow_private_hosts: Disable the private-address guard (local mirrors).
        proxy: Optional http(s) proxy for plain fetches and discovery.
    """

    concurrency: int = DEFAULT_CONCURRENCY
    timeout_seconds: float = 30.0
    max_bytes: int = 5 * 1024 * 1024
    max_redirects: int = 5
    user_agent: str = DEFAULT_USER_AGENT
    min_content_chars: int = 100
    allow_private_hosts: bool = False
    proxy: str | None = None


@dataclass
class HeadlessCfg:
    """Headless browser settings (docmirror.yaml: headless:)."""

    enabled: bool = True
    chrome_path: str | None = None
    proxy: str | None = None


@dataclass
class ChunkingCfg:
    """Default chunk builder settings (docmirror.yaml: chunking:)."""

    chunk_size: int = 512
    overlap: float = 0.10


@dataclass
class DocmirrorConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    store: StoreCfg = field(default_factory=StoreCfg)
    crawl: CrawlCfg = field(default_factory=CrawlCfg)
    headless: HeadlessCfg = field(default_factory=HeadlessCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_secrets(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains credential-like keys or proxy passwords."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _SECRET_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  Credentials must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name}."
                    )
                if str(k) == "proxy" and isinstance(v, str) and urllib.parse.urlparse(v).password:
                    raise ConfigError(
                        f"Global config '{source}' has a proxy URL with a password at '{full}'.\n"
                        "  Use DOCMIRROR_PROXY instead."
                    )
                _scan(v, full)

    _scan(data, "")


def validate_proxy(proxy: str | None, setting: str = "proxy") -> str | None:
    """Return *proxy* unchanged if it is an http(s) URL with a host.

    Raises:
        ConfigError: For any other scheme or a missing host.
    """
    if not proxy:
        return None
    parsed = urllib.parse.urlparse(proxy)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(
            f"{setting} must be an http:// or https:// URL, got '{proxy}'\n"
            "  Example:  http://127.0.0.1:8080"
        )
    return proxy


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' — ignored.",
                UserWarning,
                stacklevel=4,
            )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any], base_dir: Path) -> DocmirrorConfig:
    """Build a *DocmirrorConfig* from a merged raw YAML dict."""
    cfg = DocmirrorConfig()

    if "store" in data:
        s = data["store"] or {}
        if s.get("db_path"):
            db_path = Path(str(s["db_path"])).expanduser()
            cfg.store = StoreCfg(db_path=db_path if db_path.is_absolute() else base_dir / db_path)

    if "crawl" in data:
        c = data["crawl"] or {}
        d = cfg.crawl
        cfg.crawl = CrawlCfg(
            concurrency=int(c.get("concurrency", d.concurrency)),
            timeout_seconds=float(c.get("timeout_seconds", d.timeout_seconds)),
            max_bytes=int(c.get("max_bytes", d.max_bytes)),
            max_redirects=int(c.get("max_redirects", d.max_redirects)),
            user_agent=str(c.get("user_agent", d.user_agent)),
            min_content_chars=int(c.get("min_content_chars", d.min_content_chars)),
            allow_private_hosts=bool(c.get("allow_private_hosts", d.allow_private_hosts)),
            proxy=validate_proxy(c.get("proxy"), "crawl.proxy"),
        )

    if "headless" in data:
        h = data["headless"] or {}
        cfg.headless = HeadlessCfg(
            enabled=bool(h.get("enabled", cfg.headless.enabled)),
            chrome_path=h.get("chrome_path") or None,
            proxy=validate_proxy(h.get("proxy"), "headless.proxy"),
        )

    if "chunking" in data:
        ch = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=int(ch.get("chunk_size", cfg.chunking.chunk_size)),
            overlap=float(ch.get("overlap", cfg.chunking.overlap)),
        )

    if cfg.crawl.concurrency < 1:
        raise ConfigError(f"crawl.concurrency must be >= 1, got {cfg.crawl.concurrency}")

    return cfg


def _apply_env_overrides(cfg: DocmirrorConfig) -> DocmirrorConfig:
    """Apply DOCMIRROR_* environment variable overrides (layer 2)."""
    if db_path := os.environ.get("DOCMIRROR_DB_PATH"):
        cfg.store.db_path = Path(db_path).expanduser()
    if concurrency := os.environ.get("DOCMIRROR_CONCURRENCY"):
        try:
            value = int(concurrency)
        except ValueError:
            raise ConfigError(
                f"DOCMIRROR_CONCURRENCY must be an integer, got '{concurrency}'"
            ) from None
        if value < 1:
            raise ConfigError(f"DOCMIRROR_CONCURRENCY must be >= 1, got {value}")
        cfg.crawl.concurrency = value
    if proxy := os.environ.get("DOCMIRROR_PROXY"):
        cfg.crawl.proxy = validate_proxy(proxy, "DOCMIRROR_PROXY")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DocmirrorConfig:
    """Load and return a merged *DocmirrorConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *docmirror.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *DocmirrorConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains credential-like fields, or a
            proxy setting is not an http(s) URL.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_secrets(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged, search_dir)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)
