"""Headless browser rendering for client-side documentation sites.

Playwright's sync API is bound to the thread that started it, so every
browser call runs on one dedicated worker thread owned by the renderer.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from docmirror.crawl.errors import FetchError

if TYPE_CHECKING:
    from docmirror.config import HeadlessCfg
    from docmirror.crawl.settings import CrawlConfig

logger = logging.getLogger(__name__)


class HeadlessRenderer:
    """A single Chromium instance shared by all page fetches of one run.

    Args:
        chrome_path: Optional path to a Chrome/Chromium executable.
        proxy: Optional proxy server URL passed to the browser.
    """

    def __init__(self, chrome_path: str | None = None, proxy: str | None = None) -> None:
        self.chrome_path = chrome_path
        self.proxy = proxy
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docmirror-headless")
        self._playwright: Any = None
        self._browser: Any = None

    def __enter__(self) -> HeadlessRenderer:
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def start(self) -> None:
        """Launch the browser. Raises whatever Playwright raises on failure."""
        self._executor.submit(self._start).result()

    def render(self, url: str, config: CrawlConfig) -> str:
        """Load *url* in a fresh page and return the rendered HTML.

        Raises:
            FetchError: On navigation errors, timeouts or HTTP error statuses.
        """
        return self._executor.submit(self._render, url, config).result()

    def close(self) -> None:
        """Close the browser and stop the worker thread. Safe to call twice."""
        try:
            self._executor.submit(self._close).result()
        except RuntimeError:
            # executor already shut down
            return
        self._executor.shutdown(wait=True)

    # -- worker-thread side -------------------------------------------

    def _start(self) -> None:
        from playwright.sync_api import sync_playwright

        self._playwright = sync_playwright().start()
        launch: dict[str, Any] = {"headless": True}
        if self.chrome_path:
            launch["executable_path"] = self.chrome_path
        if self.proxy:
            launch["proxy"] = {"server": self.proxy}
        try:
            self._browser = self._playwright.chromium.launch(**launch)
        except Exception:
            self._playwright.stop()
            self._playwright = None
            raise
        logger.debug("Headless browser started")

    def _render(self, url: str, config: CrawlConfig) -> str:
        if self._browser is None:
            raise FetchError(url, "Headless renderer is not running")
        context = self._browser.new_context(user_agent=config.user_agent)
        try:
            page = context.new_page()
            try:
                response = page.goto(
                    url,
                    wait_until="networkidle",
                    timeout=config.timeout_seconds * 1000,
                )
            except Exception as exc:
                raise FetchError(url, f"Headless render failed for '{url}': {exc}") from exc
            if response is not None and response.status >= 400:
                raise FetchError(
                    url, f"HTTP {response.status} fetching '{url}'", status=response.status
                )
            return page.content()
        finally:
            context.close()

    def _close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            finally:
                self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
            logger.debug("Headless browser stopped")


def create_headless_renderer(cfg: HeadlessCfg, proxy: str | None = None) -> HeadlessRenderer | None:
    """Start a renderer per *cfg*, or return None if disabled or unavailable.

    A browser that fails to launch degrades the run to plain HTTP fetching.
    """
    if not cfg.enabled:
        return None
    renderer = HeadlessRenderer(chrome_path=cfg.chrome_path, proxy=cfg.proxy or proxy)
    try:
        renderer.start()
    except Exception as exc:
        logger.warning("Headless browser unavailable, continuing without it: %s", exc)
        renderer.close()
        return None
    return renderer
