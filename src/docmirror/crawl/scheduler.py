"""Crawl scheduler — the batch loop over persisted crawl state.

The store is the only queue: every iteration re-reads counts and pending
pages from it, so a run interrupted at any point resumes from whatever rows
are still pending. Pages in one batch are fetched concurrently on a thread
pool; outcomes are written back on the calling thread, which is the store's
single writer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Protocol

from docmirror.chunking import ChunkBuilder
from docmirror.config import DEFAULT_CONCURRENCY
from docmirror.crawl.errors import is_skippable
from docmirror.crawl.fetcher import FetchedPage
from docmirror.crawl.gate import check_content, content_hash, sanitize
from docmirror.crawl.settings import CrawlConfig
from docmirror.crawl.urls import is_manifest_url, normalize_url, url_host
from docmirror.db.models import ChunkDraft, CrawlPage, DocumentDraft, PageCounts

logger = logging.getLogger(__name__)

SUCCESS = "success"
SKIP = "skip"
ERROR = "error"


class CrawlStore(Protocol):
    """The store operations the scheduler relies on."""

    def count_crawl_pages(self, source_id: int) -> PageCounts: ...

    def get_pending_crawl_pages(self, source_id: int, limit: int) -> list[CrawlPage]: ...

    def update_crawl_page_status(
        self, page_id: int, status: str, error_message: str | None = None
    ) -> None: ...

    def upsert_crawl_page(
        self, source_id: int, url: str, normalized_url: str, depth: int
    ) -> bool: ...

    def get_document_hashes(self, source_id: int, version_label: str) -> dict[str, str]: ...

    def touch_document(self, source_id: int, path: str, version_label: str) -> bool: ...

    def store_document(
        self, draft: DocumentDraft, chunks: list[ChunkDraft]
    ) -> tuple[int, bool]: ...

    def deactivate_missing_documents(
        self, source_id: int, version_label: str, keep_paths: Iterable[str]
    ) -> int: ...


class PageFetcher(Protocol):
    def fetch(self, url: str, config: CrawlConfig) -> FetchedPage: ...

    def fetch_manifest(self, url: str, config: CrawlConfig) -> list[str]: ...


@dataclass
class CrawlEvent:
    """Progress notification from the crawl loop."""

    current: int
    total: int
    url: str | None = None
    status: str | None = None
    message: str | None = None


@dataclass
class CrawlSummary:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    deactivated: int = 0
    keep_paths: set[str] = field(default_factory=set)


@dataclass
class PageResult:
    """What a worker produced for one page. Nothing here is persisted yet."""

    status: str
    links: list[str] = field(default_factory=list)
    draft: DocumentDraft | None = None
    chunks: list[ChunkDraft] = field(default_factory=list)
    unchanged: bool = False
    message: str | None = None


class CrawlScheduler:
    """Drive one source's crawl to completion.

    Args:
        store: Repository (or any CrawlStore).
        source_id: Source being crawled; its crawl pages must already be seeded.
        config: Scope, budgets and fetch settings for this run.
        fetcher: Page fetcher shared by all workers.
        chunk_builder: Turns document content into chunk drafts.
        version_label: Document version written by this run.
        prefix: Context tokens passed to the chunk builder.
        concurrency: Pages fetched in parallel per batch.
        on_event: Optional progress callback.
    """

    def __init__(
        self,
        store: CrawlStore,
        source_id: int,
        config: CrawlConfig,
        fetcher: PageFetcher,
        chunk_builder: ChunkBuilder,
        *,
        version_label: str = "latest",
        prefix: list[str] | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        on_event: Callable[[CrawlEvent], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.store = store
        self.source_id = source_id
        self.config = config
        self.fetcher = fetcher
        self.chunk_builder = chunk_builder
        self.version_label = version_label
        self.prefix = prefix if prefix is not None else [url_host(config.root_url)]
        self.concurrency = concurrency
        self.on_event = on_event
        self._known_hashes: dict[str, str] = {}

    def run(self) -> CrawlSummary:
        """Crawl until no pending pages remain, then deactivate stale documents."""
        summary = CrawlSummary()
        self._known_hashes = self.store.get_document_hashes(self.source_id, self.version_label)
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="docmirror-crawl"
        ) as pool:
            while True:
                counts = self.store.count_crawl_pages(self.source_id)
                pending = self.store.get_pending_crawl_pages(self.source_id, self.concurrency)
                if not pending:
                    break
                if counts.total >= self.config.max_pages and counts.pending == 0:
                    break

                self._emit(
                    CrawlEvent(
                        current=counts.done,
                        total=counts.total,
                        message=f"Crawling... ({counts.done}/{counts.total})",
                    )
                )
                self._run_batch(pool, pending, counts, summary)

        summary.deactivated = self.store.deactivate_missing_documents(
            self.source_id, self.version_label, summary.keep_paths
        )
        if summary.deactivated:
            logger.info("Deactivated %d documents no longer on the site", summary.deactivated)
        return summary

    # ------------------------------------------------------------------
    # Batch handling
    # ------------------------------------------------------------------

    def _run_batch(
        self,
        pool: ThreadPoolExecutor,
        pending: list[CrawlPage],
        counts: PageCounts,
        summary: CrawlSummary,
    ) -> None:
        futures: list[Future[PageResult]] = []
        for page in pending:
            self.store.update_crawl_page_status(page.id, "fetching")
            futures.append(pool.submit(self.process_page, page, self._known_hashes))
        wait(futures)

        for page, future in zip(pending, futures):
            exc = future.exception()
            if exc is None:
                result = future.result()
            elif is_skippable(exc):
                result = PageResult(SKIP, message=str(exc))
            else:
                logger.debug("Page %s failed", page.url, exc_info=exc)
                result = PageResult(ERROR, message=str(exc) or type(exc).__name__)

            try:
                self._settle(page, result, summary)
            except Exception as settle_exc:
                logger.warning("Could not record outcome for %s: %s", page.url, settle_exc)
                result = PageResult(ERROR, message=str(settle_exc) or type(settle_exc).__name__)
                self._record_failure(page, result, summary)

            self._emit(
                CrawlEvent(
                    current=summary.processed,
                    total=counts.total,
                    url=page.url,
                    status=result.status,
                    message=result.message,
                )
            )

    def process_page(
        self, page: CrawlPage, known_hashes: Mapping[str, str] | None = None
    ) -> PageResult:
        """Fetch, gate and chunk one page. Runs on a worker thread; no store access.

        *known_hashes* maps stored document paths to content hashes and is
        only read here. A page whose hash matches the entry for the path it
        resolved to, after redirects, is reported unchanged without re-running
        the content gate or the chunk builder.

        Raises:
            PageSkipped: Content gate rejection.
            FetchError: Transport failure.
        """
        if is_manifest_url(page.normalized_url):
            links = self.fetcher.fetch_manifest(page.url, self.config)
            return PageResult(SUCCESS, links=links, message=f"Manifest listed {len(links)} links")

        fetched = self.fetcher.fetch(page.url, self.config)
        text = sanitize(fetched.markdown)
        digest = content_hash(text)
        title = fetched.title or fetched.path
        draft = DocumentDraft(
            source_id=self.source_id,
            path=fetched.path,
            uri=f"web://{url_host(page.normalized_url)}{fetched.path}",
            title=title,
            content_hash=digest,
            content=text,
            version_label=self.version_label,
        )
        known_hash = (known_hashes or {}).get(fetched.path)
        if known_hash is not None and digest == known_hash:
            return PageResult(SUCCESS, links=fetched.links, draft=draft, unchanged=True)

        check_content(
            text,
            min_chars=self.config.min_content_chars,
            require_code=self.config.require_code_snippets,
        )
        chunks = self.chunk_builder(text, fetched.path, title, self.prefix)
        return PageResult(SUCCESS, links=fetched.links, draft=draft, chunks=chunks)

    def _settle(self, page: CrawlPage, result: PageResult, summary: CrawlSummary) -> None:
        if result.status == SKIP:
            self.store.update_crawl_page_status(page.id, "done", result.message)
            summary.skipped += 1
            return
        if result.status == ERROR:
            self._record_failure(page, result, summary)
            return

        draft = result.draft
        changed = False
        if draft is not None:
            if result.unchanged:
                self.store.touch_document(draft.source_id, draft.path, draft.version_label)
            else:
                _, changed = self.store.store_document(draft, result.chunks)
                self._known_hashes[draft.path] = draft.content_hash
        self.store.update_crawl_page_status(page.id, "done")
        self._enqueue_links(page, result.links)

        summary.processed += 1
        if changed:
            summary.updated += 1
        if draft is not None:
            summary.keep_paths.add(draft.path)

    def _record_failure(self, page: CrawlPage, result: PageResult, summary: CrawlSummary) -> None:
        summary.failed += 1
        try:
            self.store.update_crawl_page_status(page.id, "failed", result.message)
        except Exception as exc:
            logger.warning("Could not mark %s failed: %s", page.url, exc)

    def _enqueue_links(self, page: CrawlPage, links: list[str]) -> int:
        """Queue in-scope links one level below *page*, up to the page budget."""
        depth = page.depth + 1
        if not links or depth > self.config.max_depth:
            return 0
        total = self.store.count_crawl_pages(self.source_id).total
        created = 0
        for link in links:
            if total >= self.config.max_pages:
                break
            normalized = normalize_url(link, page.url)
            if normalized is None or not self.config.scope.in_scope(normalized):
                continue
            if self.store.upsert_crawl_page(self.source_id, normalized, normalized, depth):
                total += 1
                created += 1
        return created

    def _emit(self, event: CrawlEvent) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Progress callback raised; ignoring")
