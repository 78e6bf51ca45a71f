"""Web ingestion pipeline: discovery, seeding, crawl, sweep and bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from docmirror.chunking import ChunkBuilder, MarkdownChunker
from docmirror.config import DEFAULT_CONCURRENCY, ChunkingCfg, CrawlCfg, HeadlessCfg
from docmirror.crawl.discovery import DiscoveryResult, discover_urls
from docmirror.crawl.fetcher import HttpFetcher
from docmirror.crawl.headless import create_headless_renderer
from docmirror.crawl.scheduler import CrawlEvent, CrawlScheduler, PageFetcher
from docmirror.crawl.settings import CrawlConfig
from docmirror.crawl.urls import is_manifest_url, normalize_url, url_host
from docmirror.db.models import Source
from docmirror.db.repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_VERSION_LABEL = "latest"


@dataclass
class IngestProgress:
    """One progress event. ``phase`` is "discovery" or "crawl"."""

    phase: str
    current: int
    total: int
    url: str | None = None
    status: str | None = None
    message: str | None = None


@dataclass
class IngestResult:
    processed: int
    updated: int
    skipped: int
    failed: int
    version_label: str
    deactivated: int = 0


ProgressSink = Callable[[IngestProgress], None]
# discover(root_url, proxy, *, allow_private_hosts=..., max_redirects=...)
Discover = Callable[..., DiscoveryResult]


def ingest_web_source(
    repo: Repository,
    source: Source,
    *,
    force: bool = False,
    concurrency: int = DEFAULT_CONCURRENCY,
    proxy: str | None = None,
    headless: HeadlessCfg | None = None,
    crawl: CrawlCfg | None = None,
    chunking: ChunkingCfg | None = None,
    fetcher: PageFetcher | None = None,
    discover: Discover | None = None,
    chunk_builder: ChunkBuilder | None = None,
    on_progress: ProgressSink | None = None,
) -> IngestResult:
    """Crawl *source* and bring its documents up to date.

    Args:
        repo: Open repository; this call is its only writer for the source.
        source: A registered web source.
        force: Delete every crawl page of the source first (full re-crawl).
            Otherwise done and interrupted pages are re-queued and failed
            pages stay failed.
        concurrency: Pages fetched in parallel per batch.
        proxy: Proxy for discovery and plain HTTP fetches.
        headless: Headless renderer settings; ignored when *fetcher* is given.
        crawl: Fetch limits and gate thresholds (defaults from CrawlCfg).
        chunking: Settings for the default markdown chunk builder.
        fetcher: Replacement page fetcher (tests, custom transports).
        discover: Replacement discovery function.
        chunk_builder: Replacement chunk builder.
        on_progress: Receives IngestProgress events; exceptions it raises
            are logged and ignored.

    Returns:
        IngestResult with the run's counters and the version label used.

    Raises:
        SourceConfigError: If the source has no usable root URL or is not a
            web source. Nothing is crawled.
    """
    emit = _safe_sink(on_progress)
    try:
        config = CrawlConfig.for_source(source, crawl)
        result = _run(
            repo,
            source,
            config,
            force=force,
            concurrency=concurrency,
            proxy=proxy if proxy is not None else (crawl.proxy if crawl else None),
            headless=headless if headless is not None else HeadlessCfg(),
            chunking=chunking or ChunkingCfg(),
            fetcher=fetcher,
            discover=discover or discover_urls,
            chunk_builder=chunk_builder,
            emit=emit,
        )
    except Exception as exc:
        if source.id is not None:
            repo.update_source_sync(
                source.id, last_sync_at=source.last_sync_at, last_error=str(exc)
            )
        raise

    repo.update_source_sync(source.id, last_sync_at=_now(), last_error=None)
    return result


def _run(
    repo: Repository,
    source: Source,
    config: CrawlConfig,
    *,
    force: bool,
    concurrency: int,
    proxy: str | None,
    headless: HeadlessCfg,
    chunking: ChunkingCfg,
    fetcher: PageFetcher | None,
    discover: Discover,
    chunk_builder: ChunkBuilder | None,
    emit: ProgressSink,
) -> IngestResult:
    version_label = source.version_label or DEFAULT_VERSION_LABEL

    if force:
        cleared = repo.clear_crawl_pages(source.id)
        logger.info("Force re-ingest of source %s: cleared %d crawl pages", source.id, cleared)
    else:
        requeued = repo.requeue_crawl_pages(source.id)
        logger.debug("Re-queued %d crawl pages of source %s", requeued, source.id)

    emit(IngestProgress("discovery", 0, 0, message="Discovering URLs..."))
    discovery = discover(
        config.root_url,
        proxy,
        allow_private_hosts=config.allow_private_hosts,
        max_redirects=config.max_redirects,
    )
    emit(
        IngestProgress(
            "discovery",
            len(discovery.urls),
            len(discovery.urls),
            message=(
                f"Found {len(discovery.urls)} URLs "
                f"(llms.txt: {discovery.manifest_found}, sitemap: {discovery.sitemap_found})"
            ),
        )
    )

    seeded = seed_crawl_pages(repo, source.id, config, discovery.urls)
    emit(IngestProgress("discovery", seeded, seeded, message=f"Seeded {seeded} pages"))

    builder = chunk_builder or MarkdownChunker(chunking.chunk_size, chunking.overlap)
    renderer = None
    if fetcher is None:
        renderer = create_headless_renderer(headless, proxy)
        fetcher = HttpFetcher(proxy=proxy, renderer=renderer)

    def _on_event(event: CrawlEvent) -> None:
        emit(
            IngestProgress(
                "crawl",
                event.current,
                event.total,
                url=event.url,
                status=event.status,
                message=event.message,
            )
        )

    try:
        summary = CrawlScheduler(
            repo,
            source.id,
            config,
            fetcher,
            builder,
            version_label=version_label,
            prefix=[url_host(config.root_url)],
            concurrency=concurrency,
            on_event=_on_event,
        ).run()
    finally:
        if renderer is not None:
            renderer.close()

    logger.info(
        "Source %s: processed=%d updated=%d skipped=%d failed=%d",
        source.id,
        summary.processed,
        summary.updated,
        summary.skipped,
        summary.failed,
    )
    return IngestResult(
        processed=summary.processed,
        updated=summary.updated,
        skipped=summary.skipped,
        failed=summary.failed,
        version_label=version_label,
        deactivated=summary.deactivated,
    )


def seed_crawl_pages(
    repo: Repository, source_id: int, config: CrawlConfig, urls: list[str]
) -> int:
    """Queue the root (depth 0) and discovered candidates (depth 1).

    Candidates must be in scope, except a manifest, which only lists links.
    Seeding stops at the page budget. Returns the number of new rows.
    """
    total = repo.count_crawl_pages(source_id).total
    created = 0
    if repo.upsert_crawl_page(source_id, config.root_url, config.root_url, 0):
        created += 1
        total += 1
    if config.max_depth < 1:
        return created

    for url in urls:
        if total >= config.max_pages:
            logger.debug("Page budget %d reached while seeding", config.max_pages)
            break
        normalized = normalize_url(url)
        if normalized is None or normalized == config.root_url:
            continue
        if not is_manifest_url(normalized) and not config.scope.in_scope(normalized):
            continue
        if repo.upsert_crawl_page(source_id, normalized, normalized, 1):
            created += 1
            total += 1
    return created


def _safe_sink(sink: ProgressSink | None) -> ProgressSink:
    def _emit(event: IngestProgress) -> None:
        if sink is None:
            return
        try:
            sink(event)
        except Exception:
            logger.exception("Progress sink raised; ignoring")

    return _emit


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
