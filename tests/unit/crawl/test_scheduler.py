"""Tests for CrawlScheduler — batch loop over a real SQLite repository."""

from __future__ import annotations

import dataclasses

import pytest
from fakes import FakeSite, doc

from docmirror.chunking import MarkdownChunker
from docmirror.crawl.gate import MISSING_CODE
from docmirror.crawl.scheduler import CrawlEvent, CrawlScheduler
from docmirror.crawl.settings import CrawlConfig
from docmirror.db.models import DocumentDraft, PathPrefixes

ROOT = "https://example.com/docs"
A = f"{ROOT}/a"
B = f"{ROOT}/b"
C = f"{ROOT}/c"


def _source(repo, **kwargs):
    sid = repo.add_web_source("Example", ROOT, **kwargs)
    repo.upsert_crawl_page(sid, ROOT, ROOT, 0)
    return sid, CrawlConfig.for_source(repo.get_source(sid))


def _run(repo, sid, config, site, *, concurrency=2, on_event=None):
    return CrawlScheduler(
        repo,
        sid,
        config,
        site,
        MarkdownChunker(),
        concurrency=concurrency,
        on_event=on_event,
    ).run()


def _pages(repo, sid):
    return {p.url: p for p in repo.list_crawl_pages(sid)}


# ------------------------------------------------------------------
# Link expansion
# ------------------------------------------------------------------


def test_crawl_follows_links_and_stores_documents(repo):
    sid, config = _source(repo)
    site = FakeSite(
        {
            ROOT: (doc("Home"), [A, B]),
            A: (doc("A"), [C, ROOT]),
            B: (doc("B"), []),
            C: (doc("C"), []),
        }
    )
    summary = _run(repo, sid, config, site)

    assert (summary.processed, summary.updated, summary.skipped, summary.failed) == (4, 4, 0, 0)
    assert summary.keep_paths == {"/docs", "/docs/a", "/docs/b", "/docs/c"}
    pages = _pages(repo, sid)
    assert {p.status for p in pages.values()} == {"done"}
    assert pages[C].depth == 2
    doc_a = repo.get_document(sid, "/docs/a", "latest")
    assert doc_a.uri == "web://example.com/docs/a"
    assert doc_a.title == "A"
    chunks = repo.list_chunks(doc_a.id)
    assert chunks
    assert chunks[0].context_prefix.startswith("example.com > ")


def test_each_url_fetched_once(repo):
    sid, config = _source(repo)
    site = FakeSite(
        {
            ROOT: (doc("Home"), [A, B, A + "/", A + "#x"]),
            A: (doc("A"), [B, ROOT]),
            B: (doc("B"), [A]),
        }
    )
    _run(repo, sid, config, site)
    assert sorted(site.fetched) == sorted([ROOT, A, B])


def test_relative_links_resolved_against_page(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), ["docs/a"]), A: (doc("A"), [])})
    _run(repo, sid, config, site)
    assert A in _pages(repo, sid)


def test_depth_limit(repo):
    sid, config = _source(repo, max_depth=1)
    site = FakeSite(
        {
            ROOT: (doc("Home"), [A]),
            A: (doc("A"), [B]),
            B: (doc("B"), []),
        }
    )
    _run(repo, sid, config, site)
    pages = _pages(repo, sid)
    assert set(pages) == {ROOT, A}
    assert pages[A].depth == 1


def test_depth_zero_crawls_root_only(repo):
    sid, config = _source(repo, max_depth=0)
    site = FakeSite({ROOT: (doc("Home"), [A])})
    summary = _run(repo, sid, config, site)
    assert summary.processed == 1
    assert set(_pages(repo, sid)) == {ROOT}


def test_page_budget_caps_new_pages(repo):
    sid, config = _source(repo, max_pages=3)
    links = [f"{ROOT}/p{i}" for i in range(6)]
    site = FakeSite({ROOT: (doc("Home"), links), **{u: (doc(u), links) for u in links}})
    summary = _run(repo, sid, config, site)
    assert repo.count_crawl_pages(sid).total == 3
    assert summary.processed == 3


def test_pending_pages_finish_after_budget_reached(repo):
    sid, config = _source(repo, max_pages=3)
    for url in (A, B):
        repo.upsert_crawl_page(sid, url, url, 1)
    site = FakeSite(
        {
            ROOT: (doc("Home"), [C]),
            A: (doc("A"), []),
            B: (doc("B"), []),
        }
    )
    summary = _run(repo, sid, config, site, concurrency=1)
    assert summary.processed == 3
    assert C not in _pages(repo, sid)


def test_scope_enforced_on_links(repo):
    sid, config = _source(repo, denied_paths=PathPrefixes.parse(["/docs/private"]))
    site = FakeSite(
        {
            ROOT: (
                doc("Home"),
                [
                    "https://example.com/blog/post",
                    "https://other.com/docs/a",
                    f"{ROOT}/private/secret",
                    "https://example.com/docsearch",
                    A,
                ],
            ),
            A: (doc("A"), []),
        }
    )
    _run(repo, sid, config, site)
    assert set(_pages(repo, sid)) == {ROOT, A}


# ------------------------------------------------------------------
# Outcome classification
# ------------------------------------------------------------------


def test_not_found_is_skipped(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [A, B]), B: (doc("B"), [])})
    summary = _run(repo, sid, config, site, concurrency=4)

    assert (summary.processed, summary.skipped, summary.failed) == (2, 1, 0)
    page = _pages(repo, sid)[A]
    assert page.status == "done"
    assert "404" in page.error_message


def test_failure_isolated_within_batch(repo):
    sid, config = _source(repo)
    site = FakeSite(
        {
            ROOT: (doc("Home"), [A, B, C]),
            A: RuntimeError("connection reset"),
            B: (doc("B"), []),
            C: (doc("C"), []),
        }
    )
    summary = _run(repo, sid, config, site, concurrency=3)

    assert (summary.processed, summary.skipped, summary.failed) == (3, 0, 1)
    pages = _pages(repo, sid)
    assert pages[A].status == "failed"
    assert pages[A].error_message == "connection reset"
    assert pages[B].status == pages[C].status == "done"


def test_gate_rejection_is_skip_with_reason(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [A]), A: (doc("A", code=False), [])})
    summary = _run(repo, sid, config, site)

    assert (summary.processed, summary.skipped) == (1, 1)
    assert _pages(repo, sid)[A].error_message == MISSING_CODE
    assert repo.get_document(sid, "/docs/a", "latest") is None


def test_code_not_required(repo):
    sid, config = _source(repo, require_code_snippets=False)
    site = FakeSite({ROOT: (doc("Home", code=False), [])})
    assert _run(repo, sid, config, site).processed == 1


def test_failed_page_not_retried_in_same_run(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: RuntimeError("boom")})
    summary = _run(repo, sid, config, site)
    assert summary.failed == 1
    assert site.fetched == [ROOT]


def test_store_error_fails_only_that_page(repo, monkeypatch):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [A, B]), A: (doc("A"), []), B: (doc("B"), [])})
    real_store = repo.store_document

    def _store(draft: DocumentDraft, chunks):
        if draft.path == "/docs/a":
            raise RuntimeError("constraint failed")
        return real_store(draft, chunks)

    monkeypatch.setattr(repo, "store_document", _store)
    summary = _run(repo, sid, config, site, concurrency=2)

    assert (summary.processed, summary.failed) == (2, 1)
    assert _pages(repo, sid)[A].status == "failed"
    assert "/docs/a" not in summary.keep_paths


# ------------------------------------------------------------------
# Change detection
# ------------------------------------------------------------------


def test_unchanged_pages_keep_their_chunks(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [A]), A: (doc("A"), [])})
    _run(repo, sid, config, site)
    doc_a = repo.get_document(sid, "/docs/a", "latest")
    before = [c.rowid for c in repo.list_chunks(doc_a.id)]

    repo.requeue_crawl_pages(sid)
    summary = _run(repo, sid, config, site)

    assert (summary.processed, summary.updated) == (2, 0)
    assert [c.rowid for c in repo.list_chunks(doc_a.id)] == before


def test_changed_page_rebuilds_chunks(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [])})
    _run(repo, sid, config, site)

    site.pages[ROOT] = (doc("Home", "Completely rewritten introduction text. " * 5), [])
    repo.requeue_crawl_pages(sid)
    summary = _run(repo, sid, config, site)

    assert summary.updated == 1
    home = repo.get_document(sid, "/docs", "latest")
    assert "rewritten" in home.content
    assert any("rewritten" in c.text for c in repo.list_chunks(home.id))


def test_unchanged_page_is_not_regated(repo):
    sid, config = _source(repo, require_code_snippets=False)
    site = FakeSite({ROOT: (doc("Home", code=False), [])})
    _run(repo, sid, config, site)

    strict = dataclasses.replace(config, require_code_snippets=True)
    repo.requeue_crawl_pages(sid)
    summary = _run(repo, sid, strict, site)
    assert (summary.processed, summary.skipped) == (1, 0)


def test_unchanged_redirected_page_is_not_regated(repo):
    old = f"{ROOT}/old"
    sid, config = _source(repo, require_code_snippets=False)
    site = FakeSite(
        {ROOT: (doc("Home", code=False), [old]), A: (doc("A", code=False), [])},
        redirects={old: A},
    )
    _run(repo, sid, config, site)
    doc_a = repo.get_document(sid, "/docs/a", "latest")
    before = [c.rowid for c in repo.list_chunks(doc_a.id)]

    strict = dataclasses.replace(config, require_code_snippets=True)
    repo.requeue_crawl_pages(sid)
    summary = _run(repo, sid, strict, site)

    assert (summary.processed, summary.updated, summary.skipped) == (2, 0, 0)
    assert repo.get_document(sid, "/docs/old", "latest") is None
    assert [c.rowid for c in repo.list_chunks(doc_a.id)] == before


# ------------------------------------------------------------------
# Manifest handling
# ------------------------------------------------------------------


def test_manifest_yields_links_not_documents(repo):
    sid, config = _source(repo)
    manifest = "https://example.com/llms.txt"
    repo.upsert_crawl_page(sid, manifest, manifest, 1)
    site = FakeSite(
        {ROOT: (doc("Home"), []), A: (doc("A"), [])},
        manifests={manifest: [A, "https://example.com/blog/x"]},
    )
    summary = _run(repo, sid, config, site)

    assert summary.processed == 3
    assert summary.updated == 2
    pages = _pages(repo, sid)
    assert pages[A].depth == 2
    assert "https://example.com/blog/x" not in pages
    assert all(d.path != "/llms.txt" for d in repo.list_documents(sid))


# ------------------------------------------------------------------
# Deactivation sweep + progress
# ------------------------------------------------------------------


def test_documents_missing_from_crawl_deactivated(repo):
    sid, config = _source(repo)
    repo.upsert_document(
        DocumentDraft(
            source_id=sid,
            path="/docs/removed",
            uri="web://example.com/docs/removed",
            title="Old",
            content_hash="x",
            content="old",
            version_label="latest",
        )
    )
    site = FakeSite({ROOT: (doc("Home"), [])})
    summary = _run(repo, sid, config, site)

    assert summary.deactivated == 1
    assert repo.get_document(sid, "/docs/removed", "latest").active is False
    assert repo.get_document(sid, "/docs", "latest").active is True


def test_progress_events(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [A]), A: RuntimeError("boom")})
    events: list[CrawlEvent] = []
    _run(repo, sid, config, site, on_event=events.append)

    batch_events = [e for e in events if e.url is None]
    page_events = [e for e in events if e.url is not None]
    assert len(batch_events) == 2
    assert batch_events[0].total == 1
    assert [(e.url, e.status) for e in page_events] == [(ROOT, "success"), (A, "error")]
    assert page_events[1].message == "boom"


def test_progress_callback_errors_ignored(repo):
    sid, config = _source(repo)
    site = FakeSite({ROOT: (doc("Home"), [])})

    def _broken(event):
        raise ValueError("sink exploded")

    assert _run(repo, sid, config, site, on_event=_broken).processed == 1


def test_concurrency_must_be_positive(repo):
    sid, config = _source(repo)
    with pytest.raises(ValueError):
        CrawlScheduler(repo, sid, config, FakeSite(), MarkdownChunker(), concurrency=0)
