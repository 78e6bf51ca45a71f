"""Repository pattern for all docmirror database operations.

Single interface for: sources, crawl pages, documents, chunks (+ FTS5 index).
The crawl engine talks to the store only through these methods, so any object
exposing the same surface (see docmirror.crawl.scheduler.CrawlStore) can stand
in for it.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from docmirror.db.models import (
    PAGE_STATUSES,
    Chunk,
    ChunkDraft,
    CrawlPage,
    Document,
    DocumentDraft,
    PageCounts,
    PathPrefixes,
    Source,
)

_SOURCE_COLUMNS = (
    "id, kind, name, root_url, allowed_paths, denied_paths, max_depth, max_pages, "
    "version_label, force_headless, require_code_snippets, last_sync_at, last_error, "
    "created_at, updated_at"
)
_PAGE_COLUMNS = (
    "id, source_id, url, normalized_url, depth, status, last_crawled_at, "
    "error_message, created_at, updated_at"
)
_DOCUMENT_COLUMNS = (
    "id, source_id, path, uri, title, content_hash, content_type, content, "
    "version_label, active, updated_at"
)

# Keeps IN (...) lists under SQLite's bound-parameter limit.
_BATCH = 500


class Repository:
    """Data access layer for all docmirror database entities.

    Wraps an open sqlite3.Connection. Every public write commits on return
    unless it runs inside ``transaction()``, in which case the outermost
    block commits (or rolls back) the whole group. The connection is owned
    by the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see docmirror.db.schema.initialize).
        """
        self._conn = conn
        self._tx_depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes so readers see all of them or none of them."""
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                self._conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._conn.commit()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_web_source(
        self,
        name: str,
        root_url: str,
        *,
        allowed_paths: PathPrefixes | None = None,
        denied_paths: PathPrefixes | None = None,
        max_depth: int = 3,
        max_pages: int = 500,
        version_label: str | None = None,
        force_headless: bool = False,
        require_code_snippets: bool = True,
    ) -> int:
        """Register a web source and return its id.

        Raises:
            ValueError: If the crawl budgets are out of range.
        """
        if max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth}")
        if max_pages < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")
        allowed = allowed_paths or PathPrefixes()
        denied = denied_paths or PathPrefixes()
        with self.transaction():
            cur = self._conn.execute(
                """
                INSERT INTO sources (kind, name, root_url, allowed_paths, denied_paths,
                                     max_depth, max_pages, version_label,
                                     force_headless, require_code_snippets)
                VALUES ('web', ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    root_url,
                    allowed.to_json(),
                    denied.to_json(),
                    max_depth,
                    max_pages,
                    version_label,
                    int(force_headless),
                    int(require_code_snippets),
                ),
            )
        return int(cur.lastrowid)

    def get_source(self, source_id: int) -> Source | None:
        """Return a source by id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self) -> list[Source]:
        """Return all sources ordered by creation (oldest first)."""
        rows = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY created_at, id"
        ).fetchall()
        return [_row_to_source(r) for r in rows]

    def remove_source(self, source_id: int) -> bool:
        """Delete a source with its pages, documents, chunks and FTS rows.

        Returns:
            True if a source row was deleted.
        """
        with self.transaction():
            self._conn.execute(
                """
                DELETE FROM chunks_fts WHERE rowid IN (
                    SELECT c.id FROM chunks c
                    JOIN documents d ON d.id = c.document_id
                    WHERE d.source_id = ?
                )
                """,
                (source_id,),
            )
            cur = self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cur.rowcount > 0

    def update_source_sync(
        self, source_id: int, *, last_sync_at: str | None, last_error: str | None
    ) -> None:
        """Write back sync bookkeeping after an ingestion run."""
        with self.transaction():
            self._conn.execute(
                """
                UPDATE sources
                SET last_sync_at = ?, last_error = ?, updated_at = datetime('now')
                WHERE id = ?
                """,
                (last_sync_at, last_error, source_id),
            )

    # ------------------------------------------------------------------
    # Crawl pages
    # ------------------------------------------------------------------

    def upsert_crawl_page(
        self, source_id: int, url: str, normalized_url: str, depth: int
    ) -> bool:
        """Insert a pending page unless (source, normalized URL) already exists.

        Returns:
            True if a new row was created.
        """
        with self.transaction():
            cur = self._conn.execute(
                """
                INSERT INTO crawl_pages (source_id, url, normalized_url, depth)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(source_id, normalized_url) DO NOTHING
                """,
                (source_id, url, normalized_url, depth),
            )
        return cur.rowcount == 1

    def update_crawl_page_status(
        self, page_id: int, status: str, error_message: str | None = None
    ) -> None:
        """Move a page to *status*; terminal states stamp last_crawled_at."""
        if status not in PAGE_STATUSES:
            raise ValueError(f"Unknown crawl page status: {status!r}")
        terminal = status in ("done", "failed")
        with self.transaction():
            self._conn.execute(
                """
                UPDATE crawl_pages
                SET status = ?,
                    error_message = ?,
                    last_crawled_at = CASE WHEN ? THEN datetime('now') ELSE last_crawled_at END,
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (status, error_message, int(terminal), page_id),
            )

    def get_crawl_page(self, page_id: int) -> CrawlPage | None:
        row = self._conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM crawl_pages WHERE id = ?", (page_id,)
        ).fetchone()
        return _row_to_page(row) if row else None

    def get_pending_crawl_pages(self, source_id: int, limit: int) -> list[CrawlPage]:
        """Return up to *limit* pending pages in creation order."""
        rows = self._conn.execute(
            f"""
            SELECT {_PAGE_COLUMNS} FROM crawl_pages
            WHERE source_id = ? AND status = 'pending'
            ORDER BY id
            LIMIT ?
            """,
            (source_id, limit),
        ).fetchall()
        return [_row_to_page(r) for r in rows]

    def list_crawl_pages(self, source_id: int) -> list[CrawlPage]:
        rows = self._conn.execute(
            f"SELECT {_PAGE_COLUMNS} FROM crawl_pages WHERE source_id = ? ORDER BY id",
            (source_id,),
        ).fetchall()
        return [_row_to_page(r) for r in rows]

    def count_crawl_pages(self, source_id: int) -> PageCounts:
        """Aggregate page counts for a source."""
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(status = 'pending'), 0) AS pending,
                   COALESCE(SUM(status = 'done'), 0) AS done
            FROM crawl_pages WHERE source_id = ?
            """,
            (source_id,),
        ).fetchone()
        return PageCounts(total=row["total"], pending=row["pending"], done=row["done"])

    def clear_crawl_pages(self, source_id: int) -> int:
        """Delete every crawl page of a source. Returns the number removed."""
        with self.transaction():
            cur = self._conn.execute(
                "DELETE FROM crawl_pages WHERE source_id = ?", (source_id,)
            )
        return cur.rowcount

    def requeue_crawl_pages(self, source_id: int) -> int:
        """Return done and interrupted (fetching) pages to pending.

        Failed pages stay failed until a forced re-ingestion clears them.
        """
        with self.transaction():
            cur = self._conn.execute(
                """
                UPDATE crawl_pages
                SET status = 'pending', error_message = NULL, updated_at = datetime('now')
                WHERE source_id = ? AND status IN ('done', 'fetching')
                """,
                (source_id,),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get_document(self, source_id: int, path: str, version_label: str) -> Document | None:
        row = self._conn.execute(
            f"""
            SELECT {_DOCUMENT_COLUMNS} FROM documents
            WHERE source_id = ? AND path = ? AND version_label = ?
            """,
            (source_id, path, version_label),
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_document_hash(self, source_id: int, path: str, version_label: str) -> str | None:
        """Return the stored content hash for a document, or None if absent."""
        row = self._conn.execute(
            """
            SELECT content_hash FROM documents
            WHERE source_id = ? AND path = ? AND version_label = ?
            """,
            (source_id, path, version_label),
        ).fetchone()
        return row["content_hash"] if row else None

    def get_document_hashes(self, source_id: int, version_label: str) -> dict[str, str]:
        """Return {path: content_hash} for every document of one source version."""
        rows = self._conn.execute(
            """
            SELECT path, content_hash FROM documents
            WHERE source_id = ? AND version_label = ?
            """,
            (source_id, version_label),
        ).fetchall()
        return {r["path"]: r["content_hash"] for r in rows}

    def list_documents(
        self,
        source_id: int,
        version_label: str | None = None,
        *,
        active: bool | None = None,
    ) -> list[Document]:
        sql = f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE source_id = ?"
        params: list[object] = [source_id]
        if version_label is not None:
            sql += " AND version_label = ?"
            params.append(version_label)
        if active is not None:
            sql += " AND active = ?"
            params.append(int(active))
        rows = self._conn.execute(sql + " ORDER BY path", params).fetchall()
        return [_row_to_document(r) for r in rows]

    def upsert_document(self, draft: DocumentDraft) -> tuple[int, bool]:
        """Insert or update a document keyed by (source, path, version).

        The row is (re)activated either way.

        Returns:
            (document_id, changed) — changed is True for a new document or a
            different content hash.
        """
        with self.transaction():
            previous = self.get_document_hash(draft.source_id, draft.path, draft.version_label)
            self._conn.execute(
                """
                INSERT INTO documents (source_id, path, uri, title, content_hash,
                                       content_type, content, version_label, active)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
                ON CONFLICT(source_id, path, version_label) DO UPDATE SET
                    uri = excluded.uri,
                    title = excluded.title,
                    content_hash = excluded.content_hash,
                    content_type = excluded.content_type,
                    content = excluded.content,
                    active = 1,
                    updated_at = CASE
                        WHEN documents.content_hash = excluded.content_hash
                        THEN documents.updated_at ELSE datetime('now') END
                """,
                (
                    draft.source_id,
                    draft.path,
                    draft.uri,
                    draft.title,
                    draft.content_hash,
                    draft.content_type,
                    draft.content,
                    draft.version_label,
                ),
            )
            row = self._conn.execute(
                "SELECT id FROM documents WHERE source_id = ? AND path = ? AND version_label = ?",
                (draft.source_id, draft.path, draft.version_label),
            ).fetchone()
        return int(row["id"]), previous != draft.content_hash

    def touch_document(self, source_id: int, path: str, version_label: str) -> bool:
        """Mark an unchanged document active again. Returns True if it exists."""
        with self.transaction():
            cur = self._conn.execute(
                """
                UPDATE documents SET active = 1
                WHERE source_id = ? AND path = ? AND version_label = ?
                """,
                (source_id, path, version_label),
            )
        return cur.rowcount > 0

    def store_document(
        self, draft: DocumentDraft, chunks: list[ChunkDraft]
    ) -> tuple[int, bool]:
        """Upsert a document and, if its content changed, replace its chunk set.

        Both steps commit together, so a reader never sees new content with
        the old chunks (or no chunks).
        """
        with self.transaction():
            document_id, changed = self.upsert_document(draft)
            if changed:
                self.delete_chunks_for_document(document_id)
                self.insert_chunks(document_id, chunks)
        return document_id, changed

    def deactivate_missing_documents(
        self, source_id: int, version_label: str, keep_paths: Iterable[str]
    ) -> int:
        """Mark active documents whose path is not in *keep_paths* inactive.

        Returns:
            Number of documents deactivated.
        """
        keep = set(keep_paths)
        stale = [
            r["id"]
            for r in self._conn.execute(
                """
                SELECT id, path FROM documents
                WHERE source_id = ? AND version_label = ? AND active = 1
                """,
                (source_id, version_label),
            ).fetchall()
            if r["path"] not in keep
        ]
        with self.transaction():
            for start in range(0, len(stale), _BATCH):
                batch = stale[start : start + _BATCH]
                placeholders = ",".join("?" * len(batch))
                self._conn.execute(
                    f"UPDATE documents SET active = 0, updated_at = datetime('now') "
                    f"WHERE id IN ({placeholders})",
                    batch,
                )
        return len(stale)

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, document_id: int, drafts: list[ChunkDraft]) -> list[int]:
        """Insert chunk drafts for a document + sync FTS5. Returns the new ids."""
        ids: list[int] = []
        with self.transaction():
            for draft in drafts:
                cur = self._conn.execute(
                    """
                    INSERT INTO chunks (document_id, chunk_index, text, context_prefix, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        document_id,
                        draft.chunk_index,
                        draft.text,
                        draft.context_prefix,
                        draft.metadata,
                    ),
                )
                rowid = int(cur.lastrowid)
                # Keep FTS5 in sync with explicit rowid mapping
                self._conn.execute(
                    "INSERT INTO chunks_fts(rowid, text) VALUES (?, ?)", (rowid, draft.text)
                )
                ids.append(rowid)
        return ids

    def delete_chunks_for_document(self, document_id: int) -> int:
        """Delete chunks + FTS entries for a document (cascade not available on FTS)."""
        with self.transaction():
            self._conn.execute(
                "DELETE FROM chunks_fts WHERE rowid IN "
                "(SELECT id FROM chunks WHERE document_id = ?)",
                (document_id,),
            )
            cur = self._conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
        return cur.rowcount

    def count_chunks_for_document(self, document_id: int) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()[0]

    def list_chunks(self, document_id: int) -> list[Chunk]:
        rows = self._conn.execute(
            """
            SELECT id, document_id, chunk_index, text, context_prefix, metadata, created_at
            FROM chunks WHERE document_id = ? ORDER BY chunk_index
            """,
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        kind=row["kind"],
        name=row["name"],
        root_url=row["root_url"],
        allowed_paths=PathPrefixes.from_json(row["allowed_paths"]),
        denied_paths=PathPrefixes.from_json(row["denied_paths"]),
        max_depth=row["max_depth"],
        max_pages=row["max_pages"],
        version_label=row["version_label"],
        force_headless=bool(row["force_headless"]),
        require_code_snippets=bool(row["require_code_snippets"]),
        last_sync_at=row["last_sync_at"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_page(row: sqlite3.Row) -> CrawlPage:
    return CrawlPage(
        id=row["id"],
        source_id=row["source_id"],
        url=row["url"],
        normalized_url=row["normalized_url"],
        depth=row["depth"],
        status=row["status"],
        last_crawled_at=row["last_crawled_at"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        source_id=row["source_id"],
        path=row["path"],
        uri=row["uri"],
        title=row["title"],
        content_hash=row["content_hash"],
        content_type=row["content_type"],
        content=row["content"],
        version_label=row["version_label"],
        active=bool(row["active"]),
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        context_prefix=row["context_prefix"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )
