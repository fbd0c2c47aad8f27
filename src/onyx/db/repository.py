"""Repository pattern for all Onyx database operations.

Single interface for: documents, versions, chunks (+ FTS5 index via triggers),
chunk embeddings, sources, snapshots, and the ranking queries used by search
and context packing. Job queues live in Redis (onyx.pipeline.queue).
"""

from __future__ import annotations

import json
import re
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone

from onyx.db.models import (
    Chunk,
    ChunkEmbedding,
    Document,
    DocumentStatus,
    DocumentType,
    DocumentVersion,
    Source,
    SourceSnapshot,
)
from onyx.db.vectors import from_blob, to_blob

_FTS_TERM_RE = re.compile(r"\w+", re.UNICODE)


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string (microsecond precision)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


def fts_query(text: str) -> str:
    """Reduce free text to an FTS5 MATCH expression.

    Each word becomes a quoted term so FTS5 operators (AND, OR, NOT, NEAR) and
    punctuation in user input are never interpreted as query syntax. Terms are
    implicitly AND-ed. Returns "" when *text* contains no word characters.
    """
    terms = _FTS_TERM_RE.findall(text)
    return " ".join(f'"{t}"' for t in terms)


class Repository:
    """Data access layer for all Onyx database entities.

    Wraps an open sqlite3.Connection (autocommit mode, see Database.connect)
    and provides typed methods. Multi-statement writes run inside
    ``transaction()``. The connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see onyx.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically (BEGIN IMMEDIATE … COMMIT)."""
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(self, document: Document) -> Document:
        """Insert a document. Timestamps default to now."""
        now = utcnow()
        document.created_at = document.created_at or now
        document.updated_at = document.updated_at or now
        self._conn.execute(
            """
            INSERT INTO documents
                (id, project_id, type, title, status, tags, pinned, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document.id,
                document.project_id,
                DocumentType(document.type).value,
                document.title,
                DocumentStatus(document.status).value,
                json.dumps(list(dict.fromkeys(document.tags))),
                int(document.pinned),
                document.created_at,
                document.updated_at,
            ),
        )
        return document

    def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, project_id: str) -> list[Document]:
        rows = self._conn.execute(
            "SELECT * FROM documents WHERE project_id = ? ORDER BY created_at",
            (project_id,),
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_document(self, document_id: str) -> bool:
        """Delete a document; versions, chunks, FTS rows and embeddings cascade.

        Returns:
            True if a row was deleted.
        """
        cur = self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Document versions
    # ------------------------------------------------------------------

    def add_version(
        self,
        document_id: str,
        content_markdown: str,
        content_hash: str,
        change_reason: str | None = None,
        created_by: str | None = None,
    ) -> DocumentVersion:
        """Insert the next immutable version of *document_id*.

        The version number (``max + 1``, starting at 1) is assigned inside the
        same write transaction as the insert, so concurrent writers cannot
        claim the same number. The document's ``updated_at`` is bumped.
        """
        version_id = new_id()
        created_at = utcnow()
        with self.transaction():
            row = self._conn.execute(
                "SELECT COALESCE(MAX(version), 0) FROM document_versions WHERE document_id = ?",
                (document_id,),
            ).fetchone()
            self._conn.execute(
                """
                INSERT INTO document_versions
                    (id, document_id, version, content_markdown, content_hash,
                     change_reason, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    version_id,
                    document_id,
                    row[0] + 1,
                    content_markdown,
                    content_hash,
                    change_reason,
                    created_by,
                    created_at,
                ),
            )
            self._conn.execute(
                "UPDATE documents SET updated_at = ? WHERE id = ?",
                (created_at, document_id),
            )
        return self.get_version(version_id)  # type: ignore[return-value]

    def get_version(self, version_id: str) -> DocumentVersion | None:
        row = self._conn.execute(
            "SELECT * FROM document_versions WHERE id = ?", (version_id,)
        ).fetchone()
        return _row_to_version(row) if row else None

    def get_latest_version(self, document_id: str) -> DocumentVersion | None:
        row = self._conn.execute(
            """
            SELECT * FROM document_versions
            WHERE document_id = ? ORDER BY version DESC LIMIT 1
            """,
            (document_id,),
        ).fetchone()
        return _row_to_version(row) if row else None

    def list_versions(self, document_id: str) -> list[DocumentVersion]:
        rows = self._conn.execute(
            "SELECT * FROM document_versions WHERE document_id = ? ORDER BY version",
            (document_id,),
        ).fetchall()
        return [_row_to_version(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_chunks(self, version_id: str, chunks: Sequence[Chunk]) -> list[Chunk]:
        """Atomically swap the chunk set of *version_id* for *chunks*.

        Delete and insert share one transaction, so readers never observe a
        version with a partial or empty chunk set mid-replace. Only rows of
        this version are touched.
        """
        now = utcnow()
        with self.transaction():
            self._conn.execute(
                "DELETE FROM chunks WHERE document_version_id = ?", (version_id,)
            )
            self._conn.executemany(
                """
                INSERT INTO chunks
                    (id, document_version_id, chunk_index, heading_path, content,
                     token_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.id,
                        version_id,
                        c.chunk_index,
                        c.heading_path or None,
                        c.content,
                        c.token_count,
                        now,
                    )
                    for c in chunks
                ],
            )
        return self.list_chunks(version_id)

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(
            "SELECT * FROM chunks WHERE id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def list_chunks(self, version_id: str) -> list[Chunk]:
        """Return the chunks of *version_id* in chunk_index order."""
        rows = self._conn.execute(
            "SELECT * FROM chunks WHERE document_version_id = ? ORDER BY chunk_index",
            (version_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    # ------------------------------------------------------------------
    # Chunk embeddings
    # ------------------------------------------------------------------

    def add_embedding(
        self, embedding: ChunkEmbedding, dimensions: int | None = None
    ) -> bool:
        """Insert an embedding row unless one exists for (chunk_id, model).

        Existing rows are never updated in place.

        Returns:
            True if a new row was written.
        """
        cur = self._conn.execute(
            """
            INSERT INTO chunk_embeddings (id, chunk_id, embedding, model, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (chunk_id, model) DO NOTHING
            """,
            (
                embedding.id,
                embedding.chunk_id,
                to_blob(embedding.embedding, dimensions),
                embedding.model,
                embedding.created_at or utcnow(),
            ),
        )
        return cur.rowcount > 0

    def get_embedding(self, chunk_id: str, model: str) -> ChunkEmbedding | None:
        row = self._conn.execute(
            "SELECT * FROM chunk_embeddings WHERE chunk_id = ? AND model = ?",
            (chunk_id, model),
        ).fetchone()
        if row is None:
            return None
        return ChunkEmbedding(
            id=row["id"],
            chunk_id=row["chunk_id"],
            embedding=from_blob(row["embedding"]),
            model=row["model"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Ranking queries
    # ------------------------------------------------------------------

    def search_hybrid(
        self,
        project_id: str,
        query: str,
        query_embedding: list[float],
        model: str,
        semantic_weight: float,
        limit: int,
        doc_types: Sequence[str] = (),
        statuses: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> list[sqlite3.Row]:
        """Fused vector + lexical ranking over the chunks of one project.

        semantic_score = 1 - cosine distance (best embedding of *model*), else 0
        text_score     = r / (1 + r), r = -bm25(), for FTS matches, else 0
        combined_score = sw * semantic_score + (1 - sw) * text_score

        Chunks with neither an embedding nor a lexical match are excluded.
        Ordered by combined_score DESC, chunk id ASC.
        """
        match = fts_query(query)
        if match:
            fulltext_cte = """
                SELECT rowid AS fts_rowid, -bm25(chunks_fts) AS raw_rank
                FROM chunks_fts
                WHERE chunks_fts MATCH :match
            """
        else:
            fulltext_cte = "SELECT NULL AS fts_rowid, 0.0 AS raw_rank WHERE 0"

        params: dict[str, object] = {
            "query_embedding": to_blob(query_embedding),
            "model": model,
            "match": match,
            "sw": semantic_weight,
            "tw": 1.0 - semantic_weight,
            "project_id": project_id,
            "limit": limit,
        }
        filter_sql = _document_filters(params, doc_types, statuses, tags)

        sql = f"""
            WITH semantic AS (
                SELECT ce.chunk_id AS chunk_id,
                       MAX(1.0 - vec_distance_cosine(ce.embedding, :query_embedding))
                           AS semantic_score
                FROM chunk_embeddings ce
                WHERE ce.model = :model
                GROUP BY ce.chunk_id
            ),
            fulltext AS ({fulltext_cte}),
            scored AS (
                SELECT
                    c.id AS chunk_id,
                    c.document_version_id,
                    c.content,
                    c.heading_path,
                    c.chunk_index,
                    c.token_count,
                    s.chunk_id IS NOT NULL AS has_semantic,
                    f.fts_rowid IS NOT NULL AS has_text,
                    COALESCE(s.semantic_score, 0.0) AS semantic_score,
                    COALESCE(f.raw_rank / (1.0 + f.raw_rank), 0.0) AS text_score,
                    d.id AS document_id,
                    d.title AS document_title,
                    d.type AS document_type,
                    d.status AS document_status,
                    d.tags AS document_tags
                FROM chunks c
                JOIN document_versions dv ON dv.id = c.document_version_id
                JOIN documents d ON d.id = dv.document_id
                LEFT JOIN semantic s ON s.chunk_id = c.id
                LEFT JOIN fulltext f ON f.fts_rowid = c.rowid
                WHERE d.project_id = :project_id
                  {filter_sql}
            )
            SELECT *,
                   (:sw * semantic_score + :tw * text_score) AS combined_score
            FROM scored
            WHERE has_semantic OR has_text
            ORDER BY combined_score DESC, chunk_id ASC
            LIMIT :limit
        """  # noqa: S608
        return self._conn.execute(sql, params).fetchall()

    def search_semantic(
        self,
        project_id: str,
        query_embedding: list[float],
        model: str,
        limit: int,
        doc_types: Sequence[str] = (),
        statuses: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> list[sqlite3.Row]:
        """Top-*limit* chunks of one project by cosine distance ASC (chunk id tie-break)."""
        params: dict[str, object] = {
            "query_embedding": to_blob(query_embedding),
            "model": model,
            "project_id": project_id,
            "limit": limit,
        }
        filter_sql = _document_filters(params, doc_types, statuses, tags)

        sql = f"""
            WITH nearest AS (
                SELECT ce.chunk_id AS chunk_id,
                       MIN(vec_distance_cosine(ce.embedding, :query_embedding)) AS distance
                FROM chunk_embeddings ce
                WHERE ce.model = :model
                GROUP BY ce.chunk_id
            )
            SELECT
                c.id AS chunk_id,
                c.content,
                c.heading_path,
                c.chunk_index,
                c.token_count,
                1.0 - n.distance AS score,
                d.id AS document_id,
                d.title AS document_title,
                d.type AS document_type
            FROM nearest n
            JOIN chunks c ON c.id = n.chunk_id
            JOIN document_versions dv ON dv.id = c.document_version_id
            JOIN documents d ON d.id = dv.document_id
            WHERE d.project_id = :project_id
              {filter_sql}
            ORDER BY n.distance ASC, c.id ASC
            LIMIT :limit
        """  # noqa: S608
        return self._conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def add_source(self, source: Source) -> Source:
        self._conn.execute(
            """
            INSERT INTO sources (id, project_id, url, title, fetched_at, etag, content_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.project_id,
                source.url,
                source.title,
                source.fetched_at,
                source.etag,
                source.content_hash,
            ),
        )
        return source

    def get_source(self, source_id: str) -> Source | None:
        row = self._conn.execute(
            "SELECT * FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def get_source_by_url(self, project_id: str, url: str) -> Source | None:
        row = self._conn.execute(
            "SELECT * FROM sources WHERE project_id = ? AND url = ? LIMIT 1",
            (project_id, url),
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(self, project_id: str | None = None) -> list[Source]:
        if project_id is None:
            rows = self._conn.execute("SELECT * FROM sources ORDER BY url").fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM sources WHERE project_id = ? ORDER BY url", (project_id,)
            ).fetchall()
        return [_row_to_source(r) for r in rows]

    def touch_source(self, source_id: str, fetched_at: str | None = None) -> None:
        """Advance only ``fetched_at`` (unchanged content)."""
        self._conn.execute(
            "UPDATE sources SET fetched_at = ? WHERE id = ?",
            (fetched_at or utcnow(), source_id),
        )

    def record_snapshot(
        self,
        snapshot: SourceSnapshot,
        etag: str | None,
        title: str | None,
    ) -> SourceSnapshot:
        """Insert *snapshot* and update the parent source in one transaction.

        The source's ``title`` is only filled in when it was previously unset.
        """
        fetched_at = snapshot.fetched_at or utcnow()
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO source_snapshots
                    (id, source_id, content_markdown, content_hash, fetched_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    snapshot.id,
                    snapshot.source_id,
                    snapshot.content_markdown,
                    snapshot.content_hash,
                    fetched_at,
                ),
            )
            self._conn.execute(
                """
                UPDATE sources
                SET fetched_at = ?, content_hash = ?, etag = ?,
                    title = COALESCE(NULLIF(title, ''), ?)
                WHERE id = ?
                """,
                (fetched_at, snapshot.content_hash, etag, title, snapshot.source_id),
            )
        return SourceSnapshot(
            id=snapshot.id,
            source_id=snapshot.source_id,
            content_markdown=snapshot.content_markdown,
            content_hash=snapshot.content_hash,
            fetched_at=fetched_at,
        )

    def list_snapshots(self, source_id: str) -> list[SourceSnapshot]:
        """Return snapshots of *source_id*, newest first."""
        rows = self._conn.execute(
            "SELECT * FROM source_snapshots WHERE source_id = ? ORDER BY fetched_at DESC, rowid DESC",
            (source_id,),
        ).fetchall()
        return [
            SourceSnapshot(
                id=r["id"],
                source_id=r["source_id"],
                content_markdown=r["content_markdown"],
                content_hash=r["content_hash"],
                fetched_at=r["fetched_at"],
            )
            for r in rows
        ]

    def delete_source(self, source_id: str) -> bool:
        """Delete a source; its snapshots cascade."""
        cur = self._conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        """Row counts per table for ``onyx status``."""
        tables = (
            "documents",
            "document_versions",
            "chunks",
            "chunk_embeddings",
            "sources",
            "source_snapshots",
        )
        return {
            t: self._conn.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0]  # noqa: S608
            for t in tables
        }


# ------------------------------------------------------------------
# Query helpers
# ------------------------------------------------------------------


def _document_filters(
    params: dict[str, object],
    doc_types: Sequence[str],
    statuses: Sequence[str],
    tags: Sequence[str],
) -> str:
    """Return AND-clauses on alias ``d`` and add their bind values to *params*."""
    clauses: list[str] = []

    def _in(column: str, prefix: str, values: Sequence[str]) -> str:
        names = []
        for i, value in enumerate(values):
            key = f"{prefix}_{i}"
            params[key] = value
            names.append(f":{key}")
        return f"{column} IN ({', '.join(names)})"

    if doc_types:
        clauses.append("AND " + _in("d.type", "doc_type", doc_types))
    if statuses:
        clauses.append("AND " + _in("d.status", "status", statuses))
    if tags:
        clauses.append(
            "AND EXISTS (SELECT 1 FROM json_each(d.tags) t WHERE "
            + _in("t.value", "tag", tags)
            + ")"
        )
    return "\n".join(clauses)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        type=DocumentType(row["type"]),
        status=DocumentStatus(row["status"]),
        tags=json.loads(row["tags"] or "[]"),
        pinned=bool(row["pinned"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_version(row: sqlite3.Row) -> DocumentVersion:
    return DocumentVersion(
        id=row["id"],
        document_id=row["document_id"],
        version=row["version"],
        content_markdown=row["content_markdown"],
        content_hash=row["content_hash"],
        change_reason=row["change_reason"],
        created_by=row["created_by"],
        created_at=row["created_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_version_id=row["document_version_id"],
        chunk_index=row["chunk_index"],
        heading_path=row["heading_path"] or "",
        content=row["content"],
        token_count=row["token_count"],
        created_at=row["created_at"],
    )


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        project_id=row["project_id"],
        url=row["url"],
        title=row["title"],
        fetched_at=row["fetched_at"],
        etag=row["etag"],
        content_hash=row["content_hash"],
    )
