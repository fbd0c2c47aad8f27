"""Pipeline job handlers: chunking, embedding, source fetch.

Every handler is idempotent, because the queue delivers at least once:

- re-chunking a version swaps its chunk set in one transaction,
- an embedding row is written at most once per (chunk, model),
- an unchanged source only advances ``fetched_at``.

Rows that disappeared between enqueue and processing are logged and the job
is dropped (the handler returns normally). Upstream failures propagate so the
worker can hand them to its retry policy.

Functions that enqueue follow-up jobs are coroutines; the rest are plain
functions over the synchronous repository.
"""

from __future__ import annotations

import sqlite3

from loguru import logger

from onyx.config import ChunkingCfg, FetchCfg
from onyx.db.models import Chunk, ChunkEmbedding, DocumentVersion, Source, SourceSnapshot
from onyx.db.repository import Repository, new_id
from onyx.errors import ExtractionError, NotFoundError
from onyx.ingest.embeddings import Embedder
from onyx.ingest.markdown import chunk_markdown
from onyx.ingest.web import content_hash, extract_article, fetch, html_to_markdown
from onyx.pipeline.queue import (
    CHUNK_JOB,
    CHUNKING_QUEUE,
    EMBED_JOB,
    EMBEDDINGS_QUEUE,
    FETCH_JOB,
    URL_FETCH_QUEUE,
    JobQueue,
)

# ------------------------------------------------------------------
# Producers (called by the CLI / CRUD layer)
# ------------------------------------------------------------------


async def create_document_version(
    repo: Repository,
    queue: JobQueue,
    document_id: str,
    content: str,
    change_reason: str | None = None,
    created_by: str | None = None,
) -> DocumentVersion:
    """Store new content for *document_id* and schedule chunking.

    Content identical to the latest version (same SHA-256) is not stored
    again; the latest version is returned and nothing is enqueued.

    Raises:
        NotFoundError: the document does not exist.
    """
    if repo.get_document(document_id) is None:
        raise NotFoundError("document", document_id)

    digest = content_hash(content)
    latest = repo.get_latest_version(document_id)
    if latest is not None and latest.content_hash == digest:
        logger.info(f"[chunking] document {document_id} unchanged (v{latest.version}), skipping")
        return latest

    version = repo.add_version(document_id, content, digest, change_reason, created_by)
    await queue.enqueue(
        CHUNKING_QUEUE,
        CHUNK_JOB,
        {"document_id": document_id, "version_id": version.id},
    )
    logger.info(f"[chunking] queued document {document_id} v{version.version}")
    return version


async def register_source(
    repo: Repository,
    queue: JobQueue,
    project_id: str,
    url: str,
    title: str | None = None,
) -> Source:
    """Create (or reuse) the source row for *url* and schedule a fetch."""
    source = repo.get_source_by_url(project_id, url)
    if source is None:
        source = repo.add_source(Source(id=new_id(), project_id=project_id, url=url, title=title))
    await queue.enqueue(URL_FETCH_QUEUE, FETCH_JOB, {"source_id": source.id, "url": url})
    logger.info(f"[url-fetch] queued {url}")
    return source


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------


async def chunk_document_version(
    repo: Repository,
    queue: JobQueue,
    document_id: str,
    version_id: str,
    settings: ChunkingCfg | None = None,
) -> int:
    """Chunk one document version and schedule an embedding job per chunk.

    Returns:
        Number of chunks written (0 if the version no longer exists).
    """
    settings = settings or ChunkingCfg()
    logger.info(f"[chunking] processing document {document_id} version {version_id}")

    version = repo.get_version(version_id)
    if version is None:
        logger.warning(f"[chunking] version {version_id} not found, skipping")
        return 0

    drafts = chunk_markdown(
        version.content_markdown,
        max_tokens=settings.max_tokens,
        overlap_tokens=settings.overlap_tokens,
    )
    chunks = [
        Chunk(
            id=new_id(),
            document_version_id=version_id,
            chunk_index=d.chunk_index,
            content=d.content,
            token_count=d.token_count,
            heading_path=d.heading_path,
        )
        for d in drafts
    ]
    stored = repo.replace_chunks(version_id, chunks)
    logger.info(f"[chunking] version {version_id}: {len(stored)} chunks")

    if stored:
        await queue.enqueue_bulk(
            EMBEDDINGS_QUEUE,
            [(EMBED_JOB, {"chunk_id": c.id, "content": c.content}) for c in stored],
        )
        logger.info(f"[chunking] version {version_id}: queued {len(stored)} embedding jobs")
    return len(stored)


def embed_chunk(
    repo: Repository,
    embedder: Embedder,
    chunk_id: str,
    content: str,
) -> ChunkEmbedding | None:
    """Embed *content* and store it for *chunk_id* under the embedder's model.

    Returns:
        The stored embedding, or None when the chunk no longer exists
        (e.g. it was replaced by a later re-chunk).

    Raises:
        EmbeddingError: the embedding service failed.
    """
    logger.info(f"[embeddings] processing chunk {chunk_id}")

    if repo.get_chunk(chunk_id) is None:
        logger.warning(f"[embeddings] chunk {chunk_id} not found, skipping")
        return None

    existing = repo.get_embedding(chunk_id, embedder.model)
    if existing is not None:
        logger.info(f"[embeddings] chunk {chunk_id} already embedded with {embedder.model}")
        return existing

    vector = embedder.embed(content)
    record = ChunkEmbedding(
        id=new_id(), chunk_id=chunk_id, embedding=vector, model=embedder.model
    )
    try:
        repo.add_embedding(record, embedder.dimensions)
    except sqlite3.IntegrityError:
        # FK violation: chunk deleted while the embedding call was in flight.
        logger.warning(f"[embeddings] chunk {chunk_id} vanished during embedding, skipping")
        return None

    logger.info(f"[embeddings] chunk {chunk_id}: stored {len(vector)}-dim embedding")
    return repo.get_embedding(chunk_id, embedder.model)


def fetch_and_snapshot_source(
    repo: Repository,
    source_id: str,
    url: str,
    settings: FetchCfg | None = None,
) -> SourceSnapshot | None:
    """Fetch *url*, convert the article to Markdown, and snapshot it if changed.

    Returns:
        The new snapshot, or None if the content was unchanged or the source
        no longer exists.

    Raises:
        FetchError: network failure or non-2xx response.
        ExtractionError: no readable article in the page.
    """
    settings = settings or FetchCfg()
    logger.info(f"[url-fetch] fetching {url}")

    page = fetch(
        url,
        user_agent=settings.user_agent,
        timeout=settings.timeout,
        max_bytes=settings.max_bytes,
        allow_private=settings.allow_private,
    )
    if page.content_type == "text/plain":
        title = None
        markdown = page.body.strip()
    else:
        article = extract_article(page.body, url)
        title = article.title
        markdown = html_to_markdown(article.html)
    if not markdown:
        raise ExtractionError(url)
    digest = content_hash(markdown)

    source = repo.get_source(source_id)
    if source is None:
        logger.warning(f"[url-fetch] source {source_id} not found, skipping")
        return None

    if source.content_hash == digest:
        repo.touch_source(source_id)
        logger.info(f"[url-fetch] {url} unchanged, skipping")
        return None

    snapshot = repo.record_snapshot(
        SourceSnapshot(
            id=new_id(),
            source_id=source_id,
            content_markdown=markdown,
            content_hash=digest,
        ),
        etag=page.etag,
        title=title,
    )
    logger.info(f"[url-fetch] source {source_id}: created snapshot {snapshot.id}")
    return snapshot
