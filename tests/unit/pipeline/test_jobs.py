"""Tests for pipeline producers and job handlers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from onyx.config import ChunkingCfg
from onyx.db.models import Chunk, Document, Source
from onyx.db.repository import Repository, new_id
from onyx.errors import EmbeddingError, ExtractionError, FetchError, NotFoundError
from onyx.ingest.web import Article, FetchedPage, content_hash
from onyx.pipeline.jobs import (
    chunk_document_version,
    create_document_version,
    embed_chunk,
    fetch_and_snapshot_source,
    register_source,
)
from onyx.pipeline.queue import (
    CHUNK_JOB,
    CHUNKING_QUEUE,
    EMBED_JOB,
    EMBEDDINGS_QUEUE,
    URL_FETCH_QUEUE,
)

_CONTENT = "# Setup\nInstall the package.\n\n## Usage\nRun the worker."


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def document(repo):
    return repo.add_document(Document(id="doc-1", project_id="proj", title="Setup guide"))


def _page(body: str, content_type: str = "text/html", etag: str | None = '"e1"'):
    return FetchedPage(
        body=body, content_type=content_type, etag=etag, final_url="https://example.com/a"
    )


# ------------------------------------------------------------------
# create_document_version
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_version_enqueues_chunking(repo, queue, document):
    version = await create_document_version(
        repo, queue, document.id, _CONTENT, change_reason="init"
    )

    assert version.version == 1
    assert version.content_hash == content_hash(_CONTENT)
    assert version.change_reason == "init"
    assert queue.jobs == [
        (CHUNKING_QUEUE, CHUNK_JOB, {"document_id": document.id, "version_id": version.id})
    ]


@pytest.mark.asyncio
async def test_create_version_unchanged_content_is_skipped(repo, queue, document):
    first = await create_document_version(repo, queue, document.id, _CONTENT)
    again = await create_document_version(repo, queue, document.id, _CONTENT)

    assert again.id == first.id
    assert len(repo.list_versions(document.id)) == 1
    assert len(queue.payloads(CHUNKING_QUEUE)) == 1


@pytest.mark.asyncio
async def test_create_version_increments(repo, queue, document):
    await create_document_version(repo, queue, document.id, _CONTENT)
    second = await create_document_version(repo, queue, document.id, _CONTENT + "\n\nMore.")
    assert second.version == 2
    assert len(queue.payloads(CHUNKING_QUEUE)) == 2


@pytest.mark.asyncio
async def test_create_version_missing_document(repo, queue):
    with pytest.raises(NotFoundError):
        await create_document_version(repo, queue, "missing", _CONTENT)
    assert queue.jobs == []


# ------------------------------------------------------------------
# register_source
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_source_creates_and_enqueues(repo, queue):
    source = await register_source(repo, queue, "proj", "https://example.com/a", title="A")

    assert repo.get_source(source.id).title == "A"
    assert queue.payloads(URL_FETCH_QUEUE) == [
        {"source_id": source.id, "url": "https://example.com/a"}
    ]


@pytest.mark.asyncio
async def test_register_source_reuses_existing(repo, queue):
    first = await register_source(repo, queue, "proj", "https://example.com/a")
    second = await register_source(repo, queue, "proj", "https://example.com/a")

    assert first.id == second.id
    assert len(repo.list_sources("proj")) == 1
    assert len(queue.payloads(URL_FETCH_QUEUE)) == 2


# ------------------------------------------------------------------
# chunk_document_version
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chunk_writes_chunks_and_enqueues_embeddings(repo, queue, document):
    version = repo.add_version(document.id, _CONTENT, content_hash(_CONTENT))

    count = await chunk_document_version(repo, queue, document.id, version.id)

    assert count == 2
    chunks = repo.list_chunks(version.id)
    assert [c.heading_path for c in chunks] == ["# Setup", "# Setup > ## Usage"]
    assert queue.jobs == [
        (EMBEDDINGS_QUEUE, EMBED_JOB, {"chunk_id": c.id, "content": c.content}) for c in chunks
    ]


def _snapshot(chunks):
    return [(c.chunk_index, c.heading_path, c.content, c.token_count) for c in chunks]


@pytest.mark.asyncio
async def test_rechunk_replaces_previous_set(repo, queue, document):
    version = repo.add_version(document.id, _CONTENT, content_hash(_CONTENT))
    await chunk_document_version(repo, queue, document.id, version.id)
    first = repo.list_chunks(version.id)
    first_jobs = len(queue.jobs)

    count = await chunk_document_version(repo, queue, document.id, version.id)

    second = repo.list_chunks(version.id)
    assert count == len(second) == 2
    assert _snapshot(second) == _snapshot(first)
    assert {c.id for c in first}.isdisjoint({c.id for c in second})
    assert queue.payloads(EMBEDDINGS_QUEUE)[first_jobs:] == [
        {"chunk_id": c.id, "content": c.content} for c in second
    ]
    total = repo.conn.execute(
        "SELECT COUNT(*) FROM chunks WHERE document_version_id = ?", (version.id,)
    ).fetchone()[0]
    assert total == 2


@pytest.mark.asyncio
async def test_chunk_uses_settings(repo, queue, document):
    content = "\n\n".join(" ".join(["word"] * 30) for _ in range(4))
    version = repo.add_version(document.id, content, content_hash(content))

    count = await chunk_document_version(
        repo, queue, document.id, version.id, ChunkingCfg(max_tokens=50, overlap_tokens=0)
    )
    assert count == 4


@pytest.mark.asyncio
async def test_chunk_missing_version(repo, queue, document):
    assert await chunk_document_version(repo, queue, document.id, "gone") == 0
    assert queue.jobs == []


@pytest.mark.asyncio
async def test_chunk_empty_version_enqueues_nothing(repo, queue, document):
    version = repo.add_version(document.id, "", content_hash(""))
    assert await chunk_document_version(repo, queue, document.id, version.id) == 0
    assert queue.jobs == []


# ------------------------------------------------------------------
# embed_chunk
# ------------------------------------------------------------------


@pytest.fixture
def chunks(repo, document):
    version = repo.add_version(document.id, _CONTENT, content_hash(_CONTENT))
    return repo.replace_chunks(
        version.id,
        [
            Chunk(
                id=new_id(),
                document_version_id=version.id,
                chunk_index=i,
                content=text,
                token_count=3,
            )
            for i, text in enumerate(["Install the package.", "Run the worker."])
        ],
    )


def test_embed_chunk_stores_embedding(repo, chunks, embedder):
    chunk = chunks[0]
    embedder.vectors[chunk.content] = [0.0, 1.0, 0.0]

    record = embed_chunk(repo, embedder, chunk.id, chunk.content)

    assert record is not None
    assert record.model == "test/embed"
    assert record.embedding == pytest.approx([0.0, 1.0, 0.0])
    assert embedder.calls == [chunk.content]


def test_embed_chunk_is_idempotent(repo, chunks, embedder):
    chunk = chunks[0]

    first = embed_chunk(repo, embedder, chunk.id, chunk.content)
    second = embed_chunk(repo, embedder, chunk.id, chunk.content)

    assert first.id == second.id
    assert len(embedder.calls) == 1
    count = repo.conn.execute("SELECT COUNT(*) FROM chunk_embeddings").fetchone()[0]
    assert count == 1


def test_embed_chunk_missing_chunk(repo, embedder):
    assert embed_chunk(repo, embedder, "gone", "text") is None
    assert embedder.calls == []


def test_embed_chunk_propagates_service_errors(repo, chunks, embedder):
    chunk = chunks[0]
    with patch.object(embedder, "embed", side_effect=EmbeddingError(500, "down")):
        with pytest.raises(EmbeddingError):
            embed_chunk(repo, embedder, chunk.id, chunk.content)
    assert repo.get_embedding(chunk.id, embedder.model) is None


# ------------------------------------------------------------------
# fetch_and_snapshot_source
# ------------------------------------------------------------------


@pytest.fixture
def source(repo):
    return repo.add_source(Source(id="src-1", project_id="proj", url="https://example.com/a"))


def test_fetch_creates_snapshot(repo, source):
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page("<html>...</html>")),
        patch(
            "onyx.pipeline.jobs.extract_article",
            return_value=Article(title="Page title", html="<h1>Hello</h1><p>World</p>"),
        ),
    ):
        snapshot = fetch_and_snapshot_source(repo, source.id, source.url)

    assert snapshot is not None
    assert "# Hello" in snapshot.content_markdown
    assert snapshot.content_hash == content_hash(snapshot.content_markdown)

    stored = repo.get_source(source.id)
    assert stored.title == "Page title"
    assert stored.etag == '"e1"'
    assert stored.content_hash == snapshot.content_hash
    assert stored.fetched_at == snapshot.fetched_at


def test_fetch_unchanged_content_only_touches(repo, source):
    article = Article(title="T", html="<p>Same body</p>")
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page("<html/>")),
        patch("onyx.pipeline.jobs.extract_article", return_value=article),
    ):
        first = fetch_and_snapshot_source(repo, source.id, source.url)
        repo.touch_source(source.id, fetched_at="2000-01-01T00:00:00+00:00")
        second = fetch_and_snapshot_source(repo, source.id, source.url)

    assert first is not None
    assert second is None
    assert len(repo.list_snapshots(source.id)) == 1
    assert repo.get_source(source.id).fetched_at > "2000-01-01T00:00:00+00:00"


def test_fetch_keeps_existing_title(repo):
    source = repo.add_source(
        Source(id="src-2", project_id="proj", url="https://example.com/b", title="Mine")
    )
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page("<html/>")),
        patch(
            "onyx.pipeline.jobs.extract_article",
            return_value=Article(title="Theirs", html="<p>body</p>"),
        ),
    ):
        fetch_and_snapshot_source(repo, source.id, source.url)
    assert repo.get_source(source.id).title == "Mine"


def test_fetch_plain_text_skips_extraction(repo, source):
    with (
        patch(
            "onyx.pipeline.jobs.fetch",
            return_value=_page("  plain notes  \n", content_type="text/plain", etag=None),
        ),
        patch("onyx.pipeline.jobs.extract_article") as mock_extract,
    ):
        snapshot = fetch_and_snapshot_source(repo, source.id, source.url)

    mock_extract.assert_not_called()
    assert snapshot.content_markdown == "plain notes"


def test_fetch_empty_markdown_is_extraction_error(repo, source):
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page("<html/>")),
        patch("onyx.pipeline.jobs.extract_article", return_value=Article(None, "<div></div>")),
    ):
        with pytest.raises(ExtractionError):
            fetch_and_snapshot_source(repo, source.id, source.url)
    assert repo.list_snapshots(source.id) == []


def test_fetch_error_propagates(repo, source):
    with patch(
        "onyx.pipeline.jobs.fetch",
        side_effect=FetchError(source.url, "HTTP 500", status_code=500),
    ):
        with pytest.raises(FetchError):
            fetch_and_snapshot_source(repo, source.id, source.url)


def test_fetch_missing_source(repo):
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page("<html/>")),
        patch("onyx.pipeline.jobs.extract_article", return_value=Article("T", "<p>x</p>")),
    ):
        assert fetch_and_snapshot_source(repo, "gone", "https://example.com/x") is None
