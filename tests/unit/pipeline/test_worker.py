"""Tests for the arq tasks, retry policy and worker settings."""

from __future__ import annotations

import sqlite3
from unittest.mock import AsyncMock, patch

import pytest
from arq.worker import Retry

from onyx.config import OnyxConfig, QueueCfg
from onyx.db.models import Document, Source
from onyx.db.repository import Repository
from onyx.errors import EmbeddingError, FetchError
from onyx.ingest.web import Article, FetchedPage, SsrfError
from onyx.pipeline.jobs import create_document_version
from onyx.pipeline.queue import (
    ALL_QUEUES,
    CHUNK_JOB,
    CHUNKING_QUEUE,
    EMBED_JOB,
    EMBEDDINGS_QUEUE,
    URL_FETCH_QUEUE,
    ArqJobQueue,
)
from onyx.pipeline.worker import (
    chunk_task,
    embed_task,
    fetch_task,
    retry_delay,
    run_workers,
    worker_settings,
)

_CONTENT = "# Setup\nInstall the package.\n\n## Usage\nRun the worker."
_URL = "https://example.com/a"


@pytest.fixture
def config():
    return OnyxConfig(queue=QueueCfg(max_attempts=3, backoff_seconds=60.0, poll_interval=0.5))


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def ctx(repo, config, embedder, queue):
    return {"repo": repo, "config": config, "embedder": embedder, "queue": queue, "job_try": 1}


@pytest.fixture
def source(repo):
    return repo.add_source(Source(id="src-1", project_id="proj", url=_URL))


def _page(body: str = "<html/>") -> FetchedPage:
    return FetchedPage(body=body, content_type="text/html", etag=None, final_url=_URL)


# ------------------------------------------------------------------
# Tasks
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tasks_run_whole_pipeline(ctx, repo, queue, embedder):
    repo.add_document(Document(id="doc-1", project_id="proj", title="Setup guide"))
    version = await create_document_version(repo, queue, "doc-1", _CONTENT)

    (_, name, payload) = queue.jobs.pop(0)
    assert name == CHUNK_JOB
    assert await chunk_task(ctx, **payload) == 2

    embed_jobs = list(queue.jobs)
    assert [name for _, name, _ in embed_jobs] == [EMBED_JOB, EMBED_JOB]
    for _, _, payload in embed_jobs:
        assert await embed_task(ctx, **payload) is not None

    for chunk in repo.list_chunks(version.id):
        assert repo.get_embedding(chunk.id, embedder.model) is not None


@pytest.mark.asyncio
async def test_chunk_task_missing_version_is_dropped(ctx, queue):
    assert await chunk_task(ctx, document_id="doc-1", version_id="gone") == 0
    assert queue.jobs == []


@pytest.mark.asyncio
async def test_embed_task_missing_chunk_returns_none(ctx, embedder):
    assert await embed_task(ctx, chunk_id="gone", content="text") is None
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_embed_failure_is_retried_with_backoff(ctx):
    with patch("onyx.pipeline.jobs.embed_chunk", side_effect=EmbeddingError(503, "busy")):
        with pytest.raises(Retry) as first:
            await embed_task(ctx, chunk_id="c1", content="text")
        ctx["job_try"] = 2
        with pytest.raises(Retry) as second:
            await embed_task(ctx, chunk_id="c1", content="text")

    assert first.value.defer_score == 60_000
    assert second.value.defer_score == 120_000
    assert isinstance(first.value.__cause__, EmbeddingError)


@pytest.mark.asyncio
async def test_last_attempt_reraises_original_error(ctx):
    ctx["job_try"] = 3
    with patch("onyx.pipeline.jobs.embed_chunk", side_effect=EmbeddingError(503, "busy")):
        with pytest.raises(EmbeddingError):
            await embed_task(ctx, chunk_id="c1", content="text")


@pytest.mark.asyncio
async def test_fetch_task_returns_snapshot_id(ctx, repo, source):
    with (
        patch("onyx.pipeline.jobs.fetch", return_value=_page()),
        patch("onyx.pipeline.jobs.extract_article", return_value=Article("T", "<p>Body</p>")),
    ):
        snapshot_id = await fetch_task(ctx, source_id=source.id, url=_URL)

    assert [s.id for s in repo.list_snapshots(source.id)] == [snapshot_id]


@pytest.mark.asyncio
async def test_fetch_upstream_failure_is_retried(ctx, source):
    with patch(
        "onyx.pipeline.jobs.fetch", side_effect=FetchError(_URL, "HTTP 502", status_code=502)
    ):
        with pytest.raises(Retry):
            await fetch_task(ctx, source_id=source.id, url=_URL)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        SsrfError("URL resolves to private address 10.0.0.1"),
        ValueError("Unsupported URL scheme 'ftp'"),
        ValueError("Unsupported Content-Type 'application/pdf'"),
        ValueError("Response body exceeds 5 MB limit"),
    ],
)
async def test_fetch_permanent_errors_are_not_retried(ctx, source, error):
    with patch("onyx.pipeline.jobs.fetch", side_effect=error):
        with pytest.raises(type(error)) as exc_info:
            await fetch_task(ctx, source_id=source.id, url=_URL)

    assert exc_info.value is error
    assert not isinstance(exc_info.value, Retry)


def test_retry_delay_doubles():
    assert [retry_delay(5.0, n) for n in (1, 2, 3, 4)] == [5.0, 10.0, 20.0, 40.0]


# ------------------------------------------------------------------
# Worker settings
# ------------------------------------------------------------------


def test_worker_settings_per_queue(tmp_path, config):
    settings = worker_settings(tmp_path / ".onyx.db", config, EMBEDDINGS_QUEUE, burst=True)

    assert [f.name for f in settings["functions"]] == [EMBED_JOB]
    assert settings["queue_name"] == "onyx:embeddings"
    assert settings["max_tries"] == 3
    assert settings["burst"] is True
    assert settings["poll_delay"] == 0.5
    assert settings["redis_settings"].host == "localhost"


def test_worker_settings_unknown_queue(tmp_path, config):
    with pytest.raises(ValueError, match="Unknown queue"):
        worker_settings(tmp_path / ".onyx.db", config, "thumbnails")


@pytest.mark.asyncio
async def test_startup_and_shutdown_hooks(tmp_path, config, embedder, arq_pool):
    settings = worker_settings(tmp_path / ".onyx.db", config, CHUNKING_QUEUE, embedder=embedder)
    ctx = {"redis": arq_pool}

    await settings["on_startup"](ctx)
    assert isinstance(ctx["queue"], ArqJobQueue)
    assert ctx["embedder"] is embedder
    assert ctx["repo"].counts()["documents"] == 0
    conn = ctx["conn"]

    await settings["on_shutdown"](ctx)
    assert "conn" not in ctx
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


@pytest.mark.asyncio
async def test_run_workers_one_worker_per_queue(tmp_path, config):
    created = []

    class _FakeWorker:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.async_run = AsyncMock()
            self.close = AsyncMock()
            created.append(self)

    with patch("onyx.pipeline.worker.Worker", _FakeWorker):
        await run_workers(tmp_path / ".onyx.db", config, burst=True)

    assert [w.kwargs["queue_name"] for w in created] == [f"onyx:{q}" for q in ALL_QUEUES]
    assert all(w.kwargs["burst"] for w in created)
    for w in created:
        w.async_run.assert_awaited_once()
        w.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_workers_selected_queue(tmp_path, config):
    with patch("onyx.pipeline.worker.Worker") as mock_worker:
        mock_worker.return_value.async_run = AsyncMock()
        mock_worker.return_value.close = AsyncMock()
        await run_workers(tmp_path / ".onyx.db", config, [URL_FETCH_QUEUE])

    assert mock_worker.call_count == 1
    assert mock_worker.call_args.kwargs["queue_name"] == "onyx:url-fetch"
