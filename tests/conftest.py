"""Shared pytest fixtures."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from onyx.db.connection import Database
from onyx.db.schema import initialize


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".onyx.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


class FakeEmbedder:
    """Deterministic stand-in for onyx.ingest.embeddings.Embedder.

    Vectors are looked up by exact text; unknown texts get ``default``.
    """

    def __init__(self, model: str = "test/embed", dimensions: int = 3) -> None:
        self.model = model
        self.dimensions = dimensions
        self.vectors: dict[str, list[float]] = {}
        self.default = [1.0] + [0.0] * (dimensions - 1)
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self.vectors.get(text, self.default)


@pytest.fixture
def embedder():
    return FakeEmbedder()


class FakeJobQueue:
    """In-memory JobQueue that records every enqueue as (queue, name, payload)."""

    def __init__(self) -> None:
        self.jobs: list[tuple[str, str, dict]] = []

    async def enqueue(self, queue: str, name: str, payload: dict) -> str:
        self.jobs.append((queue, name, dict(payload)))
        return f"job-{len(self.jobs)}"

    async def enqueue_bulk(self, queue: str, jobs) -> list[str]:
        return [await self.enqueue(queue, name, payload) for name, payload in jobs]

    def payloads(self, queue: str) -> list[dict]:
        return [payload for q, _, payload in self.jobs if q == queue]


@pytest.fixture
def queue():
    return FakeJobQueue()


class FakeArqPool:
    """Stand-in for arq's ArqRedis pool: records enqueue_job calls in order."""

    def __init__(self) -> None:
        self.enqueued: list[tuple[str, str, dict]] = []
        self.results: list[SimpleNamespace] = []
        self.closed = False

    async def enqueue_job(self, function: str, *args, _queue_name: str = "arq:queue", **kwargs):
        self.enqueued.append((_queue_name, function, kwargs))
        return SimpleNamespace(job_id=f"arq-{len(self.enqueued)}")

    async def queued_jobs(self, *, queue_name: str = "arq:queue") -> list:
        return [job for job in self.enqueued if job[0] == queue_name]

    async def all_job_results(self) -> list[SimpleNamespace]:
        return self.results

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def arq_pool():
    return FakeArqPool()
