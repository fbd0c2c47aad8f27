"""Pipeline job queues on Redis via arq.

Each pipeline stage has its own arq queue (``onyx:chunking``,
``onyx:embeddings``, ``onyx:url-fetch``), so workers can be scaled per
stage. Job kwargs are the JSON payloads the handlers in
``onyx.pipeline.jobs`` expect.

Delivery is at-least-once: arq re-runs a job whose worker died, and the
worker re-enqueues failed attempts with ``arq.worker.Retry``. Handlers must
therefore be idempotent.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Protocol
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

CHUNKING_QUEUE = "chunking"
EMBEDDINGS_QUEUE = "embeddings"
URL_FETCH_QUEUE = "url-fetch"
ALL_QUEUES: tuple[str, ...] = (CHUNKING_QUEUE, EMBEDDINGS_QUEUE, URL_FETCH_QUEUE)

CHUNK_JOB = "chunk"
EMBED_JOB = "embed"
FETCH_JOB = "fetch"

_QUEUE_PREFIX = "onyx:"


class JobQueue(Protocol):
    """What job handlers need from a queue: named, JSON-payload enqueues."""

    async def enqueue(self, queue: str, name: str, payload: dict[str, Any]) -> str: ...

    async def enqueue_bulk(
        self, queue: str, jobs: Sequence[tuple[str, dict[str, Any]]]
    ) -> list[str]: ...


def arq_queue_name(queue: str) -> str:
    """Redis key of the arq queue backing pipeline *queue*."""
    return f"{_QUEUE_PREFIX}{queue}"


def get_redis_settings(redis_url: str, conn_retries: int = 5) -> RedisSettings:
    """Parse a ``redis://`` URL into arq RedisSettings."""
    parsed = urlparse(redis_url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or 0),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_retries=conn_retries,
    )


async def open_pool(redis_url: str, conn_retries: int = 5) -> ArqRedis:
    """Connect to Redis and return an arq pool for enqueueing and inspection."""
    return await create_pool(get_redis_settings(redis_url, conn_retries=conn_retries))


class ArqJobQueue:
    """JobQueue on an arq Redis pool.

    Args:
        redis: Pool from ``open_pool()``, or ``ctx["redis"]`` inside a worker.
    """

    def __init__(self, redis: ArqRedis) -> None:
        self._redis = redis

    async def enqueue(self, queue: str, name: str, payload: dict[str, Any]) -> str:
        job = await self._redis.enqueue_job(name, _queue_name=arq_queue_name(queue), **payload)
        if job is None:
            # arq only refuses jobs with a duplicate _job_id, which we never set.
            raise RuntimeError(f"arq refused {queue}/{name} job")
        return job.job_id

    async def enqueue_bulk(
        self, queue: str, jobs: Sequence[tuple[str, dict[str, Any]]]
    ) -> list[str]:
        return [await self.enqueue(queue, name, payload) for name, payload in jobs]

    async def stats(self) -> dict[str, dict[str, int]]:
        """Queued, completed and failed job counts per pipeline queue.

        Completed and failed counts cover the results arq still keeps
        (``keep_result`` seconds after a job finished).
        """
        result = {q: {"queued": 0, "completed": 0, "failed": 0} for q in ALL_QUEUES}
        for queue in ALL_QUEUES:
            queued = await self._redis.queued_jobs(queue_name=arq_queue_name(queue))
            result[queue]["queued"] = len(queued)
        for job in await self._redis.all_job_results():
            name = (job.queue_name or "").removeprefix(_QUEUE_PREFIX)
            if name in result:
                result[name]["completed" if job.success else "failed"] += 1
        return result


@asynccontextmanager
async def job_queue(redis_url: str, conn_retries: int = 5) -> AsyncIterator[ArqJobQueue]:
    """Open a pool for the duration of a block and close it afterwards."""
    pool = await open_pool(redis_url, conn_retries=conn_retries)
    try:
        yield ArqJobQueue(pool)
    finally:
        await pool.aclose()
