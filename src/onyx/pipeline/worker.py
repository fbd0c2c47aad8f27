"""arq workers for the pipeline queues.

One arq ``Worker`` consumes one pipeline queue. ``onyx worker`` runs a worker
per requested queue in the same event loop:

    onyx worker                       # all queues until interrupted
    onyx worker --queue url-fetch     # one stage
    onyx worker --once                # burst mode: drain, then exit

Retry policy: a failed attempt is re-enqueued with ``Retry(defer=...)`` and
exponential backoff until ``queue.max_attempts`` is reached. Permanent
errors (blocked or malformed URLs, unsupported content) fail the job at once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NoReturn

from arq.worker import Retry, Worker, func
from loguru import logger

from onyx.config import OnyxConfig
from onyx.db.connection import Database
from onyx.db.repository import Repository
from onyx.db.schema import initialize
from onyx.ingest.embeddings import Embedder
from onyx.pipeline import jobs
from onyx.pipeline.queue import (
    ALL_QUEUES,
    CHUNK_JOB,
    CHUNKING_QUEUE,
    EMBED_JOB,
    EMBEDDINGS_QUEUE,
    FETCH_JOB,
    URL_FETCH_QUEUE,
    ArqJobQueue,
    arq_queue_name,
    get_redis_settings,
)

# Errors a retry cannot fix. SsrfError is a ValueError.
PERMANENT_ERRORS: tuple[type[Exception], ...] = (ValueError,)


def retry_delay(backoff_seconds: float, job_try: int) -> float:
    """Seconds to wait before attempt ``job_try + 1``."""
    return backoff_seconds * 2 ** max(job_try - 1, 0)


def _retry_or_raise(ctx: dict[str, Any], label: str, exc: Exception) -> NoReturn:
    """Raise ``Retry`` while attempts remain, otherwise re-raise *exc*."""
    policy = ctx["config"].queue
    job_try = ctx.get("job_try", 1)
    if isinstance(exc, PERMANENT_ERRORS):
        logger.error(f"[worker] {label} failed permanently: {exc}")
        raise exc
    if job_try >= policy.max_attempts:
        logger.opt(exception=exc).error(
            f"[worker] {label} failed after {job_try}/{policy.max_attempts} attempts"
        )
        raise exc
    delay = retry_delay(policy.backoff_seconds, job_try)
    logger.warning(
        f"[worker] {label} attempt {job_try}/{policy.max_attempts} failed "
        f"({type(exc).__name__}: {exc}), retrying in {delay:g}s"
    )
    raise Retry(defer=delay) from exc


# ------------------------------------------------------------------
# Tasks
# ------------------------------------------------------------------


async def chunk_task(ctx: dict[str, Any], document_id: str, version_id: str) -> int:
    try:
        return await jobs.chunk_document_version(
            ctx["repo"],
            ctx["queue"],
            document_id,
            version_id,
            ctx["config"].chunking,
        )
    except Exception as exc:
        _retry_or_raise(ctx, f"{CHUNKING_QUEUE}/{CHUNK_JOB} {version_id}", exc)


async def embed_task(ctx: dict[str, Any], chunk_id: str, content: str) -> str | None:
    try:
        record = jobs.embed_chunk(ctx["repo"], ctx["embedder"], chunk_id, content)
    except Exception as exc:
        _retry_or_raise(ctx, f"{EMBEDDINGS_QUEUE}/{EMBED_JOB} {chunk_id}", exc)
    return record.id if record else None


async def fetch_task(ctx: dict[str, Any], source_id: str, url: str) -> str | None:
    try:
        snapshot = jobs.fetch_and_snapshot_source(
            ctx["repo"], source_id, url, ctx["config"].fetch
        )
    except Exception as exc:
        _retry_or_raise(ctx, f"{URL_FETCH_QUEUE}/{FETCH_JOB} {url}", exc)
    return snapshot.id if snapshot else None


TASKS = {
    CHUNKING_QUEUE: func(chunk_task, name=CHUNK_JOB),
    EMBEDDINGS_QUEUE: func(embed_task, name=EMBED_JOB),
    URL_FETCH_QUEUE: func(fetch_task, name=FETCH_JOB),
}


# ------------------------------------------------------------------
# Worker settings
# ------------------------------------------------------------------


def worker_settings(
    db_path: Path,
    config: OnyxConfig,
    queue: str,
    *,
    burst: bool = False,
    embedder: Embedder | None = None,
) -> dict[str, Any]:
    """Keyword arguments for an ``arq.worker.Worker`` consuming *queue*.

    The startup hook opens the Onyx database and puts the repository,
    embedder, config and an ArqJobQueue (for follow-up jobs) into ``ctx``.
    """
    if queue not in TASKS:
        raise ValueError(f"Unknown queue: {queue}")

    async def startup(ctx: dict[str, Any]) -> None:
        conn = Database(db_path).connect()
        initialize(conn)
        ctx["conn"] = conn
        ctx["repo"] = Repository(conn)
        ctx["config"] = config
        ctx["embedder"] = embedder or Embedder(config.embedding)
        ctx["queue"] = ArqJobQueue(ctx["redis"])
        logger.info(f"[worker] {queue} worker ready ({db_path})")

    async def shutdown(ctx: dict[str, Any]) -> None:
        conn = ctx.pop("conn", None)
        if conn is not None:
            conn.close()
        logger.info(f"[worker] {queue} worker shutting down")

    return {
        "functions": [TASKS[queue]],
        "queue_name": arq_queue_name(queue),
        "redis_settings": get_redis_settings(config.queue.redis_url),
        "on_startup": startup,
        "on_shutdown": shutdown,
        "burst": burst,
        "max_tries": config.queue.max_attempts,
        "poll_delay": config.queue.poll_interval,
        "job_timeout": config.queue.job_timeout,
        "keep_result": 3600,
        "handle_signals": False,
    }


async def run_workers(
    db_path: Path,
    config: OnyxConfig,
    queues: Sequence[str] | None = None,
    *,
    burst: bool = False,
) -> None:
    """Run one arq worker per queue until cancelled (or drained with *burst*)."""
    selected = tuple(queues) if queues else ALL_QUEUES
    workers = [Worker(**worker_settings(db_path, config, q, burst=burst)) for q in selected]
    logger.info(f"[worker] consuming: {', '.join(selected)}")
    try:
        await asyncio.gather(*(w.async_run() for w in workers))
    finally:
        for w in workers:
            await w.close()
