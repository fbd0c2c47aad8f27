"""Fixtures for CLI command tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from onyx.config import load_config
from onyx.db.connection import Database
from onyx.db.schema import initialize
from onyx.pipeline.queue import CHUNKING_QUEUE
from onyx.pipeline.worker import TASKS, worker_settings

_CONFIG = """\
embedding:
  model: ollama/nomic-embed-text
  api_base: http://localhost:11434
  dimensions: 3
queue:
  redis_url: redis://localhost:6379/15
  max_attempts: 2
  backoff_seconds: 60
"""

_TASKS_BY_NAME = {f.name: f.coroutine for f in TASKS.values()}


@pytest.fixture(autouse=True)
def _isolated_cli(monkeypatch, arq_pool):
    """Keep CLI tests independent of the caller's env, loguru sinks and Redis."""
    for var in ("ONYX_EMBEDDING_MODEL", "OLLAMA_URL", "ONYX_LOG_LEVEL", "REDIS_URL"):
        monkeypatch.delenv(var, raising=False)
    with (
        patch("onyx.cli.common.setup_logger"),
        patch("onyx.pipeline.queue.create_pool", AsyncMock(return_value=arq_pool)),
    ):
        yield


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Initialised .onyx.db with a 3-dimension onyx.yaml next to it."""
    path = tmp_path / ".onyx.db"
    conn = Database(path).connect()
    initialize(conn)
    conn.close()
    (tmp_path / "onyx.yaml").write_text(_CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def mock_embedding():
    """Patch litellm.embedding to return [1, 0, 0] for every input."""
    response = MagicMock()
    response.data = [{"embedding": [1.0, 0.0, 0.0]}]
    with patch("onyx.ingest.embeddings.litellm.embedding", return_value=response) as mock:
        yield mock


@pytest.fixture
def drain(arq_pool, db_path, mock_embedding):
    """Run every job recorded on the fake arq pool, in order, through the arq tasks."""

    async def _drain() -> int:
        settings = worker_settings(db_path, load_config(db_path.parent), CHUNKING_QUEUE)
        ctx = {"redis": arq_pool}
        await settings["on_startup"](ctx)
        done = 0
        try:
            while done < len(arq_pool.enqueued):
                _, name, kwargs = arq_pool.enqueued[done]
                done += 1
                ctx["job_try"] = 1
                await _TASKS_BY_NAME[name](ctx, **kwargs)
        finally:
            await settings["on_shutdown"](ctx)
        return done

    return lambda: asyncio.run(_drain())
