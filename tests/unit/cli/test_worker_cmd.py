"""Tests for onyx worker."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError
from typer.testing import CliRunner

from onyx.cli.main import app
from onyx.pipeline.queue import ALL_QUEUES, CHUNKING_QUEUE, URL_FETCH_QUEUE

runner = CliRunner()


def test_worker_once_runs_all_queues_in_burst_mode(db_path: Path) -> None:
    with patch("onyx.cli.worker.run_workers", new_callable=AsyncMock) as mock_run:
        result = runner.invoke(app, ["worker", "--once", "--db", str(db_path)])

    assert result.exit_code == 0, result.output
    args, kwargs = mock_run.call_args
    assert args[0] == db_path
    assert args[1].queue.redis_url == "redis://localhost:6379/15"
    assert args[2] == ALL_QUEUES
    assert kwargs == {"burst": True}
    assert "Worker stopped" in result.output


def test_worker_selected_queues_deduplicated(db_path: Path) -> None:
    with patch("onyx.cli.worker.run_workers", new_callable=AsyncMock) as mock_run:
        result = runner.invoke(
            app,
            ["worker", "-q", "url-fetch", "-q", "chunking", "-q", "url-fetch", "--db", str(db_path)],
        )

    assert result.exit_code == 0, result.output
    assert mock_run.call_args.args[2] == (URL_FETCH_QUEUE, CHUNKING_QUEUE)
    assert mock_run.call_args.kwargs == {"burst": False}


def test_worker_unknown_queue(db_path: Path) -> None:
    with patch("onyx.cli.worker.run_workers", new_callable=AsyncMock) as mock_run:
        result = runner.invoke(app, ["worker", "--queue", "bogus", "--once", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Unknown queue" in result.output
    mock_run.assert_not_called()


def test_worker_redis_unreachable(db_path: Path) -> None:
    with patch(
        "onyx.cli.worker.run_workers",
        AsyncMock(side_effect=RedisConnectionError("Connection refused")),
    ):
        result = runner.invoke(app, ["worker", "--once", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "Job queue not reachable" in result.output


def test_worker_no_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["worker", "--once", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
