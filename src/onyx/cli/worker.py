"""onyx worker: consume pipeline jobs (chunking, embeddings, url-fetch) from arq."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from redis.exceptions import RedisError
from rich.console import Console

from onyx.cli.common import DEFAULT_DB, load_settings
from onyx.cli.errors import err_no_db, err_queue_unavailable
from onyx.pipeline.queue import ALL_QUEUES
from onyx.pipeline.worker import run_workers

console = Console()


def worker_cmd(
    queue: Annotated[
        list[str] | None,
        typer.Option("--queue", "-q", help=f"Queue to consume (repeatable): {', '.join(ALL_QUEUES)}."),
    ] = None,
    once: Annotated[
        bool,
        typer.Option("--once", help="Burst mode: process all queued jobs, then exit."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .onyx.db."),
    ] = DEFAULT_DB,
) -> None:
    """Run pipeline workers until interrupted (or until drained with --once)."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    unknown = sorted(set(queue or ()) - set(ALL_QUEUES))
    if unknown:
        console.print(
            f"[red]Error:[/] Unknown queue(s): {', '.join(unknown)}\n"
            f"  Choose from: {', '.join(ALL_QUEUES)}"
        )
        raise typer.Exit(1)

    cfg = load_settings(db)
    selected = tuple(dict.fromkeys(queue)) if queue else ALL_QUEUES
    console.print(f"[dim]Redis: {cfg.queue.redis_url}  |  queues: {', '.join(selected)}[/]")
    try:
        asyncio.run(run_workers(db, cfg, selected, burst=once))
    except KeyboardInterrupt:
        console.print("[dim]Interrupted.[/]")
    except (RedisError, OSError) as exc:
        console.print(err_queue_unavailable(cfg.queue.redis_url, exc))
        raise typer.Exit(1) from exc
    console.print("[green]✓[/] Worker stopped.")
