"""onyx status: knowledge base overview.

Shows database stats (documents, versions, chunks, embeddings, sources,
snapshots), embedding coverage for the configured model, and queue health
per arq queue (queued / completed / failed).
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from redis.exceptions import RedisError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from onyx.cli.common import DEFAULT_DB, open_db
from onyx.config import ConfigError, OnyxConfig, load_config
from onyx.db.repository import Repository
from onyx.pipeline.queue import job_queue

console = Console()


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .onyx.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show knowledge base and queue status."""
    # Status works even with a broken onyx.yaml
    try:
        cfg = load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(f"[yellow]⚠[/] {exc}")
        cfg = OnyxConfig()

    _show_project_panel(db, cfg)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  onyx init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        return

    conn = open_db(db)
    try:
        _show_knowledge_panel(conn, Repository(conn), cfg)
    finally:
        conn.close()
    _show_queue_panel(cfg.queue.redis_url)


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_project_panel(db: Path, cfg: OnyxConfig) -> None:
    db_info = f"{db}"
    if db.exists():
        size_mb = db.stat().st_size / (1024 * 1024)
        db_info = f"{db} ({size_mb:.1f} MB)"

    lines = [
        f"Database:   {db_info}",
        f"Embedding:  {cfg.embedding.model} ({cfg.embedding.dimensions} dims)",
        f"Chunking:   {cfg.chunking.max_tokens} tokens, {cfg.chunking.overlap_tokens} overlap",
        f"Queue:      {cfg.queue.redis_url}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_knowledge_panel(conn: sqlite3.Connection, repo: Repository, cfg: OnyxConfig) -> None:
    counts = repo.counts()
    embedded = _count_embedded(conn, cfg.embedding.model)

    lines = [
        f"Documents: [bold]{counts['documents']:,}[/]  |  "
        f"Versions: [bold]{counts['document_versions']:,}[/]",
        f"Chunks: [bold]{counts['chunks']:,}[/]  |  "
        f"Embeddings: [bold]{counts['chunk_embeddings']:,}[/]",
        f"Sources: [bold]{counts['sources']:,}[/]  |  "
        f"Snapshots: [bold]{counts['source_snapshots']:,}[/]",
    ]
    if counts["chunks"]:
        pct = 100 * embedded / counts["chunks"]
        lines.append(f"Embedded with {cfg.embedding.model}: {embedded:,} ({pct:.0f}%)")
    else:
        lines.append("[dim]No chunks yet.[/]")

    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_queue_panel(redis_url: str) -> None:
    try:
        stats = asyncio.run(_queue_stats(redis_url))
    except (RedisError, OSError) as exc:
        console.print(
            Panel(
                f"[yellow]Job queue not reachable at {redis_url}.[/]\n  {exc}",
                title="[bold]Queues[/]",
                expand=False,
            )
        )
        return

    table = Table(box=None, padding=(0, 1))
    table.add_column("Queue", style="bold")
    table.add_column("Queued", justify="right")
    table.add_column("Done", justify="right", style="dim")
    table.add_column("Failed", justify="right")

    for name, by_status in stats.items():
        failed = by_status["failed"]
        table.add_row(
            name,
            str(by_status["queued"]),
            str(by_status["completed"]),
            f"[red]{failed}[/]" if failed else "0",
        )
    console.print(Panel(table, title="[bold]Queues[/]", expand=False))


async def _queue_stats(redis_url: str) -> dict[str, dict[str, int]]:
    # status must not hang on a stopped Redis
    async with job_queue(redis_url, conn_retries=0) as queue:
        return await queue.stats()


# ---------------------------------------------------------------------------
# DB helpers
# ---------------------------------------------------------------------------


def _count_embedded(conn: sqlite3.Connection, model: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM chunk_embeddings WHERE model = ?", (model,)
    ).fetchone()
    return row[0] if row else 0
