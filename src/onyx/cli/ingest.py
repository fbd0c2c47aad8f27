"""onyx ingest: register a web source and queue (or run) its fetch.

The fetch job downloads the page, extracts the main article, converts it to
Markdown and stores a snapshot when the content hash changed.

Usage:
  onyx ingest https://example.com/guide --project acme
  onyx ingest https://example.com/guide --project acme --now
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from redis.exceptions import RedisError
from rich.console import Console

from onyx.cli.common import DEFAULT_DB, load_settings, open_db
from onyx.cli.errors import err_no_db, err_queue_unavailable, err_ssrf_blocked
from onyx.db.models import Source
from onyx.db.repository import Repository, new_id
from onyx.errors import ExtractionError, UpstreamError
from onyx.ingest.web import SsrfError, validate_scheme
from onyx.pipeline.jobs import fetch_and_snapshot_source, register_source
from onyx.pipeline.queue import job_queue

console = Console()


def ingest_cmd(
    url: Annotated[str, typer.Argument(help="http(s) URL of the page to snapshot.")],
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    title: Annotated[
        str | None,
        typer.Option("--title", help="Source title. Defaults to the page <title>."),
    ] = None,
    now: Annotated[
        bool,
        typer.Option("--now", help="Fetch immediately instead of queueing."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .onyx.db."),
    ] = DEFAULT_DB,
) -> None:
    """Register a URL source and fetch a Markdown snapshot of it."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    try:
        validate_scheme(url)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc

    cfg = load_settings(db)
    conn = open_db(db)
    try:
        repo = Repository(conn)

        if not now:
            try:
                source = asyncio.run(_register(repo, cfg.queue.redis_url, project, url, title))
            except (RedisError, OSError) as exc:
                console.print(err_queue_unavailable(cfg.queue.redis_url, exc))
                raise typer.Exit(1) from exc
            console.print(f"[green]✓[/] {url}  [dim]{source.id}[/]")
            console.print("  Fetch queued. Run:  onyx worker --queue url-fetch --once")
            return

        source = repo.get_source_by_url(project, url)
        if source is None:
            source = repo.add_source(Source(id=new_id(), project_id=project, url=url, title=title))
        try:
            snapshot = fetch_and_snapshot_source(repo, source.id, url, cfg.fetch)
        except SsrfError as exc:
            console.print(err_ssrf_blocked(url))
            raise typer.Exit(1) from exc
        except (UpstreamError, ExtractionError, ValueError) as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1) from exc

        if snapshot is None:
            console.print(f"[dim]Unchanged:[/] {url}")
        else:
            console.print(
                f"[green]✓[/] Snapshot {snapshot.id[:8]} of {url} "
                f"[dim]({len(snapshot.content_markdown):,} chars)[/]"
            )
    finally:
        conn.close()


async def _register(
    repo: Repository, redis_url: str, project: str, url: str, title: str | None
) -> Source:
    async with job_queue(redis_url) as queue:
        return await register_source(repo, queue, project, url, title)
