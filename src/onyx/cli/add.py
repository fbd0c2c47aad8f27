"""onyx add: store a Markdown file as a document version and queue chunking.

Usage:
  onyx add notes/setup.md --project acme --title "Setup" --type doc --tag infra
  onyx add notes/setup.md --document <id> --reason "fix typo"   (new version)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from redis.exceptions import RedisError
from rich.console import Console

from onyx.cli.common import DEFAULT_DB, load_settings, open_db
from onyx.cli.errors import err_document_not_found, err_no_db, err_queue_unavailable
from onyx.db.models import Document, DocumentStatus, DocumentType
from onyx.db.repository import Repository, new_id
from onyx.pipeline.jobs import create_document_version
from onyx.pipeline.queue import job_queue

console = Console()


def add_cmd(
    file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="Markdown file."),
    ],
    project: Annotated[
        str | None,
        typer.Option("--project", "-p", help="Project id (required for new documents)."),
    ] = None,
    document: Annotated[
        str | None,
        typer.Option("--document", "-d", help="Add a new version to this document id."),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", help="Document title. Defaults to the file name."),
    ] = None,
    doc_type: Annotated[
        DocumentType,
        typer.Option("--type", help="Document type."),
    ] = DocumentType.DOC,
    status: Annotated[
        DocumentStatus,
        typer.Option("--status", help="Document status."),
    ] = DocumentStatus.DRAFT,
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag (repeatable)."),
    ] = None,
    reason: Annotated[
        str | None,
        typer.Option("--reason", help="Change reason stored on the version."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .onyx.db."),
    ] = DEFAULT_DB,
) -> None:
    """Store a Markdown file as a new document (or version) and queue chunking."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    if document is None and not project:
        console.print("[red]Error:[/] --project is required when creating a document.")
        raise typer.Exit(1)

    cfg = load_settings(db)
    content = file.read_text(encoding="utf-8")
    conn = open_db(db)
    try:
        asyncio.run(
            _add(
                Repository(conn),
                cfg.queue.redis_url,
                content,
                file=file,
                project=project,
                document=document,
                title=title,
                doc_type=doc_type,
                status=status,
                tags=list(tag or []),
                reason=reason,
            )
        )
    except (RedisError, OSError) as exc:
        console.print(err_queue_unavailable(cfg.queue.redis_url, exc))
        raise typer.Exit(1) from exc
    finally:
        conn.close()


async def _add(
    repo: Repository,
    redis_url: str,
    content: str,
    *,
    file: Path,
    project: str | None,
    document: str | None,
    title: str | None,
    doc_type: DocumentType,
    status: DocumentStatus,
    tags: list[str],
    reason: str | None,
) -> None:
    # Connect before writing so an unreachable Redis leaves no orphan document.
    async with job_queue(redis_url) as queue:
        if document is None:
            doc = repo.add_document(
                Document(
                    id=new_id(),
                    project_id=project,  # type: ignore[arg-type]
                    title=title or file.stem,
                    type=doc_type,
                    status=status,
                    tags=tags,
                )
            )
        else:
            doc = repo.get_document(document)
            if doc is None:
                console.print(err_document_not_found(document))
                raise typer.Exit(1)

        latest = repo.get_latest_version(doc.id)
        version = await create_document_version(
            repo, queue, doc.id, content, change_reason=reason, created_by="cli"
        )

    if latest is not None and version.id == latest.id:
        console.print(f"[dim]Unchanged:[/] {doc.title} is already at v{version.version}.")
        return

    console.print(f"[green]✓[/] {doc.title}  [dim]{doc.id}[/]  v{version.version}")
    console.print("  Chunking queued. Run:  onyx worker --once")
