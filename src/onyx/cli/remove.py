"""onyx remove: delete a document or a source from the knowledge base.

Removing a document cascades to its versions, chunks (+ FTS5 index entries)
and chunk embeddings. Removing a source cascades to its snapshots.

Usage:
  onyx remove --document <id>
  onyx remove --source <id> --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from onyx.cli.common import DEFAULT_DB, open_db
from onyx.cli.errors import err_document_not_found, err_no_db, err_source_not_found
from onyx.db.repository import Repository

console = Console()


def remove_cmd(
    document: Annotated[
        str | None,
        typer.Option("--document", "-d", help="Document id to remove."),
    ] = None,
    source: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Source id to remove."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .onyx.db."),
    ] = DEFAULT_DB,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document or source and everything it owns."""
    if (document is None) == (source is None):
        console.print("[red]Error:[/] Pass exactly one of --document or --source.")
        raise typer.Exit(1)
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = open_db(db)
    repo = Repository(conn)
    try:
        if document is not None:
            doc = repo.get_document(document)
            if doc is None:
                console.print(err_document_not_found(document))
                raise typer.Exit(0)
            versions = repo.list_versions(doc.id)
            chunk_count = sum(len(repo.list_chunks(v.id)) for v in versions)
            console.print(f"\nRemove document: [bold]{doc.title}[/]")
            console.print(f"  Versions: {len(versions)}  |  Chunks: {chunk_count}")
            _confirm(yes)
            repo.delete_document(doc.id)
            console.print(f"\n[green]✓[/] Removed: {doc.title}")
        else:
            src = repo.get_source(source)  # type: ignore[arg-type]
            if src is None:
                console.print(err_source_not_found(source))  # type: ignore[arg-type]
                raise typer.Exit(0)
            snapshots = repo.list_snapshots(src.id)
            console.print(f"\nRemove source: [bold]{src.url}[/]")
            console.print(f"  Snapshots: {len(snapshots)}")
            _confirm(yes)
            repo.delete_source(src.id)
            console.print(f"\n[green]✓[/] Removed: {src.url}")
    finally:
        conn.close()


def _confirm(yes: bool) -> None:
    if not yes and not typer.confirm("Confirm removal?", default=False):
        console.print("[dim]Cancelled.[/]")
        raise typer.Exit(0)
