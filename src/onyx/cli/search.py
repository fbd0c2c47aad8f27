"""onyx search / onyx pack: query the knowledge base from the terminal."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from onyx.cli.common import DEFAULT_DB, load_settings, open_db
from onyx.cli.errors import err_embedding_unavailable, err_invalid_request, err_no_db
from onyx.db.models import DocumentStatus, DocumentType
from onyx.db.repository import Repository
from onyx.errors import EmbeddingError
from onyx.ingest.embeddings import Embedder
from onyx.rag.context import build_context_pack
from onyx.rag.schemas import ContextPackRequest, SearchFilters, SearchRequest
from onyx.rag.search import search

console = Console()
err_console = Console(stderr=True)

_TypeOpt = Annotated[
    list[DocumentType] | None,
    typer.Option("--type", help="Only these document types (repeatable)."),
]
_StatusOpt = Annotated[
    list[DocumentStatus] | None,
    typer.Option("--status", help="Only these document statuses (repeatable)."),
]
_TagOpt = Annotated[
    list[str] | None,
    typer.Option("--tag", "-t", help="Only documents carrying any of these tags (repeatable)."),
]
_DbOpt = Annotated[Path, typer.Option("--db", help="Path to .onyx.db.")]


def search_cmd(
    query: Annotated[str, typer.Argument(help="Search query.")],
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Max results (1-100).")
    ] = None,
    semantic_weight: Annotated[
        float | None,
        typer.Option("--semantic-weight", "-w", help="0 = lexical only, 1 = semantic only."),
    ] = None,
    doc_type: _TypeOpt = None,
    status: _StatusOpt = None,
    tag: _TagOpt = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    db: _DbOpt = DEFAULT_DB,
) -> None:
    """Hybrid (semantic + lexical) search over one project's chunks."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    cfg = load_settings(db)

    try:
        request = SearchRequest(
            query=query,
            limit=limit if limit is not None else cfg.search.limit,
            semantic_weight=(
                semantic_weight if semantic_weight is not None else cfg.search.semantic_weight
            ),
            filters=SearchFilters(doc_types=doc_type or [], tags=tag or [], status=status or []),
        )
    except ValidationError as exc:
        console.print(err_invalid_request(exc))
        raise typer.Exit(1) from exc

    conn = open_db(db)
    try:
        try:
            results = search(Repository(conn), Embedder(cfg.embedding), project, request)
        except EmbeddingError as exc:
            console.print(
                err_embedding_unavailable(cfg.embedding.model, cfg.embedding.api_base, str(exc))
            )
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    if as_json:
        typer.echo("[" + ",".join(r.model_dump_json() for r in results) + "]")
        return
    if not results:
        console.print("[dim]No results.[/]")
        return

    table = Table(show_lines=False)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Document", style="bold")
    table.add_column("Path", style="dim")
    table.add_column("Excerpt")
    for i, r in enumerate(results, start=1):
        excerpt = " ".join(r.content.split())[:120]
        table.add_row(
            str(i),
            f"{r.combined_score:.3f}",
            r.document_title,
            r.heading_path,
            excerpt,
        )
    console.print(table)


def pack_cmd(
    query: Annotated[str, typer.Argument(help="What the context is for.")],
    project: Annotated[str, typer.Option("--project", "-p", help="Project id.")],
    max_tokens: Annotated[
        int | None, typer.Option("--max-tokens", help="Token budget (100-100000).")
    ] = None,
    metadata: Annotated[
        bool,
        typer.Option("--metadata/--no-metadata", help="Prefix each chunk with its source."),
    ] = True,
    doc_type: _TypeOpt = None,
    status: _StatusOpt = None,
    tag: _TagOpt = None,
    db: _DbOpt = DEFAULT_DB,
) -> None:
    """Print a token-bounded Markdown context pack for QUERY."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    cfg = load_settings(db)

    try:
        request = ContextPackRequest(
            query=query,
            max_tokens=max_tokens if max_tokens is not None else cfg.context.max_tokens,
            include_metadata=metadata,
            filters=SearchFilters(doc_types=doc_type or [], tags=tag or [], status=status or []),
        )
    except ValidationError as exc:
        console.print(err_invalid_request(exc))
        raise typer.Exit(1) from exc

    conn = open_db(db)
    try:
        try:
            context = build_context_pack(
                Repository(conn),
                Embedder(cfg.embedding),
                project,
                request,
                pool_size=cfg.context.pool_size,
            )
        except EmbeddingError as exc:
            console.print(
                err_embedding_unavailable(cfg.embedding.model, cfg.embedding.api_base, str(exc))
            )
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    typer.echo(context.markdown)
    err_console.print(f"[dim]{context.chunk_count} chunk(s), {context.token_count} token(s)[/]")
