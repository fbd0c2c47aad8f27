"""Context packer: the most similar chunks that fit a token budget, as Markdown.

Pipeline:
  1. Embed the query and take the POOL_SIZE nearest chunks (semantic only).
  2. Walk the pool in similarity order, adding chunks while the running token
     total stays within ``max_tokens``. The walk stops at the first chunk that
     does not fit; smaller chunks further down are not tried.
  3. Render each packed chunk as an optional metadata line, its content, and
     a ``---`` separator, all joined by blank lines.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence

from loguru import logger

from onyx.db.repository import Repository
from onyx.ingest.embeddings import Embedder
from onyx.rag.schemas import ContextPack, ContextPackRequest
from onyx.rag.search import filter_kwargs

POOL_SIZE = 50


def build_context_pack(
    repo: Repository,
    embedder: Embedder,
    project_id: str,
    request: ContextPackRequest,
    pool_size: int = POOL_SIZE,
) -> ContextPack:
    """Assemble a token-bounded Markdown context for ``request.query``.

    Raises:
        EmbeddingError: the query could not be embedded.
    """
    query_embedding = embedder.embed(request.query)
    pool = repo.search_semantic(
        project_id,
        query_embedding,
        model=embedder.model,
        limit=pool_size,
        **filter_kwargs(request.filters),
    )
    packed, total = pack(pool, request.max_tokens)
    logger.debug(
        f"context pack: {len(packed)}/{len(pool)} chunk(s), {total}/{request.max_tokens} tokens"
    )
    return ContextPack(
        markdown=render(packed, request.include_metadata),
        token_count=total,
        chunk_count=len(packed),
        query=request.query,
    )


def pack(rows: Sequence[sqlite3.Row], max_tokens: int) -> tuple[list[sqlite3.Row], int]:
    """Greedy prefix of *rows* whose token counts sum to at most *max_tokens*."""
    packed: list[sqlite3.Row] = []
    total = 0
    for row in rows:
        tokens = int(row["token_count"])
        if total + tokens > max_tokens:
            break
        packed.append(row)
        total += tokens
    return packed, total


def render(rows: Sequence[sqlite3.Row], include_metadata: bool = True) -> str:
    parts: list[str] = []
    for row in rows:
        if include_metadata:
            meta = [f"**{row['document_title']}**", f"_Type: {row['document_type']}_"]
            if row["heading_path"]:
                meta.append(f"_Path: {row['heading_path']}_")
            parts.append(" | ".join(meta))
        parts.append(row["content"])
        parts.append("---")
    return "\n\n".join(parts)
