"""Hybrid search: cosine similarity (sqlite-vec) fused with FTS5 rank.

  semantic_score = 1 - cosine_distance(chunk, query)       (0 if not embedded)
  text_score     = r / (1 + r), r = -bm25(chunk, query)    (0 if no lexical match)
  combined_score = w * semantic_score + (1 - w) * text_score

Only chunks with at least one contribution are ranked. Ties on
combined_score are broken by chunk id, so equal inputs give equal output.
"""

from __future__ import annotations

import json

from loguru import logger

from onyx.db.repository import Repository
from onyx.ingest.embeddings import Embedder
from onyx.rag.schemas import SearchFilters, SearchRequest, SearchResult


def search(
    repo: Repository,
    embedder: Embedder,
    project_id: str,
    request: SearchRequest,
) -> list[SearchResult]:
    """Rank the chunks of *project_id* against ``request.query``.

    Raises:
        EmbeddingError: the query could not be embedded.
    """
    query_embedding = embedder.embed(request.query)
    rows = repo.search_hybrid(
        project_id,
        request.query,
        query_embedding,
        model=embedder.model,
        semantic_weight=request.semantic_weight,
        limit=request.limit,
        **filter_kwargs(request.filters),
    )
    logger.debug(f"search: {len(rows)} result(s) for {request.query!r} in {project_id}")
    return [
        SearchResult(
            chunk_id=r["chunk_id"],
            document_id=r["document_id"],
            document_title=r["document_title"],
            document_type=r["document_type"],
            document_status=r["document_status"],
            document_tags=json.loads(r["document_tags"] or "[]"),
            content=r["content"],
            heading_path=r["heading_path"] or "",
            chunk_index=r["chunk_index"],
            token_count=r["token_count"],
            semantic_score=r["semantic_score"],
            text_score=r["text_score"],
            combined_score=r["combined_score"],
        )
        for r in rows
    ]


def filter_kwargs(filters: SearchFilters) -> dict[str, list[str]]:
    """Map request filters onto the repository's plain-string filter arguments."""
    return {
        "doc_types": [t.value for t in filters.doc_types],
        "statuses": [s.value for s in filters.status],
        "tags": list(filters.tags),
    }
