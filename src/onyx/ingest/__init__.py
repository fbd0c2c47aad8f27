"""Onyx ingest layer: markdown chunker, source fetcher, embedding client."""

from onyx.ingest.embeddings import Embedder
from onyx.ingest.markdown import ChunkDraft, MarkdownChunker, chunk_markdown
from onyx.ingest.web import (
    Article,
    FetchedPage,
    SsrfError,
    content_hash,
    extract_article,
    fetch,
    html_to_markdown,
)

__all__ = [
    "Article",
    "ChunkDraft",
    "Embedder",
    "FetchedPage",
    "MarkdownChunker",
    "SsrfError",
    "chunk_markdown",
    "content_hash",
    "extract_article",
    "fetch",
    "html_to_markdown",
]
