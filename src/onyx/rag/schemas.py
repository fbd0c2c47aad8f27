"""Request and response models for search and context packing.

Requests are validated before any embedding call; malformed input raises
``pydantic.ValidationError``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from onyx.db.models import DocumentStatus, DocumentType

DEFAULT_SEARCH_LIMIT = 20
DEFAULT_SEMANTIC_WEIGHT = 0.7
DEFAULT_CONTEXT_TOKENS = 8_000


class SearchFilters(BaseModel):
    """Optional document filters. Empty lists mean "no filter"."""

    doc_types: list[DocumentType] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    status: list[DocumentStatus] = Field(default_factory=list)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=DEFAULT_SEARCH_LIMIT, ge=1, le=100)
    semantic_weight: float = Field(default=DEFAULT_SEMANTIC_WEIGHT, ge=0.0, le=1.0)
    filters: SearchFilters = Field(default_factory=SearchFilters)


class ContextPackRequest(BaseModel):
    query: str = Field(min_length=1)
    max_tokens: int = Field(default=DEFAULT_CONTEXT_TOKENS, ge=100, le=100_000)
    include_metadata: bool = True
    filters: SearchFilters = Field(default_factory=SearchFilters)


class SearchResult(BaseModel):
    """One ranked chunk with its document metadata and score breakdown."""

    chunk_id: str
    document_id: str
    document_title: str
    document_type: DocumentType
    document_status: DocumentStatus
    document_tags: list[str] = Field(default_factory=list)
    content: str
    heading_path: str = ""
    chunk_index: int
    token_count: int
    semantic_score: float
    text_score: float
    combined_score: float


class ContextPack(BaseModel):
    markdown: str
    token_count: int
    chunk_count: int
    query: str
