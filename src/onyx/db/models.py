"""Domain models for the Onyx database layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DocumentType(str, Enum):
    DOC = "doc"
    NOTE = "note"
    ADR = "adr"
    LESSON = "lesson"
    SNIPPET = "snippet"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    DEPRECATED = "deprecated"


@dataclass
class Document:
    id: str
    project_id: str
    title: str
    type: DocumentType = DocumentType.DOC
    status: DocumentStatus = DocumentStatus.DRAFT
    tags: list[str] = field(default_factory=list)
    pinned: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class DocumentVersion:
    """Immutable content snapshot of a document."""

    id: str
    document_id: str
    version: int
    content_markdown: str
    content_hash: str
    change_reason: str | None = None
    created_by: str | None = None
    created_at: str | None = None


@dataclass
class Chunk:
    id: str
    document_version_id: str
    chunk_index: int
    content: str
    token_count: int
    heading_path: str = ""
    created_at: str | None = None


@dataclass
class ChunkEmbedding:
    id: str
    chunk_id: str
    embedding: list[float]
    model: str
    created_at: str | None = None


@dataclass
class Source:
    id: str
    project_id: str
    url: str
    title: str | None = None
    fetched_at: str | None = None
    etag: str | None = None
    content_hash: str | None = None


@dataclass(frozen=True)
class SourceSnapshot:
    id: str
    source_id: str
    content_markdown: str
    content_hash: str
    fetched_at: str | None = None
