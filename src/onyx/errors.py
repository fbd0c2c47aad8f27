"""Onyx error taxonomy.

  NotFoundError     referenced row vanished between enqueue and processing.
                    Non-retryable: job handlers log and drop.
  UpstreamError     embedding service or source URL failed (non-2xx,
                    timeout, malformed body). Retryable via queue backoff.
  ExtractionError   fetched HTML contains no readable article.
                    Hard job failure, still subject to queue retry.

Request validation failures surface as ``pydantic.ValidationError`` from
``onyx.rag.schemas`` before any pipeline work starts.
"""

from __future__ import annotations


class OnyxError(Exception):
    """Base class for all pipeline errors."""


class NotFoundError(OnyxError):
    """Raised when a document version, chunk, or source no longer exists."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class UpstreamError(OnyxError):
    """Raised when an external service call fails."""


class EmbeddingError(UpstreamError):
    """Embedding service returned an error status or an unusable body."""

    def __init__(self, status_code: int | None, body: str) -> None:
        status = status_code if status_code is not None else "n/a"
        super().__init__(f"Embedding service error {status}: {body}")
        self.status_code = status_code
        self.body = body


class FetchError(UpstreamError):
    """Source URL could not be fetched (network error or non-2xx status)."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(f"Failed to fetch '{url}': {reason}")
        self.url = url
        self.status_code = status_code


class ExtractionError(OnyxError):
    """No readable article content could be extracted from a fetched page."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Failed to extract readable content from '{url}'")
        self.url = url
