"""Embedding vector (de)serialisation for sqlite-vec scalar functions."""

from __future__ import annotations

import struct

from sqlite_vec import serialize_float32


def to_blob(embedding: list[float], dimensions: int | None = None) -> bytes:
    """Serialise *embedding* to the compact float32 blob sqlite-vec reads.

    Args:
        embedding: Vector values.
        dimensions: Expected length; ``None`` skips the check.

    Raises:
        ValueError: If the vector is empty or has the wrong length.
    """
    if not embedding:
        raise ValueError("embedding must contain at least one value")
    if dimensions is not None and len(embedding) != dimensions:
        raise ValueError(
            f"embedding has {len(embedding)} dimensions, expected {dimensions}"
        )
    return serialize_float32(embedding)


def from_blob(blob: bytes) -> list[float]:
    """Inverse of to_blob()."""
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob))
