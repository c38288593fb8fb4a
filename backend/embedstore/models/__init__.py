"""Convenience exports for ORM models."""

from .embedding import EMBEDDING_DIMENSIONS, EMBEDDING_TABLE, EmbeddingRecord

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "EMBEDDING_TABLE",
    "EmbeddingRecord",
]
