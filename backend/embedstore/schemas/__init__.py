"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .embedding import (
    BatchResultResource,
    DeleteResultResource,
    EmbeddingBatchRequest,
    EmbeddingCreateRequest,
    EmbeddingEntryResource,
    EmbeddingSearchRequest,
    StoredEntryResource,
)

__all__ = [
    "EmbeddingCreateRequest",
    "EmbeddingBatchRequest",
    "EmbeddingSearchRequest",
    "StoredEntryResource",
    "BatchResultResource",
    "EmbeddingEntryResource",
    "DeleteResultResource",
]
