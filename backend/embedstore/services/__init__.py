"""Service layer exports.

Expose the embedding service, repository and provider implementations for easy importing.
"""

from .embeddings import EmbeddingService
from .openai_client import EmbeddingProvider, OpenAIEmbeddingProvider
from .records import BatchResult, EmbeddingEntry, EmbeddingItem, StoredEntry
from .repository import EmbeddingRepository

__all__ = [
    "EmbeddingService",
    "EmbeddingRepository",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "EmbeddingItem",
    "EmbeddingEntry",
    "StoredEntry",
    "BatchResult",
]
