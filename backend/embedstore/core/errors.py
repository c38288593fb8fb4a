"""Exception hierarchy shared by the repository, service and API layers.

Classes:
    EmbeddingStoreError: Root of every error raised by this package.
    ValidationError: A required field is missing or empty; raised before any I/O.
    InvalidVector: An embedding is empty, malformed or of the wrong dimension.
    SerializationError: Metadata could not be encoded for storage.
    EmbeddingGenerationError: The embedding provider failed or returned an unusable payload.
    TokenBudgetExceeded: A single provider request would exceed the token ceiling.
    StorageError: Connection, query or transaction failure reported by the storage engine.
    NotFound: A delete targeted an entry that does not exist.
    PartialBatchError: A split batch failed after earlier sub-batches were committed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from embedstore.services.records import BatchResult


class EmbeddingStoreError(Exception):
    pass


class ValidationError(EmbeddingStoreError, ValueError):
    pass


class InvalidVector(ValidationError):
    pass


class SerializationError(EmbeddingStoreError):
    pass


class EmbeddingGenerationError(EmbeddingStoreError):
    pass


class TokenBudgetExceeded(EmbeddingStoreError):
    def __init__(self, estimated_tokens: int, max_tokens: int) -> None:
        super().__init__(f"Total tokens ({estimated_tokens}) exceed maximum of {max_tokens}")
        self.estimated_tokens = estimated_tokens
        self.max_tokens = max_tokens


class StorageError(EmbeddingStoreError):
    pass


class NotFound(EmbeddingStoreError, LookupError):
    pass


class PartialBatchError(EmbeddingStoreError):
    """Raised when sub-batch ``batch_index`` failed after earlier sub-batches were stored.

    ``committed`` holds the entries that remain persisted so callers can reconcile;
    the underlying failure is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, committed: "BatchResult", batch_index: int, batch_count: int) -> None:
        super().__init__(message)
        self.committed = committed
        self.batch_index = batch_index
        self.batch_count = batch_count
