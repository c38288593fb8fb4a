"""Persistence and similarity search over the embedding table.

Classes:
    EmbeddingRepository: Backend-agnostic CRUD and KNN search; owns batch transactions.

Every operation acquires its own storage handle from the injected provider and
releases it on every exit path. The backend is detected from that handle on each
call and the matching dialect strategy builds the SQL.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError

from embedstore.core.config import get_settings
from embedstore.core.errors import NotFound, SerializationError, StorageError, ValidationError
from embedstore.db.session import StorageHandle, StorageProvider
from embedstore.models import EMBEDDING_DIMENSIONS
from embedstore.services.dialects import EmbeddingDialect, SearchFilters, dialect_for
from embedstore.services.records import BatchResult, EmbeddingEntry, EmbeddingItem, StoredEntry
from embedstore.utils.vectors import encode_meta, encode_vector

_LOGGER = logging.getLogger(__name__)

_REQUIRED_FIELDS = (
    ("content", "Content is required"),
    ("content_type", "Content type is required"),
    ("origin_id", "Origin ID is required"),
)


def validate_item_fields(item: EmbeddingItem) -> None:
    for attr, message in _REQUIRED_FIELDS:
        if not getattr(item, attr):
            raise ValidationError(message)
    # SQLite stores a missing context as '', so '' itself is not a usable context
    if item.context_id == "":
        raise ValidationError("Context ID must be non-empty when given")


class EmbeddingRepository:
    def __init__(
        self,
        provider: StorageProvider,
        *,
        resource: Optional[str] = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
        default_limit: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider
        self._resource = resource or settings.embedding_resource
        self._dimensions = dimensions
        self._default_limit = default_limit or settings.default_search_limit

    def _dialect(self, handle: StorageHandle) -> EmbeddingDialect:
        dialect = dialect_for(handle.backend)
        _LOGGER.debug("Using %s dialect for resource %s", dialect.backend.value, self._resource)
        return dialect

    def _prepare(self, item: EmbeddingItem) -> tuple[str, Optional[str]]:
        validate_item_fields(item)
        embedding = encode_vector(item.embedding, self._dimensions)
        return embedding, encode_meta(item.meta)

    async def add(
        self,
        content: str,
        content_type: str,
        origin_id: str,
        context_id: Optional[str] = None,
        meta: Any = None,
        embedding: Optional[Sequence[float]] = None,
    ) -> StoredEntry:
        item = EmbeddingItem(
            content=content,
            content_type=content_type,
            origin_id=origin_id,
            context_id=context_id,
            meta=meta,
            embedding=embedding,
        )
        embedding_literal, meta_json = self._prepare(item)
        entry_id = str(uuid4())

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            sql, params = dialect.insert(entry_id, item, embedding_literal, meta_json)
            try:
                await handle.execute(sql, params)
                await handle.commit()
            except SQLAlchemyError as exc:
                raise StorageError(f"Failed to insert embedding: {exc}") from exc

        return StoredEntry(entry_id=entry_id, origin_id=origin_id, content_type=content_type, context_id=context_id)

    async def add_batch(self, batch: Iterable[EmbeddingItem | Mapping[str, Any]]) -> BatchResult:
        """Insert every item in one transaction; any failure leaves nothing persisted."""

        items = [EmbeddingItem.coerce(value) for value in batch or ()]
        if not items:
            raise ValidationError("Batch is empty")

        prepared: list[tuple[str, EmbeddingItem, str, Optional[str]]] = []
        for position, item in enumerate(items, start=1):
            try:
                embedding_literal, meta_json = self._prepare(item)
            except (ValidationError, SerializationError) as exc:
                raise type(exc)(f"Item {position}: {exc}") from exc
            prepared.append((str(uuid4()), item, embedding_literal, meta_json))

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            try:
                await handle.begin()
            except SQLAlchemyError as exc:
                raise StorageError(f"Failed to begin transaction: {exc}") from exc

            try:
                for position, (entry_id, item, embedding_literal, meta_json) in enumerate(prepared, start=1):
                    sql, params = dialect.insert(entry_id, item, embedding_literal, meta_json)
                    try:
                        await handle.execute(sql, params)
                    except SQLAlchemyError as exc:
                        raise StorageError(f"Item {position}: Failed to insert embedding: {exc}") from exc
                try:
                    await handle.commit()
                except SQLAlchemyError as exc:
                    raise StorageError(f"Failed to commit transaction: {exc}") from exc
            except StorageError:
                await self._rollback(handle, len(prepared))
                raise

        stored = [
            StoredEntry(
                entry_id=entry_id,
                origin_id=item.origin_id,
                content_type=item.content_type,
                context_id=item.context_id,
            )
            for entry_id, item, _, _ in prepared
        ]
        return BatchResult(count=len(stored), items=stored)

    async def _rollback(self, handle: StorageHandle, size: int) -> None:
        try:
            await handle.rollback()
        except SQLAlchemyError:
            _LOGGER.warning("Rollback failed for batch of %d embeddings", size, exc_info=True)
        else:
            _LOGGER.warning("Rolled back batch of %d embeddings", size)

    async def get_by_origin(self, origin_id: str) -> list[EmbeddingEntry]:
        if not origin_id:
            raise ValidationError("Origin ID is required")

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            sql, params = dialect.select_by_origin(origin_id)
            try:
                rows = await handle.query(sql, params)
            except SQLAlchemyError as exc:
                raise StorageError(f"Failed to get embeddings: {exc}") from exc

        return [dialect.shape_row(row) for row in rows]

    async def delete_by_entry(self, entry_id: str) -> dict[str, Any]:
        if not entry_id:
            raise ValidationError("Entry ID is required")
        try:
            UUID(str(entry_id))
        except ValueError:
            raise NotFound("Embedding not found") from None

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            sql, params = dialect.delete_by_entry(str(entry_id))
            try:
                affected = await handle.execute(sql, params)
                await handle.commit()
            except SQLAlchemyError as exc:
                raise StorageError(f"Failed to delete embedding: {exc}") from exc

        if not affected:
            raise NotFound("Embedding not found")
        return {"deleted": True}

    async def delete_by_origin(self, origin_id: str) -> dict[str, Any]:
        if not origin_id:
            raise ValidationError("Origin ID is required")

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            sql, params = dialect.delete_by_origin(origin_id)
            try:
                affected = await handle.execute(sql, params)
                await handle.commit()
            except SQLAlchemyError as exc:
                raise StorageError(f"Failed to delete embeddings: {exc}") from exc

        return {"deleted": True, "count": max(affected or 0, 0)}

    async def search_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        content_type: Optional[str] = None,
        origin_id: str | Sequence[str] | None = None,
        context_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[EmbeddingEntry]:
        embedding_literal = encode_vector(embedding, self._dimensions)
        if context_id == "":
            raise ValidationError("context_id filter must be non-empty")
        filters = SearchFilters(
            limit=self._resolve_limit(limit),
            content_type=content_type,
            origin_ids=_normalise_origin_ids(origin_id),
            context_id=context_id,
        )

        async with self._provider.acquire(self._resource) as handle:
            dialect = self._dialect(handle)
            sql, params = dialect.search(embedding_literal, filters)
            try:
                rows = await handle.query(sql, params)
            except SQLAlchemyError as exc:
                raise StorageError(f"Search failed: {exc}") from exc

        return [dialect.shape_row(row) for row in rows]

    def _resolve_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self._default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")
        return limit


def _normalise_origin_ids(origin_id: str | Sequence[str] | None) -> Optional[list[str]]:
    if origin_id is None:
        return None
    values = [origin_id] if isinstance(origin_id, str) else list(origin_id)
    if not values:
        raise ValidationError("origin_id filter must contain at least one value")
    if any(not value for value in values):
        raise ValidationError("origin_id filter values must be non-empty")
    return [str(value) for value in values]
