"""Embedding generation, persistence and semantic search orchestration.

Classes:
    EmbeddingService: Validates input, calls the embedding provider, and delegates storage and search to the repository.

Large batches are split under the per-request token ceiling and processed one
sub-batch at a time. Each sub-batch is stored atomically, but sub-batches are not
atomic with respect to each other: a failure after the first committed sub-batch
raises ``PartialBatchError`` describing what was kept.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any, Optional, Sequence

from embedstore.core.config import get_settings
from embedstore.core.errors import (
    EmbeddingGenerationError,
    EmbeddingStoreError,
    PartialBatchError,
    TokenBudgetExceeded,
    ValidationError,
)
from embedstore.db.session import get_storage_provider
from embedstore.models import EMBEDDING_DIMENSIONS
from embedstore.services.openai_client import EmbeddingProvider, OpenAIEmbeddingProvider
from embedstore.services.records import BatchResult, EmbeddingEntry, EmbeddingItem, StoredEntry
from embedstore.services.repository import EmbeddingRepository, validate_item_fields
from embedstore.utils.tokenization import estimate_batch_tokens, split_by_token_budget

_LOGGER = logging.getLogger(__name__)


class EmbeddingService:
    def __init__(
        self,
        repository: Optional[EmbeddingRepository] = None,
        provider: Optional[EmbeddingProvider] = None,
        *,
        model: Optional[str] = None,
        dimensions: int = EMBEDDING_DIMENSIONS,
        max_tokens_per_request: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._repository = repository or EmbeddingRepository(get_storage_provider())
        self._provider = provider or OpenAIEmbeddingProvider()
        self._model = model or settings.openai_embedding_model
        self._dimensions = dimensions
        self._max_tokens = max_tokens_per_request or settings.max_tokens_per_request
        self._default_limit = settings.default_search_limit
        self._find_by_type_limit = settings.find_by_type_limit
        self._find_by_origin_limit = settings.find_by_origin_limit

    async def _generate_embedding(self, text: str) -> list[float]:
        if not text:
            raise EmbeddingGenerationError("Empty text cannot be embedded")
        try:
            vector = await self._provider.embed(text, model=self._model, dimensions=self._dimensions)
        except Exception as exc:
            raise EmbeddingGenerationError(f"Failed to generate embedding: {exc}") from exc
        if vector is None or len(vector) == 0:
            raise EmbeddingGenerationError("Failed to generate embedding: provider returned no vector")
        return list(vector)

    async def _generate_batch_embeddings(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            raise EmbeddingGenerationError("No texts provided for batch embedding")
        for index, text in enumerate(texts, start=1):
            if not text:
                raise EmbeddingGenerationError(f"Text at index {index} is empty and cannot be embedded")

        total_tokens = estimate_batch_tokens(texts)
        if total_tokens > self._max_tokens:
            raise TokenBudgetExceeded(total_tokens, self._max_tokens)

        try:
            vectors = await self._provider.embed(list(texts), model=self._model, dimensions=self._dimensions)
        except Exception as exc:
            raise EmbeddingGenerationError(f"Failed to generate batch embeddings: {exc}") from exc
        if vectors is None or len(vectors) != len(texts):
            received = 0 if vectors is None else len(vectors)
            raise EmbeddingGenerationError(
                f"Failed to generate batch embeddings: expected {len(texts)} vectors, got {received}"
            )
        return [list(vector) for vector in vectors]

    async def _embed_and_store(self, items: list[EmbeddingItem]) -> BatchResult:
        vectors = await self._generate_batch_embeddings([item.content for item in items])
        # vector i belongs to item i; the provider preserves input order
        prepared = [replace(item, embedding=vector) for item, vector in zip(items, vectors)]
        return await self._repository.add_batch(prepared)

    async def add(
        self,
        content: str,
        content_type: str,
        origin_id: str,
        context_id: Optional[str] = None,
        meta: Any = None,
    ) -> StoredEntry:
        validate_item_fields(EmbeddingItem(content=content, content_type=content_type, origin_id=origin_id))
        embedding = await self._generate_embedding(content)
        return await self._repository.add(content, content_type, origin_id, context_id, meta, embedding)

    async def add_batch(self, batch: Iterable[EmbeddingItem | Mapping[str, Any]]) -> BatchResult:
        items = [EmbeddingItem.coerce(value) for value in batch or ()]
        if not items:
            raise ValidationError("Batch is empty")
        for position, item in enumerate(items, start=1):
            try:
                validate_item_fields(item)
            except ValidationError as exc:
                raise ValidationError(f"Item {position}: {exc}") from exc

        estimated_tokens = estimate_batch_tokens(item.content for item in items)
        if estimated_tokens <= self._max_tokens:
            return await self._embed_and_store(items)

        batches = split_by_token_budget(items, self._max_tokens)
        _LOGGER.debug(
            "Splitting %d items (~%d tokens) into %d sub-batches under %d tokens",
            len(items),
            estimated_tokens,
            len(batches),
            self._max_tokens,
        )

        results = BatchResult()
        for index, sub_batch in enumerate(batches):
            try:
                stored = await self._embed_and_store(sub_batch)
            except EmbeddingStoreError as exc:
                if not results.count:
                    raise
                _LOGGER.warning(
                    "Sub-batch %d of %d failed; %d embeddings from earlier sub-batches remain stored",
                    index + 1,
                    len(batches),
                    results.count,
                )
                raise PartialBatchError(
                    f"Sub-batch {index + 1} of {len(batches)} failed after {results.count} entries were stored: {exc}",
                    committed=results,
                    batch_index=index,
                    batch_count=len(batches),
                ) from exc
            results.extend(stored)
        return results

    async def search(
        self,
        query_text: str,
        *,
        content_type: Optional[str] = None,
        origin_id: str | Sequence[str] | None = None,
        context_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[EmbeddingEntry]:
        if not query_text:
            raise ValidationError("Query text is required")
        embedding = await self._generate_embedding(query_text)
        return await self._repository.search_by_embedding(
            embedding,
            content_type=content_type,
            origin_id=origin_id,
            context_id=context_id,
            limit=limit if limit is not None else self._default_limit,
        )

    async def find_by_type(
        self,
        query: str,
        content_type: str,
        *,
        limit: Optional[int] = None,
    ) -> list[EmbeddingEntry]:
        if not query:
            raise ValidationError("Query is required")
        if not content_type:
            raise ValidationError("Content type is required")
        if limit is None:
            limit = self._find_by_type_limit
        return await self.search(query, content_type=content_type, limit=limit)

    async def find_by_origin(
        self,
        query: str,
        origin_id: str,
        *,
        content_type: Optional[str] = None,
        context_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[EmbeddingEntry]:
        if not query:
            raise ValidationError("Query is required")
        if not origin_id:
            raise ValidationError("Origin ID is required")
        return await self.search(
            query,
            origin_id=origin_id,
            content_type=content_type,
            context_id=context_id,
            limit=limit if limit is not None else self._find_by_origin_limit,
        )

    async def get_by_origin(self, origin_id: str) -> list[EmbeddingEntry]:
        return await self._repository.get_by_origin(origin_id)

    async def delete_by_entry(self, entry_id: str) -> dict[str, Any]:
        return await self._repository.delete_by_entry(entry_id)

    async def delete_by_origin(self, origin_id: str) -> dict[str, Any]:
        return await self._repository.delete_by_origin(origin_id)
