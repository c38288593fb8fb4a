"""Embedding storage and semantic search endpoints.

Endpoints:
    add_embedding(payload): Embed and store one piece of content.
    add_embedding_batch(payload): Embed and store many items, splitting under the token ceiling.
    get_embeddings_by_origin(origin_id): List every entry stored for an origin.
    delete_embedding(entry_id): Remove one entry.
    delete_embeddings_by_origin(origin_id): Remove every entry for an origin.
    search_embeddings(payload): Rank stored entries by similarity to a query.

Helpers:
    get_embedding_service(): Dependency returning the process-wide EmbeddingService.
    _to_http_error(exc): Translate domain exceptions into HTTP errors.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, status

from embedstore.core.errors import (
    EmbeddingGenerationError,
    EmbeddingStoreError,
    NotFound,
    PartialBatchError,
    StorageError,
    TokenBudgetExceeded,
    ValidationError,
)
from embedstore.schemas import (
    BatchResultResource,
    DeleteResultResource,
    EmbeddingBatchRequest,
    EmbeddingCreateRequest,
    EmbeddingEntryResource,
    EmbeddingSearchRequest,
    StoredEntryResource,
)
from embedstore.services import EmbeddingService

router = APIRouter(prefix="/embeddings", tags=["embeddings"])


@lru_cache()
def get_embedding_service() -> EmbeddingService:
    return EmbeddingService()


def _to_http_error(exc: EmbeddingStoreError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (ValidationError, TokenBudgetExceeded)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, EmbeddingGenerationError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    if isinstance(exc, PartialBatchError):
        committed = BatchResultResource.model_validate(exc.committed)
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": str(exc),
                "failed_batch": exc.batch_index + 1,
                "batch_count": exc.batch_count,
                "committed": committed.model_dump(),
            },
        )
    if isinstance(exc, StorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=StoredEntryResource, status_code=status.HTTP_201_CREATED)
async def add_embedding(
    payload: EmbeddingCreateRequest,
    service: EmbeddingService = Depends(get_embedding_service),
) -> StoredEntryResource:
    try:
        stored = await service.add(
            payload.content,
            payload.content_type,
            payload.origin_id,
            payload.context_id,
            payload.meta,
        )
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return StoredEntryResource.model_validate(stored)


@router.post("/batch", response_model=BatchResultResource, status_code=status.HTTP_201_CREATED)
async def add_embedding_batch(
    payload: EmbeddingBatchRequest,
    service: EmbeddingService = Depends(get_embedding_service),
) -> BatchResultResource:
    try:
        result = await service.add_batch([item.model_dump() for item in payload.items])
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return BatchResultResource.model_validate(result)


@router.get("/origin/{origin_id}", response_model=list[EmbeddingEntryResource])
async def get_embeddings_by_origin(
    origin_id: str,
    service: EmbeddingService = Depends(get_embedding_service),
) -> list[EmbeddingEntryResource]:
    try:
        entries = await service.get_by_origin(origin_id)
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return [EmbeddingEntryResource.model_validate(entry) for entry in entries]


@router.delete("/origin/{origin_id}", response_model=DeleteResultResource)
async def delete_embeddings_by_origin(
    origin_id: str,
    service: EmbeddingService = Depends(get_embedding_service),
) -> DeleteResultResource:
    try:
        result = await service.delete_by_origin(origin_id)
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return DeleteResultResource(**result)


@router.delete("/{entry_id}", response_model=DeleteResultResource)
async def delete_embedding(
    entry_id: str,
    service: EmbeddingService = Depends(get_embedding_service),
) -> DeleteResultResource:
    try:
        result = await service.delete_by_entry(entry_id)
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return DeleteResultResource(**result)


@router.post("/search", response_model=list[EmbeddingEntryResource])
async def search_embeddings(
    payload: EmbeddingSearchRequest,
    service: EmbeddingService = Depends(get_embedding_service),
) -> list[EmbeddingEntryResource]:
    try:
        entries = await service.search(
            payload.query,
            content_type=payload.content_type,
            origin_id=payload.origin_id,
            context_id=payload.context_id,
            limit=payload.limit,
        )
    except EmbeddingStoreError as exc:
        raise _to_http_error(exc) from exc
    return [EmbeddingEntryResource.model_validate(entry) for entry in entries]
