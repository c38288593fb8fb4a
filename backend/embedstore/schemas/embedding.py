"""Pydantic schemas for the embeddings API.

Classes:
    EmbeddingCreateRequest, EmbeddingBatchRequest: Payloads for single and batch inserts.
    EmbeddingSearchRequest: Query text plus optional filters.
    StoredEntryResource, BatchResultResource: Identifiers of newly stored entries.
    EmbeddingEntryResource: A stored entry as returned by lookups and searches.
    DeleteResultResource: Outcome of delete operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingCreateRequest(BaseModel):
    content: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    origin_id: str = Field(min_length=1)
    context_id: Optional[str] = None
    meta: Optional[Any] = None


class EmbeddingBatchRequest(BaseModel):
    items: list[EmbeddingCreateRequest] = Field(min_length=1)


class EmbeddingSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    content_type: Optional[str] = None
    origin_id: Optional[Union[str, list[str]]] = None
    context_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)


class StoredEntryResource(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    origin_id: str
    content_type: str
    context_id: Optional[str] = None


class BatchResultResource(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    count: int
    items: list[StoredEntryResource]


class EmbeddingEntryResource(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    origin_id: str
    content_type: str
    context_id: Optional[str] = None
    content: str
    meta: Any = None
    created_at: Optional[datetime | str] = None
    updated_at: Optional[datetime | str] = None
    similarity: Optional[float] = None


class DeleteResultResource(BaseModel):
    deleted: bool
    count: Optional[int] = None
