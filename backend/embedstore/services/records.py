"""Value objects passed between the embedding service, repository and dialects.

Classes:
    EmbeddingItem: One input item for single or batch inserts.
    StoredEntry: Identifiers returned for a newly written entry.
    BatchResult: Aggregate of stored entries, in input order.
    EmbeddingEntry: A stored entry as read back, optionally annotated with a similarity score.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence


@dataclass(slots=True)
class EmbeddingItem:
    content: str
    content_type: str
    origin_id: str
    context_id: Optional[str] = None
    meta: Any = None
    embedding: Optional[Sequence[float]] = None

    @classmethod
    def coerce(cls, value: "EmbeddingItem | Mapping[str, Any]") -> "EmbeddingItem":
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise TypeError(f"Expected EmbeddingItem or mapping, got {type(value).__name__}")
        return cls(
            content=value.get("content"),
            content_type=value.get("content_type"),
            origin_id=value.get("origin_id"),
            context_id=value.get("context_id"),
            meta=value.get("meta"),
            embedding=value.get("embedding"),
        )


@dataclass(slots=True)
class StoredEntry:
    entry_id: str
    origin_id: str
    content_type: str
    context_id: Optional[str]


@dataclass(slots=True)
class BatchResult:
    count: int = 0
    items: list[StoredEntry] = field(default_factory=list)

    def extend(self, other: "BatchResult") -> None:
        self.items.extend(other.items)
        self.count += other.count


@dataclass(slots=True)
class EmbeddingEntry:
    entry_id: str
    origin_id: str
    content_type: str
    context_id: Optional[str]
    content: str
    meta: Any
    created_at: datetime | str | None = None
    updated_at: datetime | str | None = None
    similarity: Optional[float] = None
