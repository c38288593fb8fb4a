"""Backend-specific SQL for the embedding table.

The repository never branches on the backend itself; it asks ``dialect_for`` for a
strategy and lets that strategy build every statement and shape every row.

Classes:
    SearchFilters: Normalised similarity-search options.
    EmbeddingDialect: Strategy interface shared by both backends.
    PostgresDialect: pgvector table, ``<=>`` cosine distance, btree filters.
    SqliteVecDialect: sqlite-vec ``vec0`` virtual table with ``MATCH``/``k`` KNN queries.

Functions:
    dialect_for(backend): Return the strategy for a detected backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from embedstore.db.session import Backend
from embedstore.models import EMBEDDING_TABLE
from embedstore.services.records import EmbeddingEntry, EmbeddingItem
from embedstore.utils.vectors import decode_meta

Statement = tuple[str, dict[str, Any]]


@dataclass(slots=True)
class SearchFilters:
    limit: int
    content_type: Optional[str] = None
    origin_ids: Optional[list[str]] = None
    context_id: Optional[str] = None


def _membership(column: str, values: list[str], params: dict[str, Any], prefix: str) -> str:
    placeholders = []
    for index, value in enumerate(values):
        name = f"{prefix}_{index}"
        params[name] = value
        placeholders.append(f":{name}")
    return f"{column} IN ({', '.join(placeholders)})"


class EmbeddingDialect(ABC):
    backend: Backend
    origin_column: str
    table: str = EMBEDDING_TABLE

    select_columns = (
        "entry_id, origin_id, content_type, context_id, content, meta, created_at, updated_at"
    )

    @abstractmethod
    def insert(self, entry_id: str, item: EmbeddingItem, embedding: str, meta: Optional[str]) -> Statement:
        """Return the INSERT for one entry; *embedding* and *meta* are already encoded."""

    @abstractmethod
    def search(self, embedding: str, filters: SearchFilters) -> Statement:
        """Return the KNN query; rows must carry a ``similarity`` column, best match first."""

    def select_by_origin(self, origin_id: str) -> Statement:
        sql = f"SELECT {self.select_columns} FROM {self.table} WHERE {self.origin_column} = :origin_id"
        return sql, {"origin_id": origin_id}

    def delete_by_origin(self, origin_id: str) -> Statement:
        return f"DELETE FROM {self.table} WHERE {self.origin_column} = :origin_id", {"origin_id": origin_id}

    def delete_by_entry(self, entry_id: str) -> Statement:
        return f"DELETE FROM {self.table} WHERE entry_id = :entry_id", {"entry_id": entry_id}

    def _filter_conditions(self, filters: SearchFilters, params: dict[str, Any]) -> list[str]:
        conditions: list[str] = []
        if filters.content_type is not None:
            conditions.append("content_type = :content_type")
            params["content_type"] = filters.content_type
        if filters.origin_ids is not None:
            conditions.append(_membership(self.origin_column, filters.origin_ids, params, "origin_id"))
        if filters.context_id is not None:
            conditions.append("context_id = :context_id")
            params["context_id"] = filters.context_id
        return conditions

    def shape_row(self, row: dict[str, Any]) -> EmbeddingEntry:
        similarity = row.get("similarity")
        return EmbeddingEntry(
            entry_id=str(row["entry_id"]),
            origin_id=row["origin_id"],
            content_type=row["content_type"],
            context_id=row.get("context_id"),
            content=row["content"],
            meta=decode_meta(row.get("meta")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            similarity=float(similarity) if similarity is not None else None,
        )


class PostgresDialect(EmbeddingDialect):
    backend = Backend.POSTGRES
    origin_column = "origin_id"

    select_columns = (
        "CAST(entry_id AS text) AS entry_id, origin_id, content_type, context_id, content, "
        "CAST(meta AS text) AS meta, created_at, updated_at"
    )

    def insert(self, entry_id: str, item: EmbeddingItem, embedding: str, meta: Optional[str]) -> Statement:
        sql = (
            f"INSERT INTO {self.table} "
            "(entry_id, origin_id, content_type, context_id, embedding, content, meta) "
            "VALUES (CAST(:entry_id AS uuid), :origin_id, :content_type, :context_id, "
            "CAST(:embedding AS vector), :content, CAST(:meta AS jsonb))"
        )
        params = {
            "entry_id": entry_id,
            "origin_id": item.origin_id,
            "content_type": item.content_type,
            "context_id": item.context_id,
            "embedding": embedding,
            "content": item.content,
            "meta": meta,
        }
        return sql, params

    def delete_by_entry(self, entry_id: str) -> Statement:
        return f"DELETE FROM {self.table} WHERE entry_id = CAST(:entry_id AS uuid)", {"entry_id": entry_id}

    def search(self, embedding: str, filters: SearchFilters) -> Statement:
        params: dict[str, Any] = {"query": embedding, "limit": filters.limit}
        conditions = self._filter_conditions(filters, params)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = (
            f"SELECT {self.select_columns}, "
            "1 - (embedding <=> CAST(:query AS vector)) AS similarity "
            f"FROM {self.table}{where} "
            "ORDER BY embedding <=> CAST(:query AS vector) "
            "LIMIT :limit"
        )
        return sql, params


class SqliteVecDialect(EmbeddingDialect):
    """vec0 layout. A missing ``context_id`` is stored as ``''`` and read back as ``None``."""

    backend = Backend.SQLITE
    # vec0 cannot filter on its partition key in a plain WHERE, so origin_id is
    # mirrored into a metadata column.
    origin_column = "origin_id_aux"

    def insert(self, entry_id: str, item: EmbeddingItem, embedding: str, meta: Optional[str]) -> Statement:
        sql = (
            f"INSERT INTO {self.table} "
            "(entry_id, origin_id, content_type, context_id, origin_id_aux, content, meta, embedding, "
            "created_at, updated_at) "
            "VALUES (:entry_id, :origin_id, :content_type, :context_id, :origin_id_aux, :content, :meta, "
            ":embedding, datetime('now'), datetime('now'))"
        )
        params = {
            "entry_id": entry_id,
            "origin_id": item.origin_id,
            "content_type": item.content_type,
            # vec0 metadata columns reject NULL
            "context_id": item.context_id if item.context_id is not None else "",
            "origin_id_aux": item.origin_id,
            "content": item.content,
            "meta": meta,
            "embedding": embedding,
        }
        return sql, params

    def search(self, embedding: str, filters: SearchFilters) -> Statement:
        params: dict[str, Any] = {"query": embedding, "k": filters.limit}
        conditions = ["embedding MATCH :query", "k = :k"]
        conditions.extend(self._filter_conditions(filters, params))
        sql = (
            f"SELECT {self.select_columns}, 1 - distance AS similarity "
            f"FROM {self.table} "
            f"WHERE {' AND '.join(conditions)} "
            "ORDER BY distance"
        )
        return sql, params

    def shape_row(self, row: dict[str, Any]) -> EmbeddingEntry:
        entry = super().shape_row(row)
        if entry.context_id == "":
            entry.context_id = None
        entry.created_at = _parse_timestamp(entry.created_at)
        entry.updated_at = _parse_timestamp(entry.updated_at)
        return entry


def _parse_timestamp(value: datetime | str | None) -> datetime | str | None:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


_DIALECTS: dict[Backend, EmbeddingDialect] = {
    Backend.POSTGRES: PostgresDialect(),
    Backend.SQLITE: SqliteVecDialect(),
}


def dialect_for(backend: Backend) -> EmbeddingDialect:
    return _DIALECTS[backend]
