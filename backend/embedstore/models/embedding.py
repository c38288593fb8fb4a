"""Embedding table model.

Classes:
    EmbeddingRecord: Postgres layout of the embedding table (pgvector column, filter indexes, ivfflat ANN index).

The SQLite layout is a sqlite-vec ``vec0`` virtual table created from raw DDL in
``embedstore.db.session`` because virtual tables cannot be expressed as ORM models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Index, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

EMBEDDING_DIMENSIONS = 512
EMBEDDING_TABLE = f"embeddings_{EMBEDDING_DIMENSIONS}"


class EmbeddingRecord(SQLModel, table=True):
    __tablename__ = EMBEDDING_TABLE
    __table_args__ = (
        Index(
            f"ix_{EMBEDDING_TABLE}_embedding_cosine",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    entry_id: UUID = Field(default_factory=uuid4, primary_key=True)
    origin_id: str = Field(sa_column=Column(Text, nullable=False, index=True))
    content_type: str = Field(sa_column=Column(Text, nullable=False, index=True))
    context_id: Optional[str] = Field(default=None, sa_column=Column(Text, index=True))
    embedding: list[float] = Field(sa_column=Column(Vector(EMBEDDING_DIMENSIONS), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    meta: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSONB))
    created_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=False, server_default=func.now()),
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime, nullable=False, server_default=func.now()),
    )
