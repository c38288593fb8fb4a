"""Storage engines, per-operation handles and schema bootstrap.

Classes:
    Backend: The two supported storage engines.
    StorageHandle: One acquired connection with transaction and statement primitives.
    StorageProvider: Resolves a named resource to an engine and hands out scoped handles.

Functions:
    create_storage_engine(database_url): Build an AsyncEngine; SQLite connections load sqlite-vec.
    get_storage_provider(): Cached provider for the configured embedding resource.
    init_db(engine): Create the embedding table for whichever backend the engine targets.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any

import aiosqlite
import sqlite_vec
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlmodel import SQLModel

from embedstore.core.config import get_settings
from embedstore.core.errors import StorageError
from embedstore.models import EMBEDDING_DIMENSIONS, EMBEDDING_TABLE, EmbeddingRecord

_LOGGER = logging.getLogger(__name__)


class Backend(str, enum.Enum):
    POSTGRES = "postgresql"
    SQLITE = "sqlite"


def backend_for(dialect_name: str) -> Backend:
    try:
        return Backend(dialect_name)
    except ValueError:
        raise StorageError(f"Unsupported database backend: {dialect_name}") from None


class StorageHandle:
    """A single connection scoped to one logical repository operation."""

    def __init__(self, connection: AsyncConnection) -> None:
        self._conn = connection

    @property
    def backend(self) -> Backend:
        return backend_for(self._conn.dialect.name)

    async def begin(self) -> None:
        await self._conn.begin()

    async def commit(self) -> None:
        await self._conn.commit()

    async def rollback(self) -> None:
        await self._conn.rollback()

    async def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        result = await self._conn.execute(text(sql), dict(params or {}))
        return result.rowcount

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        result = await self._conn.execute(text(sql), dict(params or {}))
        return [dict(row) for row in result.mappings().all()]


class StorageProvider:
    def __init__(self, engines: Mapping[str, AsyncEngine]) -> None:
        self._engines = dict(engines)

    def engine(self, resource: str) -> AsyncEngine:
        engine = self._engines.get(resource)
        if engine is None:
            raise StorageError(f"Unknown storage resource: {resource}")
        return engine

    @asynccontextmanager
    async def acquire(self, resource: str) -> AsyncIterator[StorageHandle]:
        engine = self.engine(resource)
        try:
            connection = await engine.connect()
        except (SQLAlchemyError, OSError, sqlite3.Error) as exc:
            raise StorageError(f"Failed to connect to database: {exc}") from exc
        try:
            yield StorageHandle(connection)
        finally:
            await connection.close()


def create_storage_engine(database_url: str) -> AsyncEngine:
    url = make_url(database_url)
    if url.get_backend_name() != Backend.SQLITE.value:
        return create_async_engine(url, future=True)

    database = url.database or ":memory:"
    if database != ":memory:":
        db_path = Path(database).resolve()
        if db_path.parent.name:
            db_path.parent.mkdir(parents=True, exist_ok=True)

    async def _connect() -> aiosqlite.Connection:
        conn = await aiosqlite.connect(database)
        await conn.enable_load_extension(True)
        await conn.load_extension(sqlite_vec.loadable_path())
        await conn.enable_load_extension(False)
        return conn

    return create_async_engine(url, future=True, async_creator=_connect)


@lru_cache()
def get_storage_provider() -> StorageProvider:
    settings = get_settings()
    engine = create_storage_engine(settings.database_url)
    return StorageProvider({settings.embedding_resource: engine})


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        backend = backend_for(conn.dialect.name)
        _LOGGER.debug("Initialising %s schema on %s", EMBEDDING_TABLE, backend.value)
        if backend is Backend.POSTGRES:
            await conn.exec_driver_sql("CREATE EXTENSION IF NOT EXISTS vector")
            await conn.run_sync(SQLModel.metadata.create_all, tables=[EmbeddingRecord.__table__])
        else:
            await _ensure_sqlite_schema(conn)


async def _ensure_sqlite_schema(conn) -> None:
    """Create the vec0 virtual table; vec0 maintains its own ANN and metadata indexes."""

    await conn.exec_driver_sql(
        f"""
        CREATE VIRTUAL TABLE IF NOT EXISTS {EMBEDDING_TABLE} USING vec0(
            entry_id TEXT PRIMARY KEY,
            origin_id TEXT PARTITION KEY,
            content_type TEXT,
            context_id TEXT,
            origin_id_aux TEXT,
            +content TEXT,
            +meta TEXT,
            +created_at TEXT,
            +updated_at TEXT,
            embedding float[{EMBEDDING_DIMENSIONS}] distance_metric=cosine
        )
        """
    )
