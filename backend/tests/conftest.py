import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import numpy as np
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from embedstore.api.routes.embeddings import get_embedding_service
from embedstore.db.session import Backend, StorageProvider, create_storage_engine, init_db
from embedstore.main import app
from embedstore.models import EMBEDDING_DIMENSIONS, EMBEDDING_TABLE
from embedstore.services import EmbeddingService
from embedstore.services.repository import EmbeddingRepository

POSTGRES_URL_ENV = "EMBEDSTORE_TEST_POSTGRES_URL"


def axis_vector(axis: int, *, tilt: float = 0.0, tilt_axis: int | None = None) -> list[float]:
    """Unit-ish vector along *axis*, optionally tilted toward *tilt_axis*."""

    vec = np.zeros(EMBEDDING_DIMENSIONS, dtype=float)
    vec[axis] = 1.0
    if tilt_axis is not None:
        vec[tilt_axis] = tilt
    return vec.tolist()


class FakeEmbeddingProvider:
    """Deterministic provider: component 0 is the text length, component 1 is always 1."""

    def __init__(self, *, fail_on_call: int | None = None, drop_last: bool = False) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_on_call = fail_on_call
        self.drop_last = drop_last

    @staticmethod
    def vector_for(text: str) -> list[float]:
        vec = [0.0] * EMBEDDING_DIMENSIONS
        vec[0] = float(len(text))
        vec[1] = 1.0
        return vec

    async def embed(self, texts, *, model: str, dimensions: int):
        self.calls.append({"texts": texts, "model": model, "dimensions": dimensions})
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("upstream unavailable")
        if isinstance(texts, str):
            return self.vector_for(texts)
        vectors = [self.vector_for(text) for text in texts]
        if self.drop_last:
            vectors = vectors[:-1]
        return vectors


class RecordingHandle:
    def __init__(
        self,
        backend: Backend,
        *,
        rows: list[dict[str, Any]] | None = None,
        rowcount: int = 1,
        fail_on_execute: int | None = None,
        fail_on_query: bool = False,
    ) -> None:
        self.backend = backend
        self.rows = rows or []
        self.rowcount = rowcount
        self.fail_on_execute = fail_on_execute
        self.fail_on_query = fail_on_query
        self.events: list[str] = []
        self.statements: list[tuple[str, dict[str, Any]]] = []

    @property
    def inserts(self) -> list[dict[str, Any]]:
        return [params for sql, params in self.statements if sql.startswith("INSERT")]

    async def begin(self) -> None:
        self.events.append("begin")

    async def commit(self) -> None:
        self.events.append("commit")

    async def rollback(self) -> None:
        self.events.append("rollback")

    async def execute(self, sql: str, params=None) -> int:
        self.events.append("execute")
        self.statements.append((sql, dict(params or {})))
        if self.fail_on_execute is not None and self.events.count("execute") == self.fail_on_execute:
            raise OperationalError(sql, params, Exception("constraint failed"))
        return self.rowcount

    async def query(self, sql: str, params=None) -> list[dict[str, Any]]:
        self.events.append("query")
        self.statements.append((sql, dict(params or {})))
        if self.fail_on_query:
            raise OperationalError(sql, params, Exception("no such table"))
        return [dict(row) for row in self.rows]


class RecordingStorageProvider:
    def __init__(self, backend: Backend = Backend.SQLITE, **handle_options: Any) -> None:
        self.backend = backend
        self.handle_options = handle_options
        self.handles: list[RecordingHandle] = []
        self.resources: list[str] = []
        self.released = 0

    @property
    def last(self) -> RecordingHandle:
        return self.handles[-1]

    @asynccontextmanager
    async def acquire(self, resource: str):
        self.resources.append(resource)
        handle = RecordingHandle(self.backend, **self.handle_options)
        self.handles.append(handle)
        try:
            yield handle
        finally:
            self.released += 1


@pytest.fixture()
def axis():
    return axis_vector


@pytest.fixture()
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def make_provider():
    return FakeEmbeddingProvider


@pytest.fixture()
def recording_storage():
    def _make(backend: Backend = Backend.SQLITE, **handle_options: Any) -> RecordingStorageProvider:
        return RecordingStorageProvider(backend, **handle_options)

    return _make


async def _sqlite_engine(tmp_path):
    engine = create_storage_engine(f"sqlite+aiosqlite:///{tmp_path / 'embeddings.db'}")
    try:
        await init_db(engine)
    except Exception as exc:  # extension loading is platform dependent
        await engine.dispose()
        pytest.skip(f"sqlite-vec extension unavailable: {exc}")
    return engine


async def _postgres_engine():
    url = os.environ.get(POSTGRES_URL_ENV)
    if not url:
        pytest.skip(f"{POSTGRES_URL_ENV} not set")
    engine = create_storage_engine(url)
    await init_db(engine)
    async with engine.begin() as conn:
        await conn.exec_driver_sql(f"TRUNCATE {EMBEDDING_TABLE}")
    return engine


@pytest_asyncio.fixture(params=["sqlite", "postgres"])
async def repository(request, tmp_path) -> AsyncGenerator[EmbeddingRepository, None]:
    if request.param == "sqlite":
        engine = await _sqlite_engine(tmp_path)
    else:
        engine = await _postgres_engine()
    provider = StorageProvider({"embeddings": engine})
    try:
        yield EmbeddingRepository(provider, resource="embeddings")
    finally:
        await engine.dispose()


@pytest.fixture()
def storage(recording_storage) -> RecordingStorageProvider:
    return recording_storage(Backend.POSTGRES)


@pytest.fixture()
def service(storage, fake_provider) -> EmbeddingService:
    return EmbeddingService(EmbeddingRepository(storage, resource="embeddings"), fake_provider)


@pytest_asyncio.fixture()
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_embedding_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()
