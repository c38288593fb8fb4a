"""Embedding provider interface and the OpenAI-backed implementation.

Classes:
    EmbeddingProvider: Protocol for anything that turns text into fixed-length vectors.
    OpenAIEmbeddingProvider: Calls the OpenAI embeddings API with retry semantics.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from openai import AsyncOpenAI
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from embedstore.core.config import get_settings

_EMBED_BATCH_MAX = 2048

Vector = list[float]


class EmbeddingProvider(Protocol):
    async def embed(
        self,
        texts: str | Sequence[str],
        *,
        model: str,
        dimensions: int,
    ) -> Vector | list[Vector]:
        """Return one vector for a single text, or one vector per text in input order."""


class OpenAIEmbeddingProvider:
    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        settings = get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def embed(
        self,
        texts: str | Sequence[str],
        *,
        model: str,
        dimensions: int,
    ) -> Vector | list[Vector]:
        if self._client is None:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")

        single = isinstance(texts, str)
        docs = [texts] if single else list(texts)
        if not docs:
            return []

        vectors: list[Vector] = []
        for start in range(0, len(docs), _EMBED_BATCH_MAX):
            chunk = docs[start : start + _EMBED_BATCH_MAX]
            payload = dict(model=model, input=chunk, dimensions=dimensions)
            try:
                response = await _retry_embeddings(self._client, payload)
            except RetryError as exc:  # pragma: no cover - surfaces original error message
                raise exc.last_attempt.exception() from exc
            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(list(item.embedding) for item in ordered)

        return vectors[0] if single else vectors


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5))
async def _retry_embeddings(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.embeddings.create(**payload)
