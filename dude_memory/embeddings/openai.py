"""
OpenAI embedding provider.

Uses ``text-embedding-3-small`` shortened to the store's 384 dimensions
through the API's ``dimensions`` parameter. Returned vectors are
re-normalized, since shortened embeddings are not guaranteed to be unit
length.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from openai import AsyncOpenAI

from ..config import VECTOR_DIMENSIONS
from .base import EmbeddingProvider, normalize
from .cache import EmbeddingCache
from .resilience import CircuitBreaker, RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"


class OpenAIEmbeddings(EmbeddingProvider):
    """OpenAI embeddings with caching, retry and a circuit breaker."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        dimensions: int = VECTOR_DIMENSIONS,
        cache_size: int = 512,
        base_url: str | None = None,
        retry: RetryConfig | None = None,
    ):
        """
        Initialize the provider.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            dimensions: Requested vector size
            cache_size: Max cached embeddings (0 disables the cache)
            base_url: Optional OpenAI-compatible endpoint
            retry: Backoff settings for transient failures
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self._dimensions = dimensions
        self._client: AsyncOpenAI | None = None
        self._cache = EmbeddingCache(max_entries=cache_size) if cache_size > 0 else None
        self._retry = retry or RetryConfig()
        self._circuit = CircuitBreaker()

    @classmethod
    def from_env(cls) -> OpenAIEmbeddings:
        """
        Create provider from environment variables.

        Required env vars:
            OPENAI_API_KEY: OpenAI API key

        Optional env vars:
            DUDE_EMBEDDING_MODEL: Model name (default: text-embedding-3-small)
            OPENAI_BASE_URL: OpenAI-compatible endpoint
        """
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable required")

        return cls(
            api_key=api_key,
            model=os.environ.get("DUDE_EMBEDDING_MODEL", DEFAULT_MODEL),
            base_url=os.environ.get("OPENAI_BASE_URL"),
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self.model

    async def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def _request(self, texts: list[str]) -> list[list[float]]:
        client = await self._ensure_client()

        async def _call() -> Any:
            return await client.embeddings.create(
                input=texts,
                model=self.model,
                dimensions=self._dimensions,
            )

        response = await retry_with_backoff(_call, self._retry, self._circuit)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [normalize(item.embedding) for item in ordered]

    async def embed_text(self, text: str) -> list[float]:
        if self._cache is not None:
            cached = self._cache.get(text, self.model)
            if cached is not None:
                return cached

        embedding = (await self._request([text]))[0]

        if self._cache is not None:
            self._cache.put(text, self.model, embedding)
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts, requesting only the ones missing from the cache."""
        if not texts:
            return []

        results: list[list[float] | None] = [None] * len(texts)
        pending: list[int] = []
        for i, text in enumerate(texts):
            cached = self._cache.get(text, self.model) if self._cache is not None else None
            if cached is None:
                pending.append(i)
            else:
                results[i] = cached

        if pending:
            fresh = await self._request([texts[i] for i in pending])
            for i, embedding in zip(pending, fresh, strict=True):
                results[i] = embedding
                if self._cache is not None:
                    self._cache.put(texts[i], self.model, embedding)
            logger.debug(f"Embedded {len(pending)} texts, {len(texts) - len(pending)} cached")

        return [r for r in results if r is not None]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def get_cache_stats(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache.stats()
        return {"cache_enabled": False}
