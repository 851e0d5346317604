"""
Local embedding provider on sentence-transformers.

Runs ``all-MiniLM-L6-v2`` in process, the model every store was built
with, so no network access is needed. Install with the ``local`` extra.
Inference is CPU-bound and runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..config import VECTOR_DIMENSIONS
from .base import EmbeddingProvider
from .cache import EmbeddingCache

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class LocalEmbeddings(EmbeddingProvider):
    """Mean-pooled, normalized MiniLM embeddings computed locally."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        dimensions: int = VECTOR_DIMENSIONS,
        cache_size: int = 512,
        device: str | None = None,
    ):
        self.model = model
        self.device = device
        self._dimensions = dimensions
        self._model: Any = None  # SentenceTransformer, loaded on first use
        self._load_lock = asyncio.Lock()
        self._cache = EmbeddingCache(max_entries=cache_size) if cache_size > 0 else None

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model_name(self) -> str:
        return self.model

    async def _ensure_model(self) -> Any:
        async with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model {self.model}")
                self._model = await asyncio.to_thread(
                    SentenceTransformer, self.model, device=self.device
                )
        return self._model

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        model = await self._ensure_model()
        vectors = await asyncio.to_thread(
            model.encode, texts, normalize_embeddings=True, convert_to_numpy=True
        )
        if vectors.shape[1] != self._dimensions:
            raise ValueError(
                f"Model {self.model} produced {vectors.shape[1]} dimensions,"
                f" expected {self._dimensions}"
            )
        return vectors.astype("float32").tolist()

    async def embed_text(self, text: str) -> list[float]:
        if self._cache is not None:
            cached = self._cache.get(text, self.model)
            if cached is not None:
                return cached
        embedding = (await self._encode([text]))[0]
        if self._cache is not None:
            self._cache.put(text, self.model, embedding)
        return embedding

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._encode(texts)

    async def close(self) -> None:
        self._model = None
