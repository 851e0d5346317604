"""
Abstract base class for embedding providers.

The store never embeds text itself; adapters call a provider from
``search_text`` / ``upsert_text``. Providers must return unit-length
vectors with the store's dimensionality:
- OpenAI (``text-embedding-3-small`` shortened to 384 dimensions)
- Local sentence-transformers (``all-MiniLM-L6-v2``)
- Test doubles
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import numpy as np


def normalize(vector: Sequence[float]) -> list[float]:
    """Scale a vector to unit length; the zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return arr.tolist()
    return (arr / norm).tolist()


class EmbeddingProvider(ABC):
    """Abstract base for embedding generation."""

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Number of components in every returned vector."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Name of the embedding model, used in cache keys."""
        pass

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """
        Embed a single text.

        Args:
            text: Query or record text

        Returns:
            Unit-length vector with ``dimensions`` components
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts; results are in input order."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release clients or models held by the provider."""
        pass

    async def __aenter__(self) -> EmbeddingProvider:
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        await self.close()
