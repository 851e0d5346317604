"""
LRU cache of embeddings keyed by model and text.

Hooks embed the same prompt fragments and record titles repeatedly within
one process, so providers keep recent vectors here.
"""

from __future__ import annotations

import hashlib
from collections import OrderedDict
from typing import Any


class EmbeddingCache:
    """Least-recently-used map from (model, text) to vector."""

    def __init__(self, max_entries: int = 512):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")

        self.max_entries = max_entries
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(text: str, model_name: str) -> str:
        """SHA-256 over model and text, so arbitrary text sizes share one key size."""
        return hashlib.sha256(f"{model_name}\x00{text}".encode()).hexdigest()

    def get(self, text: str, model_name: str) -> list[float] | None:
        key = self.key(text, model_name)
        vector = self._entries.get(key)
        if vector is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return vector

    def put(self, text: str, model_name: str, vector: list[float]) -> None:
        key = self.key(text, model_name)
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }
