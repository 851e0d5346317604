"""
Shared test configuration and fixtures.

Embeddings are deterministic: every test vector comes from a seeded
numpy generator, and vectors with a chosen cosine similarity to another
vector are built exactly, so dedup and ranking thresholds can be tested
on both sides of their boundary.

Backend fixtures skip when the vector extension for that backend is not
installed:
- legacy: sqlite-vec plus a Python sqlite3 that can load extensions
- native: the libsql driver
"""

import hashlib
import logging
import sqlite3
from pathlib import Path

import numpy as np
import pytest

from dude_memory.backends.legacy import SqliteVecAdapter
from dude_memory.backends.native import LibsqlAdapter
from dude_memory.config import VECTOR_DIMENSIONS, StoreConfig
from dude_memory.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)

PROJECT = "acme/widgets"


def seeded_embedding(seed: int, dimensions: int = VECTOR_DIMENSIONS) -> list[float]:
    """Deterministic unit vector; different seeds are nearly orthogonal."""
    vec = np.random.default_rng(seed).standard_normal(dimensions)
    return (vec / np.linalg.norm(vec)).astype(np.float32).tolist()


def with_similarity(base: list[float], similarity: float, seed: int) -> list[float]:
    """Unit vector whose cosine similarity to ``base`` is exactly ``similarity``."""
    a = np.asarray(base, dtype=np.float64)
    b = np.asarray(seeded_embedding(seed, len(base)), dtype=np.float64)
    b = b - np.dot(a, b) * a
    b = b / np.linalg.norm(b)
    vec = similarity * a + np.sqrt(1.0 - similarity**2) * b
    return (vec / np.linalg.norm(vec)).astype(np.float32).tolist()


def cosine(a: list[float], b: list[float]) -> float:
    return float(np.dot(np.asarray(a), np.asarray(b)))


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Mock embedding provider for testing without models or API costs.

    Generates a deterministic vector per text from its SHA-256.
    """

    def __init__(self, dimensions: int = VECTOR_DIMENSIONS):
        self._dimensions = dimensions
        self.calls: list[str] = []

    @property
    def model_name(self) -> str:
        return "mock-embeddings"

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        seed = int.from_bytes(hashlib.sha256(text.encode()).digest()[:4], "big")
        return seeded_embedding(seed, self._dimensions)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(text) for text in texts]

    async def close(self) -> None:
        pass


def require_legacy_backend() -> None:
    """Skip unless sqlite-vec can be loaded into this interpreter's sqlite3."""
    sqlite_vec = pytest.importorskip("sqlite_vec")
    if not hasattr(sqlite3.Connection, "enable_load_extension"):
        pytest.skip("sqlite3 built without extension loading")
    conn = sqlite3.connect(":memory:")
    try:
        conn.enable_load_extension(True)
        conn.load_extension(sqlite_vec.loadable_path())
    except sqlite3.OperationalError as e:
        pytest.skip(f"sqlite-vec cannot be loaded: {e}")
    finally:
        conn.close()


def require_native_backend() -> None:
    pytest.importorskip("libsql")


def make_config(data_dir: Path, project: str = PROJECT, **overrides) -> StoreConfig:
    return StoreConfig(data_dir=data_dir, project_name=project, cwd=data_dir, **overrides)


async def open_adapter(backend: str, config: StoreConfig, provider=None):
    if backend == "legacy":
        require_legacy_backend()
        return await SqliteVecAdapter.create(config, provider)
    require_native_backend()
    return await LibsqlAdapter.create(config, provider)


async def execute_sql(store, sql: str, params: tuple = ()) -> None:
    """Run a raw write against either backend's connection."""
    if isinstance(store, SqliteVecAdapter):
        await store.conn.execute(sql, params)
    else:
        await store.db.run(lambda: store.db.conn.execute(sql, params))


@pytest.fixture
async def embedding_provider():
    """Fixture providing the deterministic mock embedding provider."""
    provider = MockEmbeddingProvider()
    yield provider
    await provider.close()


@pytest.fixture(params=["legacy", "native"])
def backend(request) -> str:
    return request.param


@pytest.fixture
def store_config(tmp_path) -> StoreConfig:
    return make_config(tmp_path)


@pytest.fixture
async def store(backend, store_config, embedding_provider):
    """Initialized adapter for each backend, sharing one contract test suite."""
    adapter = await open_adapter(backend, store_config, embedding_provider)
    yield adapter
    await adapter.close()


@pytest.fixture
async def legacy_store(tmp_path, embedding_provider):
    require_legacy_backend()
    adapter = await SqliteVecAdapter.create(make_config(tmp_path), embedding_provider)
    yield adapter
    await adapter.close()


@pytest.fixture
async def native_store(tmp_path, embedding_provider):
    require_native_backend()
    adapter = await LibsqlAdapter.create(make_config(tmp_path), embedding_provider)
    yield adapter
    await adapter.close()
