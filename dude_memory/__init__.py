"""
Dude Memory

Project-scoped semantic memory store for coding agents.

Provides:
- Short structured records (issues, specs, architecture notes, updates)
  with 384-dimension embeddings
- Nearest-neighbour search with same-project boost and relevance floor
- Upsert with near-duplicate detection
- Two backends (legacy sqlite-vec, native libSQL) behind one contract
- Automatic one-shot migration from the legacy store

Usage:

    >>> from dude_memory import RecordDraft, open_store
    >>> from dude_memory.embeddings.local import LocalEmbeddings
    >>> async with await open_store(embedding_provider=LocalEmbeddings()) as store:
    ...     await store.upsert_text(RecordDraft(kind="issue", title="Login fails on Safari"))
    ...     hits = await store.search_text("safari login bug")

Backend Selection:

    # Native libSQL store (default, created or migrated by open_store)
    from dude_memory.backends import LibsqlAdapter

    # Legacy sqlite-vec store
    from dude_memory.backends import SqliteVecAdapter

    # By name
    from dude_memory import create_adapter
    adapter = create_adapter("legacy", StoreConfig(data_dir=path))
"""

from .backends import (
    KINDS,
    STATUSES,
    LibsqlAdapter,
    Project,
    Record,
    RecordDraft,
    SqliteVecAdapter,
    StorageAdapter,
)
from .config import StoreConfig
from .embeddings import EmbeddingCache, EmbeddingProvider
from .exceptions import (
    MemoryStoreError,
    MigrationError,
    NotInitializedError,
    StorageConnectionError,
    ValidationError,
)
from .factory import BackendState, create_adapter, inspect_store, open_store
from .migration import MigrationStats, migrate_store

__version__ = "0.4.0"

__all__ = [
    # Data model
    "KINDS",
    "STATUSES",
    "Project",
    "Record",
    "RecordDraft",
    # Backends
    "StorageAdapter",
    "SqliteVecAdapter",
    "LibsqlAdapter",
    "StoreConfig",
    # Selection and migration
    "BackendState",
    "create_adapter",
    "inspect_store",
    "open_store",
    "MigrationStats",
    "migrate_store",
    # Embeddings
    "EmbeddingProvider",
    "EmbeddingCache",
    # Exceptions
    "MemoryStoreError",
    "ValidationError",
    "NotInitializedError",
    "StorageConnectionError",
    "MigrationError",
]
