"""
Backend selection and automatic legacy -> native migration.

On startup the store is in one of three states:

    FRESH            no store on disk      -> create a native store
    MIGRATED         native store exists   -> open it
    NEEDS_MIGRATION  only a legacy store   -> migrate, back up legacy, open native

The state is decided once, before anything is opened. A failed migration
removes the partial native file and leaves the legacy file in place, so
the next start sees NEEDS_MIGRATION again.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .backends.base import StorageAdapter
from .backends.legacy import SqliteVecAdapter
from .backends.native import LibsqlAdapter
from .config import StoreConfig
from .embeddings import EmbeddingProvider
from .migration import migrate_store
from .utils import store_files

logger = logging.getLogger(__name__)

_BACKENDS: dict[str, type[StorageAdapter]] = {
    "legacy": SqliteVecAdapter,
    "native": LibsqlAdapter,
}


class BackendState(Enum):
    FRESH = "fresh"
    MIGRATED = "migrated"
    NEEDS_MIGRATION = "needs_migration"


def create_adapter(
    backend: str,
    config: StoreConfig | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> StorageAdapter:
    """
    Construct (but do not initialize) an adapter by backend name.

    Args:
        backend: "legacy" or "native"
        config: Store configuration (env-derived when None)
        embedding_provider: Provider for the text helpers
    """
    try:
        adapter_cls = _BACKENDS[backend]
    except KeyError:
        raise ValueError(
            f"Unknown backend '{backend}', expected one of {', '.join(sorted(_BACKENDS))}"
        ) from None
    return adapter_cls(config or StoreConfig.from_env(), embedding_provider)


def inspect_store(config: StoreConfig) -> BackendState:
    """Decide the startup state from the files on disk."""
    native_path = config.native_path
    if native_path is None:
        # remote primary, nothing local to migrate into
        return BackendState.MIGRATED
    if native_path.exists():
        return BackendState.MIGRATED
    if config.legacy_path.exists():
        return BackendState.NEEDS_MIGRATION
    return BackendState.FRESH


def backup_path_for(legacy_path: Path) -> Path:
    """``<name>.backup``, or a timestamped name when that already exists."""
    backup = legacy_path.with_name(legacy_path.name + ".backup")
    if backup.exists():
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
        backup = legacy_path.with_name(f"{legacy_path.name}.{stamp}.backup")
    return backup


def backup_legacy_store(legacy_path: Path) -> Path:
    """Move the legacy file and its WAL sidecars out of the way."""
    backup = backup_path_for(legacy_path)
    for source, target in zip(store_files(legacy_path), store_files(backup), strict=True):
        if source.exists():
            source.rename(target)
    logger.info(f"Legacy store moved to {backup}")
    return backup


async def open_store(
    config: StoreConfig | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> LibsqlAdapter:
    """
    Open the native store, migrating a legacy store first when needed.

    Returns:
        Initialized native adapter

    Raises:
        MigrationError: Migration failed; the legacy store is untouched
    """
    config = config or StoreConfig.from_settings()
    state = inspect_store(config)
    logger.info(f"Store state: {state.value}")

    native_path = config.native_path
    if state is BackendState.NEEDS_MIGRATION and native_path is not None:
        legacy_path = config.legacy_path
        # raises MigrationError after removing the partial native store
        stats = await migrate_store(legacy_path, native_path, config.vector_dimensions)
        logger.info(f"Migrated legacy store: {stats.to_dict()}")
        backup_legacy_store(legacy_path)

    adapter = LibsqlAdapter(config, embedding_provider)
    await adapter.initialize()
    return adapter
