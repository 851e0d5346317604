"""Shared helpers for store files on disk.

SQLite keeps WAL, shared-memory and rollback-journal files next to the
database; a store is only moved or removed together with them.
"""

from __future__ import annotations

from pathlib import Path

SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


def store_files(path: Path) -> list[Path]:
    """The database file followed by its sidecars, whether or not they exist."""
    return [path] + [path.with_name(path.name + suffix) for suffix in SIDECAR_SUFFIXES]


def remove_store_files(path: Path) -> None:
    """Delete a database file and its sidecars, ignoring the ones that are missing."""
    for candidate in store_files(path):
        candidate.unlink(missing_ok=True)
