"""
One-shot migration from the legacy sqlite-vec store to the native libSQL store.
"""

from .migrator import LegacyToNativeMigrator, migrate_store
from .types import MigrationStats

__all__ = [
    "LegacyToNativeMigrator",
    "MigrationStats",
    "migrate_store",
]
