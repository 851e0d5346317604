"""
Storage backends for the memory store.

Provides:
- StorageAdapter: abstract contract shared by both engines
- SqliteVecAdapter: legacy SQLite + sqlite-vec store
- LibsqlAdapter: native libSQL store with vector columns
"""

from .base import KINDS, STATUSES, Project, Record, RecordDraft, StorageAdapter
from .legacy import SqliteVecAdapter
from .native import LibsqlAdapter, NativeDatabase

__all__ = [
    "KINDS",
    "STATUSES",
    "LibsqlAdapter",
    "NativeDatabase",
    "Project",
    "Record",
    "RecordDraft",
    "SqliteVecAdapter",
    "StorageAdapter",
]
