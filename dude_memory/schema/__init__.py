"""
Schema engine and the versioned step lists of both backends.
"""

from .engine import Migration, SchemaTarget, run_migrations, validate_migrations
from .legacy import legacy_migrations
from .native import native_migrations

__all__ = [
    "Migration",
    "SchemaTarget",
    "legacy_migrations",
    "native_migrations",
    "run_migrations",
    "validate_migrations",
]
