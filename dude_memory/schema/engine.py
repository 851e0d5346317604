"""
Versioned schema engine.

Each backend ships an ordered list of ``Migration`` steps and a
``SchemaTarget`` that knows how to run SQL against its connection. The
engine reads the highest applied version from ``schema_version`` and
applies every newer step in order. Each step runs as one transaction
together with its marker insert, so a crash between steps leaves the
store at a consistent version and a restart resumes from there.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

VERSION_TABLE_SQL = "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
CURRENT_VERSION_SQL = "SELECT COALESCE(MAX(version), 0) FROM schema_version"
RECORD_VERSION_SQL = "INSERT INTO schema_version (version) VALUES (?)"


@dataclass(frozen=True)
class Migration:
    """One versioned schema step."""

    version: int
    name: str
    statements: tuple[str, ...]


class SchemaTarget(ABC):
    """A database the engine can migrate."""

    @abstractmethod
    async def ensure_version_table(self) -> None:
        """Create the ``schema_version`` table if it does not exist."""

    @abstractmethod
    async def current_version(self) -> int:
        """Highest applied version, 0 for an empty store."""

    @abstractmethod
    async def apply(self, migration: Migration) -> None:
        """
        Run a step's statements and record its version atomically.

        Implementations must roll back every statement of the step if any
        of them fails.
        """


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Reject step lists that are not strictly increasing and positive."""
    previous = 0
    for migration in migrations:
        if migration.version <= previous:
            raise ValueError(
                f"Migration {migration.version} ({migration.name}) is out of order:"
                f" versions must be strictly increasing and start above 0"
            )
        previous = migration.version


async def run_migrations(target: SchemaTarget, migrations: Sequence[Migration]) -> list[int]:
    """
    Bring a database up to the newest step.

    Args:
        target: Backend-specific executor
        migrations: Ordered step list

    Returns:
        Versions applied by this call (empty when already current)
    """
    validate_migrations(migrations)

    await target.ensure_version_table()
    current = await target.current_version()

    applied: list[int] = []
    for migration in migrations:
        if migration.version <= current:
            continue
        logger.info(f"Applying schema migration {migration.version}: {migration.name}")
        await target.apply(migration)
        applied.append(migration.version)

    if not applied:
        logger.debug(f"Schema up to date at version {current}")
    return applied
