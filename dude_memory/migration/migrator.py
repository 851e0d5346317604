"""
Legacy -> native store migrator.

Copies every project and record from a sqlite-vec store into a libSQL
store, converting each vec0 embedding into an ``F32_BLOB`` column value.
Ids and timestamps are preserved verbatim, so records keep their
identity across the move. Records without an embedding (orphans) are
copied with a NULL embedding and stay listable but unsearchable.

The source is only read. All target writes happen in one transaction,
then the target is counted and compared with what was copied.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..backends.legacy import open_legacy_connection
from ..backends.native import NativeDatabase, NativeSchemaTarget
from ..config import VECTOR_DIMENSIONS
from ..exceptions import MigrationError
from ..logging_utils import get_storage_logger
from ..schema import native_migrations, run_migrations
from ..search.ranking import decode_f32, vector_json
from ..utils import remove_store_files
from .types import MigrationStats

logger = get_storage_logger("migration")


class LegacyToNativeMigrator:
    """Migrates one opened legacy store into one opened native store.

    Stages:
    1. Create the native schema
    2. Read projects, records and vec0 embeddings from the legacy store
    3. Insert everything into the native store in a single transaction
    4. Verify native counts against the copied counts
    """

    def __init__(
        self,
        legacy_conn: aiosqlite.Connection,
        native_db: NativeDatabase,
        dimensions: int = VECTOR_DIMENSIONS,
    ) -> None:
        """
        Args:
            legacy_conn: Legacy store with sqlite-vec loaded (read-only is enough)
            native_db: Opened, empty native store
            dimensions: Embedding width of both stores
        """
        self.legacy_conn = legacy_conn
        self.native_db = native_db
        self.dimensions = dimensions

    async def migrate(self) -> MigrationStats:
        stats = MigrationStats(started_at=datetime.now(UTC))

        await run_migrations(NativeSchemaTarget(self.native_db), native_migrations(self.dimensions))

        projects = await self._fetchall("SELECT id, name, created_at, updated_at FROM project")
        records = await self._fetchall(
            """
            SELECT id, project_id, kind, title, body, status, created_at, updated_at
            FROM record ORDER BY id
            """
        )
        embeddings = await self._load_embeddings()
        logger.info(
            f"Read {len(projects)} projects and {len(records)} records"
            f" ({len(embeddings)} embeddings) from legacy store"
        )

        rows: list[tuple[tuple[Any, ...], str | None]] = []
        for record in records:
            literal = embeddings.get(record[0])
            rows.append((tuple(record), literal))

        stats.projects = len(projects)
        stats.records = len(records)
        stats.embeddings = sum(1 for _, literal in rows if literal is not None)

        await self.native_db.run(self._write, projects, rows)
        logger.info("Copied legacy rows into native store")

        actual = await self.native_db.run(self._count)
        if actual != stats.counts:
            raise MigrationError(
                "legacy store",
                self.native_db.database,
                ValueError(f"verification failed: copied {stats.counts}, target holds {actual}"),
            )

        stats.completed_at = datetime.now(UTC)
        logger.info(f"Migration verified: {stats.counts}")
        return stats

    async def _fetchall(self, sql: str) -> list[Any]:
        async with self.legacy_conn.execute(sql) as cursor:
            return list(await cursor.fetchall())

    async def _load_embeddings(self) -> dict[int, str]:
        """vec0 rows by record id, as JSON vector literals."""
        literals: dict[int, str] = {}
        for record_id, blob in await self._fetchall(
            "SELECT record_id, embedding FROM record_embedding"
        ):
            vector = decode_f32(blob)
            if vector is None:
                continue
            if vector.size != self.dimensions:
                raise ValueError(
                    f"Record {record_id} has a {vector.size}-dimension embedding,"
                    f" expected {self.dimensions}"
                )
            literals[int(record_id)] = vector_json(vector)
        return literals

    def _write(
        self,
        projects: list[Any],
        rows: list[tuple[tuple[Any, ...], str | None]],
    ) -> None:
        with self.native_db.transaction() as conn:
            for project in projects:
                conn.execute(
                    "INSERT INTO project (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    tuple(project),
                )
            for record, literal in rows:
                if literal is None:
                    conn.execute(
                        """
                        INSERT INTO record (id, project_id, kind, title, body, status,
                            embedding, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
                        """,
                        record,
                    )
                else:
                    record_id, project_id, kind, title, body, status, created, updated = record
                    conn.execute(
                        """
                        INSERT INTO record (id, project_id, kind, title, body, status,
                            embedding, created_at, updated_at)
                        VALUES (?, ?, ?, ?, ?, ?, vector(?), ?, ?)
                        """,
                        (record_id, project_id, kind, title, body, status, literal, created,
                         updated),
                    )

    def _count(self) -> dict[str, int]:
        conn = self.native_db.conn

        def scalar(sql: str) -> int:
            return int(conn.execute(sql).fetchone()[0])

        return {
            "projects": scalar("SELECT COUNT(*) FROM project"),
            "records": scalar("SELECT COUNT(*) FROM record"),
            "embeddings": scalar("SELECT COUNT(*) FROM record WHERE embedding IS NOT NULL"),
        }


async def migrate_store(
    legacy_path: Path,
    native_path: Path,
    dimensions: int = VECTOR_DIMENSIONS,
) -> MigrationStats:
    """
    Migrate a legacy store file into a new native store file.

    The legacy file is opened read-only. Both stores are closed when this
    returns. When the native file did not exist beforehand, a failed
    migration removes it with its sidecars, so a retry starts clean.

    Raises:
        MigrationError: Any failure, with the original cause attached
    """
    created = not native_path.exists()
    legacy_conn: aiosqlite.Connection | None = None
    native_db = NativeDatabase(str(native_path))
    try:
        try:
            legacy_conn = await open_legacy_connection(legacy_path, read_only=True)
            native_path.parent.mkdir(parents=True, exist_ok=True)
            await native_db.open()
            return await LegacyToNativeMigrator(legacy_conn, native_db, dimensions).migrate()
        finally:
            if legacy_conn is not None:
                await legacy_conn.close()
            await native_db.close()
    except Exception as e:
        if created:
            remove_store_files(native_path)
            logger.info(f"Removed partial native store {native_path}")
        if isinstance(e, MigrationError):
            raise
        logger.error(f"Migration from {legacy_path} to {native_path} failed: {e}")
        raise MigrationError(str(legacy_path), str(native_path), e) from e
