"""
Legacy memory store backend on SQLite + sqlite-vec.

Embeddings live in a ``vec0`` virtual table (``record_embedding``) keyed by
record id. vec0 rows cannot be updated in place, so every embedding change
is a delete followed by an insert inside the record's write transaction.

This backend exists so installations created before the native libSQL
store keep working until the backend selector migrates them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import sqlite_vec
from numpy.typing import NDArray

from ..config import StoreConfig
from ..embeddings import EmbeddingProvider
from ..exceptions import StorageConnectionError
from ..identity import detect_project_name, legacy_project_name
from ..schema import Migration, SchemaTarget, legacy_migrations, run_migrations
from ..schema.engine import CURRENT_VERSION_SQL, RECORD_VERSION_SQL, VERSION_TABLE_SQL
from ..search.ranking import (
    DEDUP_CANDIDATES,
    candidate_count,
    encode_f32,
    pick_duplicate,
    rank_candidates,
    similarity_from_distance,
)
from .base import (
    ANY_PROJECT,
    CURRENT_PROJECT,
    RECENT_RECORDS_LIMIT,
    RECORD_COLUMNS,
    Project,
    Record,
    RecordDraft,
    StorageAdapter,
    now_iso,
    recency_cutoff,
)

_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA busy_timeout = 5000",
)


async def open_legacy_connection(
    db_path: str | Path,
    *,
    read_only: bool = False,
) -> aiosqlite.Connection:
    """
    Open a legacy store with the sqlite-vec extension loaded.

    Args:
        db_path: Database file (or ":memory:")
        read_only: Open with ``mode=ro`` so nothing can be written

    Returns:
        Connection in autocommit mode; callers issue BEGIN/COMMIT themselves
    """
    if read_only:
        conn = await aiosqlite.connect(
            f"file:{Path(db_path).resolve()}?mode=ro", uri=True, isolation_level=None
        )
    else:
        conn = await aiosqlite.connect(str(db_path), isolation_level=None)

    try:
        await conn.enable_load_extension(True)
        await conn.load_extension(sqlite_vec.loadable_path())
        await conn.enable_load_extension(False)
        for pragma in _PRAGMAS:
            if read_only and "journal_mode" in pragma:
                continue
            await conn.execute(pragma)
    except Exception:
        await conn.close()
        raise
    return conn


class LegacySchemaTarget(SchemaTarget):
    """Runs schema steps on an aiosqlite connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def ensure_version_table(self) -> None:
        await self.conn.execute(VERSION_TABLE_SQL)

    async def current_version(self) -> int:
        async with self.conn.execute(CURRENT_VERSION_SQL) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def apply(self, migration: Migration) -> None:
        await self.conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in migration.statements:
                await self.conn.execute(statement)
            await self.conn.execute(RECORD_VERSION_SQL, (migration.version,))
        except BaseException:
            await self.conn.execute("ROLLBACK")
            raise
        await self.conn.execute("COMMIT")


class SqliteVecAdapter(StorageAdapter):
    """
    Memory store on SQLite with a sqlite-vec side table.

    Features:
    - Single local file, WAL journal
    - Cosine KNN via ``embedding MATCH ? AND k = ?``
    - Native async I/O through aiosqlite
    """

    backend_name = "legacy"

    def __init__(
        self,
        config: StoreConfig,
        embedding_provider: EmbeddingProvider | None = None,
    ):
        super().__init__(config, embedding_provider)
        self.conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self.config.legacy_path

    async def initialize(self) -> None:
        """Open the database, apply schema steps and resolve the project."""
        if self._initialized:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = await open_legacy_connection(self.db_path)
            await run_migrations(
                LegacySchemaTarget(self.conn),
                legacy_migrations(self.config.vector_dimensions),
            )
        except Exception as e:
            if self.conn is not None:
                await self.conn.close()
                self.conn = None
            raise StorageConnectionError(str(self.db_path), e) from e

        name = self.config.project_name or await asyncio.to_thread(
            detect_project_name, self.config.working_dir
        )
        self._bind_project(name)
        self._project = await self._resolve_project(name)
        self._initialized = True
        self.log.info(f"Legacy store opened at {self.db_path} for project {name}")

    async def close(self) -> None:
        if self.conn is not None:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageConnectionError(str(self.db_path), RuntimeError("connection is closed"))
        return self.conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialized ``BEGIN IMMEDIATE`` transaction, rolled back on any error."""
        conn = self._require_conn()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        async with self._require_conn().execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    # =========================================================================
    # Projects
    # =========================================================================

    async def _resolve_project(self, name: str) -> Project:
        """Upsert the project and fold its pre-namespace row into it."""
        now = now_iso()
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO project (name, created_at, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (name, now, now),
            )
            async with conn.execute(
                "SELECT id, name, created_at, updated_at FROM project WHERE name = ?", (name,)
            ) as cursor:
                row = await cursor.fetchone()
            project = Project(*row)

            old_name = legacy_project_name(name)
            if old_name:
                async with conn.execute(
                    "SELECT id FROM project WHERE name = ? AND id != ?", (old_name, project.id)
                ) as cursor:
                    old = await cursor.fetchone()
                if old:
                    await conn.execute(
                        "UPDATE record SET project_id = ? WHERE project_id = ?",
                        (project.id, old[0]),
                    )
                    await conn.execute("DELETE FROM project WHERE id = ?", (old[0],))
                    self.log.info(f"Merged project {old_name} into {name}")

        return project

    async def list_projects(self) -> list[Project]:
        rows = await self._fetchall(
            "SELECT id, name, created_at, updated_at FROM project ORDER BY name"
        )
        return [Project(*row) for row in rows]

    # =========================================================================
    # Records
    # =========================================================================

    async def _get_record(self, conn: aiosqlite.Connection, record_id: int) -> Record | None:
        async with conn.execute(
            f"""
            SELECT {RECORD_COLUMNS}
            FROM record r JOIN project p ON r.project_id = p.id
            WHERE r.id = ?
            """,
            (int(record_id),),
        ) as cursor:
            row = await cursor.fetchone()
        return Record.from_row(row) if row else None

    async def get(self, record_id: int) -> Record | None:
        return await self._get_record(self._require_conn(), record_id)

    async def list_records(
        self,
        kind: str | None = None,
        status: str | None = None,
        project: str | None = None,
    ) -> list[Record]:
        current = self._current_project("list_records")
        kind, status = self._validate_filters(kind, status)

        clauses: list[str] = []
        params: list[Any] = []
        if project in (None, CURRENT_PROJECT):
            clauses.append("r.project_id = ?")
            params.append(current.id)
        elif project != ANY_PROJECT:
            clauses.append("p.name = ?")
            params.append(project)
        if kind:
            clauses.append("r.kind = ?")
            params.append(kind)
        if status:
            clauses.append("r.status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._fetchall(
            f"""
            SELECT {RECORD_COLUMNS}
            FROM record r JOIN project p ON r.project_id = p.id
            {where}
            ORDER BY r.updated_at DESC, r.id DESC
            """,
            params,
        )
        return [Record.from_row(row) for row in rows]

    async def get_recent_records(self, project_id: int, hours: float = 1) -> list[Record]:
        rows = await self._fetchall(
            f"""
            SELECT {RECORD_COLUMNS}
            FROM record r JOIN project p ON r.project_id = p.id
            WHERE r.project_id = ? AND r.updated_at > ?
            ORDER BY r.updated_at DESC
            LIMIT {RECENT_RECORDS_LIMIT}
            """,
            (int(project_id), recency_cutoff(hours)),
        )
        return [Record.from_row(row) for row in rows]

    async def delete(self, record_id: int) -> bool:
        async with self._transaction() as conn:
            await conn.execute(
                "DELETE FROM record_embedding WHERE record_id = ?", (int(record_id),)
            )
            cursor = await conn.execute("DELETE FROM record WHERE id = ?", (int(record_id),))
            return cursor.rowcount > 0

    # =========================================================================
    # Vector operations
    # =========================================================================

    async def search(
        self,
        embedding: Sequence[float] | NDArray,
        kind: str | None = None,
        limit: int = 5,
    ) -> list[Record]:
        current = self._current_project("search")
        query = self._validate_embedding(embedding)
        limit = self._validate_limit(limit)
        kind, _ = self._validate_filters(kind, None)

        sql = f"""
            SELECT {RECORD_COLUMNS}, re.distance
            FROM record_embedding re
            JOIN record r ON r.id = re.record_id
            JOIN project p ON r.project_id = p.id
            WHERE re.embedding MATCH ? AND k = ?
        """
        params: list[Any] = [encode_f32(query), candidate_count(limit)]
        if kind:
            sql += " AND r.kind = ?"
            params.append(kind)
        sql += " ORDER BY re.distance"

        rows = await self._fetchall(sql, params)
        candidates = [
            (Record.from_row(row), similarity_from_distance(row[-1])) for row in rows
        ]
        return rank_candidates(candidates, current.name, limit)

    async def upsert(
        self,
        draft: RecordDraft,
        embedding: Sequence[float] | NDArray,
    ) -> Record | None:
        current = self._current_project("upsert")
        draft.validate()
        blob = encode_f32(self._validate_embedding(embedding))
        project_id = draft.project_id if draft.project_id is not None else current.id
        now = now_iso()

        async with self._transaction() as conn:
            if draft.id is not None:
                cursor = await conn.execute(
                    """
                    UPDATE record SET kind = ?, title = ?, body = ?, status = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (draft.kind, draft.title, draft.body, draft.status, now, int(draft.id)),
                )
                if cursor.rowcount == 0:
                    self.log.debug(f"Record {draft.id} not found, nothing updated")
                    return None
                await self._replace_embedding(conn, int(draft.id), blob)
                return await self._get_record(conn, draft.id)

            async with conn.execute(
                """
                SELECT re.record_id, re.distance
                FROM record_embedding re
                JOIN record r ON r.id = re.record_id
                WHERE re.embedding MATCH ? AND k = ?
                  AND r.project_id = ? AND r.kind = ?
                ORDER BY re.distance
                """,
                (blob, candidate_count(DEDUP_CANDIDATES), project_id, draft.kind),
            ) as cursor:
                neighbours = await cursor.fetchall()

            duplicate_id = pick_duplicate(
                (row[0], similarity_from_distance(row[1])) for row in neighbours
            )
            if duplicate_id is not None:
                await conn.execute(
                    "UPDATE record SET title = ?, body = ?, status = ?, updated_at = ? WHERE id = ?",
                    (draft.title, draft.body, draft.status, now, duplicate_id),
                )
                await self._replace_embedding(conn, duplicate_id, blob)
                self.log.debug(f"Deduplicated write into record {duplicate_id}")
                return await self._get_record(conn, duplicate_id)

            cursor = await conn.execute(
                """
                INSERT INTO record (project_id, kind, title, body, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (project_id, draft.kind, draft.title, draft.body, draft.status, now, now),
            )
            new_id = int(cursor.lastrowid)
            await conn.execute(
                "INSERT INTO record_embedding (record_id, embedding) VALUES (?, ?)",
                (new_id, blob),
            )
            return await self._get_record(conn, new_id)

    @staticmethod
    async def _replace_embedding(conn: aiosqlite.Connection, record_id: int, blob: bytes) -> None:
        # vec0 has no UPDATE
        await conn.execute("DELETE FROM record_embedding WHERE record_id = ?", (record_id,))
        await conn.execute(
            "INSERT INTO record_embedding (record_id, embedding) VALUES (?, ?)",
            (record_id, blob),
        )
