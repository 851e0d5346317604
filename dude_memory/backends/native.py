"""
Native memory store backend on libSQL.

Embeddings are stored on the record row itself as ``F32_BLOB(384)`` and
indexed with ``libsql_vector_idx``; nearest neighbours come from
``vector_top_k``. The index only returns rowids, so similarity is
recomputed from the stored blob with numpy.

The libsql driver is synchronous and its connection is bound to the
thread that opened it. Every call therefore runs on one dedicated worker
thread owned by ``NativeDatabase``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, TypeVar

import libsql
from numpy.typing import NDArray

from ..config import StoreConfig
from ..embeddings import EmbeddingProvider
from ..exceptions import StorageConnectionError
from ..identity import detect_project_name, legacy_project_name
from ..schema import Migration, SchemaTarget, native_migrations, run_migrations
from ..schema.engine import CURRENT_VERSION_SQL, RECORD_VERSION_SQL, VERSION_TABLE_SQL
from ..search.ranking import (
    DEDUP_CANDIDATES,
    candidate_count,
    decode_f32,
    dot_similarity,
    pick_duplicate,
    rank_candidates,
    vector_json,
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

T = TypeVar("T")

VECTOR_INDEX = "idx_record_embedding"


def top_k_source(k: int) -> str:
    """``vector_top_k`` table expression; k must be an inlined integer literal."""
    if isinstance(k, bool) or not isinstance(k, int) or k < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}")
    return f"vector_top_k('{VECTOR_INDEX}', vector(?), {k})"


class NativeDatabase:
    """
    A libSQL connection pinned to a single worker thread.

    ``run`` executes a plain function on that thread; functions receive
    nothing and use ``self.conn`` directly, so a composite operation
    (several statements in one transaction) is one ``run`` call.
    """

    def __init__(
        self,
        database: str,
        *,
        sync_url: str | None = None,
        auth_token: str | None = None,
        sync_interval_ms: int | None = None,
    ):
        self.database = database
        self.sync_url = sync_url
        self.auth_token = auth_token
        self.sync_interval_ms = sync_interval_ms
        self.conn: Any = None  # libsql.Connection
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_config(cls, config: StoreConfig) -> NativeDatabase:
        path = config.native_path
        database = str(path) if path is not None else str(config.url)
        return cls(
            database,
            sync_url=config.sync_url,
            auth_token=config.auth_token,
            sync_interval_ms=config.sync_interval,
        )

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    async def open(self) -> None:
        if self.conn is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dude-libsql")

        def _connect() -> None:
            kwargs: dict[str, Any] = {"isolation_level": None}
            if self.sync_url:
                kwargs["sync_url"] = self.sync_url
                kwargs["auth_token"] = self.auth_token or ""
                if self.sync_interval_ms:
                    kwargs["sync_interval"] = self.sync_interval_ms / 1000.0
            self.conn = libsql.connect(self.database, **kwargs)
            self.conn.execute("PRAGMA foreign_keys = ON")
            if self.sync_url:
                self.conn.sync()

        try:
            await self.run(_connect)
        except BaseException:
            self.conn = None
            self._executor.shutdown(wait=False)
            self._executor = None
            raise

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn(*args)`` on the connection's thread."""
        if self._executor is None:
            raise StorageConnectionError(self.database, RuntimeError("connection is closed"))
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """Write transaction for use inside a function passed to ``run``."""
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    async def sync(self) -> None:
        """Pull from the remote primary; no-op for a local-only store."""
        if self.sync_url:
            await self.run(self.conn.sync)

    async def close(self) -> None:
        if self._executor is None:
            return
        if self.conn is not None:
            await self.run(self.conn.close)
            self.conn = None
        self._executor.shutdown(wait=True)
        self._executor = None


class NativeSchemaTarget(SchemaTarget):
    """Runs schema steps on a ``NativeDatabase``."""

    def __init__(self, db: NativeDatabase):
        self.db = db

    async def ensure_version_table(self) -> None:
        await self.db.run(lambda: self.db.conn.execute(VERSION_TABLE_SQL))

    async def current_version(self) -> int:
        def _current() -> int:
            row = self.db.conn.execute(CURRENT_VERSION_SQL).fetchone()
            return int(row[0]) if row else 0

        return await self.db.run(_current)

    async def apply(self, migration: Migration) -> None:
        def _apply() -> None:
            with self.db.transaction() as conn:
                for statement in migration.statements:
                    conn.execute(statement)
                conn.execute(RECORD_VERSION_SQL, (migration.version,))

        await self.db.run(_apply)


class LibsqlAdapter(StorageAdapter):
    """
    Memory store on libSQL with native vector columns.

    Features:
    - ``F32_BLOB`` embeddings on the record row, cosine vector index
    - Local file, or embedded replica synced with a remote primary
    - Same ranking and dedup rules as the legacy store
    """

    backend_name = "native"

    def __init__(
        self,
        config: StoreConfig,
        embedding_provider: EmbeddingProvider | None = None,
    ):
        super().__init__(config, embedding_provider)
        self.db = NativeDatabase.from_config(config)
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database, apply schema steps and resolve the project."""
        if self._initialized:
            return

        try:
            path = self.config.native_path
            if path is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
            await self.db.open()
            await run_migrations(
                NativeSchemaTarget(self.db),
                native_migrations(self.config.vector_dimensions),
            )
        except Exception as e:
            await self.db.close()
            raise StorageConnectionError(self.db.database, e) from e

        name = self.config.project_name or await asyncio.to_thread(
            detect_project_name, self.config.working_dir
        )
        self._bind_project(name)
        self._project = await self._resolve_project(name)
        self._initialized = True
        self.log.info(f"Native store opened at {self.db.database} for project {name}")

    async def close(self) -> None:
        await self.db.close()
        self._initialized = False

    async def _write(self, fn: Callable[[], T]) -> T:
        """Run a write function on the worker thread, one writer at a time."""
        async with self._write_lock:
            return await self.db.run(fn)

    def _conn(self) -> Any:
        if self.db.conn is None:
            raise StorageConnectionError(self.db.database, RuntimeError("connection is closed"))
        return self.db.conn

    # =========================================================================
    # Projects
    # =========================================================================

    async def _resolve_project(self, name: str) -> Project:
        """Upsert the project and fold its pre-namespace row into it."""
        now = now_iso()
        old_name = legacy_project_name(name)

        def _resolve() -> Project:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO project (name, created_at, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET updated_at = excluded.updated_at
                    """,
                    (name, now, now),
                )
                row = conn.execute(
                    "SELECT id, name, created_at, updated_at FROM project WHERE name = ?",
                    (name,),
                ).fetchone()
                project = Project(*row)

                if old_name:
                    old = conn.execute(
                        "SELECT id FROM project WHERE name = ? AND id != ?",
                        (old_name, project.id),
                    ).fetchone()
                    if old:
                        conn.execute(
                            "UPDATE record SET project_id = ? WHERE project_id = ?",
                            (project.id, old[0]),
                        )
                        conn.execute("DELETE FROM project WHERE id = ?", (old[0],))
                        self.log.info(f"Merged project {old_name} into {name}")
            return project

        return await self._write(_resolve)

    async def list_projects(self) -> list[Project]:
        def _list() -> list[Project]:
            rows = self._conn().execute(
                "SELECT id, name, created_at, updated_at FROM project ORDER BY name"
            ).fetchall()
            return [Project(*row) for row in rows]

        return await self.db.run(_list)

    # =========================================================================
    # Records
    # =========================================================================

    def _get_record(self, record_id: int) -> Record | None:
        row = self._conn().execute(
            f"""
            SELECT {RECORD_COLUMNS}
            FROM record r JOIN project p ON r.project_id = p.id
            WHERE r.id = ?
            """,
            (int(record_id),),
        ).fetchone()
        return Record.from_row(row) if row else None

    async def get(self, record_id: int) -> Record | None:
        return await self.db.run(self._get_record, record_id)

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
        sql = f"""
            SELECT {RECORD_COLUMNS}
            FROM record r JOIN project p ON r.project_id = p.id
            {where}
            ORDER BY r.updated_at DESC, r.id DESC
        """

        def _list() -> list[Record]:
            rows = self._conn().execute(sql, tuple(params)).fetchall()
            return [Record.from_row(row) for row in rows]

        return await self.db.run(_list)

    async def get_recent_records(self, project_id: int, hours: float = 1) -> list[Record]:
        cutoff = recency_cutoff(hours)

        def _recent() -> list[Record]:
            rows = self._conn().execute(
                f"""
                SELECT {RECORD_COLUMNS}
                FROM record r JOIN project p ON r.project_id = p.id
                WHERE r.project_id = ? AND r.updated_at > ?
                ORDER BY r.updated_at DESC
                LIMIT {RECENT_RECORDS_LIMIT}
                """,
                (int(project_id), cutoff),
            ).fetchall()
            return [Record.from_row(row) for row in rows]

        return await self.db.run(_recent)

    async def delete(self, record_id: int) -> bool:
        def _delete() -> bool:
            with self.db.transaction() as conn:
                cursor = conn.execute("DELETE FROM record WHERE id = ?", (int(record_id),))
                return cursor.rowcount > 0

        return await self._write(_delete)

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
            SELECT {RECORD_COLUMNS}, r.embedding
            FROM {top_k_source(candidate_count(limit))} AS v
            JOIN record r ON r.rowid = v.id
            JOIN project p ON r.project_id = p.id
        """
        params: list[Any] = [vector_json(query)]
        if kind:
            sql += " WHERE r.kind = ?"
            params.append(kind)

        def _candidates() -> list[tuple[Record, float]]:
            rows = self._conn().execute(sql, tuple(params)).fetchall()
            return [
                (Record.from_row(row), dot_similarity(query, decode_f32(row[-1])))
                for row in rows
            ]

        candidates = await self.db.run(_candidates)
        return rank_candidates(candidates, current.name, limit)

    async def upsert(
        self,
        draft: RecordDraft,
        embedding: Sequence[float] | NDArray,
    ) -> Record | None:
        current = self._current_project("upsert")
        draft.validate()
        vector = self._validate_embedding(embedding)
        literal = vector_json(vector)
        project_id = draft.project_id if draft.project_id is not None else current.id
        now = now_iso()

        def _upsert() -> Record | None:
            with self.db.transaction() as conn:
                if draft.id is not None:
                    cursor = conn.execute(
                        """
                        UPDATE record SET kind = ?, title = ?, body = ?, status = ?,
                            embedding = vector(?), updated_at = ?
                        WHERE id = ?
                        """,
                        (draft.kind, draft.title, draft.body, draft.status, literal, now,
                         int(draft.id)),
                    )
                    if cursor.rowcount == 0:
                        self.log.debug(f"Record {draft.id} not found, nothing updated")
                        return None
                    return self._get_record(draft.id)

                neighbours = conn.execute(
                    f"""
                    SELECT r.id, r.embedding
                    FROM {top_k_source(candidate_count(DEDUP_CANDIDATES))} AS v
                    JOIN record r ON r.rowid = v.id
                    WHERE r.project_id = ? AND r.kind = ?
                    """,
                    (literal, project_id, draft.kind),
                ).fetchall()

                duplicate_id = pick_duplicate(
                    (row[0], dot_similarity(vector, decode_f32(row[1]))) for row in neighbours
                )
                if duplicate_id is not None:
                    conn.execute(
                        """
                        UPDATE record SET title = ?, body = ?, status = ?,
                            embedding = vector(?), updated_at = ?
                        WHERE id = ?
                        """,
                        (draft.title, draft.body, draft.status, literal, now, duplicate_id),
                    )
                    self.log.debug(f"Deduplicated write into record {duplicate_id}")
                    return self._get_record(duplicate_id)

                cursor = conn.execute(
                    """
                    INSERT INTO record
                        (project_id, kind, title, body, status, embedding, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, vector(?), ?, ?)
                    """,
                    (project_id, draft.kind, draft.title, draft.body, draft.status, literal,
                     now, now),
                )
                return self._get_record(int(cursor.lastrowid))

        return await self._write(_upsert)

    async def sync(self) -> None:
        """Pull remote changes into the embedded replica."""
        await self.db.sync()
