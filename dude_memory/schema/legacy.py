"""Schema steps for the legacy sqlite-vec store."""

from __future__ import annotations

from .engine import Migration

_PROJECT_TABLE = """
CREATE TABLE IF NOT EXISTS project (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_RECORD_COLUMNS = """
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES project(id) ON DELETE CASCADE,
    kind TEXT NOT NULL CHECK (kind IN ({kinds})),
    title TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'open' CHECK (status IN ('open', 'resolved', 'archived')),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
"""

_RECORD_INDEX = "CREATE INDEX IF NOT EXISTS idx_record_project_kind ON record(project_id, kind)"

_ORIGINAL_KINDS = "'issue', 'spec'"
_ALL_KINDS = "'issue', 'spec', 'arch', 'update'"


def legacy_migrations(dimensions: int) -> list[Migration]:
    """Ordered steps for a legacy store with ``dimensions``-wide embeddings."""
    return [
        Migration(
            version=1,
            name="initial",
            statements=(
                _PROJECT_TABLE,
                f"CREATE TABLE IF NOT EXISTS record ({_RECORD_COLUMNS.format(kinds=_ORIGINAL_KINDS)})",
                _RECORD_INDEX,
                f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS record_embedding USING vec0(
                    record_id INTEGER PRIMARY KEY,
                    embedding FLOAT[{int(dimensions)}] distance_metric=cosine
                )
                """,
            ),
        ),
        # SQLite cannot alter a CHECK constraint, so the table is rebuilt.
        Migration(
            version=2,
            name="expand-kinds",
            statements=(
                f"CREATE TABLE record_v2 ({_RECORD_COLUMNS.format(kinds=_ALL_KINDS)})",
                """
                INSERT INTO record_v2
                    (id, project_id, kind, title, body, status, created_at, updated_at)
                SELECT id, project_id, kind, title, body, status, created_at, updated_at
                FROM record
                """,
                "DROP TABLE record",
                "ALTER TABLE record_v2 RENAME TO record",
                _RECORD_INDEX,
            ),
        ),
    ]
