"""Schema steps for the native libSQL store."""

from __future__ import annotations

from .engine import Migration


def native_migrations(dimensions: int) -> list[Migration]:
    """Ordered steps for a native store with ``dimensions``-wide embeddings."""
    return [
        Migration(
            version=1,
            name="initial",
            statements=(
                """
                CREATE TABLE IF NOT EXISTS project (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """,
                f"""
                CREATE TABLE IF NOT EXISTS record (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    project_id INTEGER NOT NULL REFERENCES project(id) ON DELETE CASCADE,
                    kind TEXT NOT NULL CHECK (kind IN ('issue', 'spec', 'arch', 'update')),
                    title TEXT NOT NULL,
                    body TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'open'
                        CHECK (status IN ('open', 'resolved', 'archived')),
                    embedding F32_BLOB({int(dimensions)}),
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """,
                "CREATE INDEX IF NOT EXISTS idx_record_project_kind ON record(project_id, kind)",
                """
                CREATE INDEX IF NOT EXISTS idx_record_embedding
                ON record(libsql_vector_idx(embedding, 'metric=cosine'))
                """,
            ),
        ),
    ]
