"""
Tests for the legacy -> native migration.

Legacy stores are built through the legacy schema steps and raw SQL, so
the tests control exactly which rows have a vec0 embedding.
"""

import hashlib
import importlib.util
import json
import sys
from pathlib import Path

import numpy as np
import pytest
from conftest import (
    PROJECT,
    make_config,
    require_legacy_backend,
    require_native_backend,
    seeded_embedding,
)

from dude_memory.backends.base import RecordDraft
from dude_memory.backends.legacy import (
    LegacySchemaTarget,
    SqliteVecAdapter,
    open_legacy_connection,
)
from dude_memory.backends.native import LibsqlAdapter, NativeDatabase
from dude_memory.exceptions import MigrationError
from dude_memory.migration import LegacyToNativeMigrator, MigrationStats, migrate_store
from dude_memory.schema import legacy_migrations, run_migrations
from dude_memory.search.ranking import decode_f32, encode_f32

TIMESTAMP = "2025-06-01T12:00:00.000Z"


@pytest.fixture(autouse=True)
def _require_both_backends():
    require_legacy_backend()
    require_native_backend()


async def build_legacy_store(path, records):
    """Create a legacy store holding one project and the given records.

    ``records`` is a list of (id, kind, title, embedding-or-None).
    """
    conn = await open_legacy_connection(path)
    try:
        await run_migrations(LegacySchemaTarget(conn), legacy_migrations(384))
        if records:
            await conn.execute(
                "INSERT INTO project (id, name, created_at, updated_at) VALUES (1, ?, ?, ?)",
                (PROJECT, TIMESTAMP, TIMESTAMP),
            )
        for record_id, kind, title, embedding in records:
            await conn.execute(
                """
                INSERT INTO record (id, project_id, kind, title, body, status,
                    created_at, updated_at)
                VALUES (?, 1, ?, ?, 'body', 'open', ?, ?)
                """,
                (record_id, kind, title, TIMESTAMP, TIMESTAMP),
            )
            if embedding is not None:
                await conn.execute(
                    "INSERT INTO record_embedding (record_id, embedding) VALUES (?, ?)",
                    (record_id, encode_f32(embedding)),
                )
    finally:
        await conn.close()


def file_digest(path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


class TestMigrateStore:
    """File-level migration."""

    @pytest.mark.asyncio
    async def test_counts_and_retrievable_records(self, tmp_path):
        legacy = tmp_path / "dude.db"
        target = tmp_path / "dude-libsql.db"
        await build_legacy_store(
            legacy,
            [
                (1, "issue", "First", seeded_embedding(1)),
                (2, "spec", "Second", seeded_embedding(2)),
                (3, "arch", "Orphan", None),
            ],
        )

        stats = await migrate_store(legacy, target)
        assert stats.counts == {"projects": 1, "records": 3, "embeddings": 2}
        assert stats.duration_seconds is not None and stats.duration_seconds >= 0

        store = await LibsqlAdapter.create(make_config(tmp_path))
        try:
            for record_id, title in [(1, "First"), (2, "Second"), (3, "Orphan")]:
                record = await store.get(record_id)
                assert record.title == title
                assert record.project == PROJECT
                assert record.created_at == TIMESTAMP
                assert record.updated_at == TIMESTAMP
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_embeddings_round_trip(self, tmp_path):
        legacy = tmp_path / "dude.db"
        target = tmp_path / "dude-libsql.db"
        embedding = seeded_embedding(42)
        await build_legacy_store(legacy, [(1, "issue", "Vector", embedding)])

        await migrate_store(legacy, target)

        db = NativeDatabase(str(target))
        await db.open()
        try:
            blob = await db.run(
                lambda: db.conn.execute("SELECT embedding FROM record WHERE id = 1").fetchone()[0]
            )
        finally:
            await db.close()

        migrated = decode_f32(blob)
        assert migrated.shape == (384,)
        assert np.max(np.abs(migrated - np.asarray(embedding, dtype=np.float32))) < 1e-4

    @pytest.mark.asyncio
    async def test_orphan_has_null_embedding(self, tmp_path):
        legacy = tmp_path / "dude.db"
        await build_legacy_store(legacy, [(1, "issue", "Orphan", None)])
        await migrate_store(legacy, tmp_path / "dude-libsql.db")

        store = await LibsqlAdapter.create(make_config(tmp_path))
        try:
            assert [r.title for r in await store.list_records()] == ["Orphan"]
            assert await store.search(seeded_embedding(1)) == []
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_empty_store(self, tmp_path):
        legacy = tmp_path / "dude.db"
        await build_legacy_store(legacy, [])

        stats = await migrate_store(legacy, tmp_path / "dude-libsql.db")
        assert stats.counts == {"projects": 0, "records": 0, "embeddings": 0}

    @pytest.mark.asyncio
    async def test_source_is_not_modified(self, tmp_path):
        legacy = tmp_path / "dude.db"
        await build_legacy_store(legacy, [(1, "issue", "A", seeded_embedding(1))])
        before = file_digest(legacy)

        await migrate_store(legacy, tmp_path / "dude-libsql.db")
        assert file_digest(legacy) == before

    @pytest.mark.asyncio
    async def test_missing_source_raises_migration_error(self, tmp_path):
        with pytest.raises(MigrationError) as exc_info:
            await migrate_store(tmp_path / "missing.db", tmp_path / "dude-libsql.db")
        assert "left untouched" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_adapter_written_store_migrates(self, tmp_path):
        """A store written by the legacy adapter is searchable after migration."""
        legacy_store = await SqliteVecAdapter.create(make_config(tmp_path))
        embedding = seeded_embedding(7)
        try:
            saved = await legacy_store.upsert(
                RecordDraft(kind="update", title="Shipped v2"), embedding
            )
        finally:
            await legacy_store.close()

        await migrate_store(tmp_path / "dude.db", tmp_path / "dude-libsql.db")

        native_store = await LibsqlAdapter.create(make_config(tmp_path))
        try:
            hits = await native_store.search(embedding)
            assert [h.id for h in hits] == [saved.id]
            assert hits[0].similarity >= 0.9
        finally:
            await native_store.close()


class TestMigrator:
    """Migrator on already opened connections."""

    @pytest.mark.asyncio
    async def test_migrate_returns_stats(self, tmp_path):
        legacy = tmp_path / "dude.db"
        await build_legacy_store(legacy, [(5, "spec", "Only", seeded_embedding(5))])

        conn = await open_legacy_connection(legacy, read_only=True)
        db = NativeDatabase(str(tmp_path / "out.db"))
        await db.open()
        try:
            stats = await LegacyToNativeMigrator(conn, db, 384).migrate()
        finally:
            await conn.close()
            await db.close()

        assert isinstance(stats, MigrationStats)
        assert stats.to_dict()["records"] == 1
        assert stats.to_dict()["embeddings"] == 1
        assert stats.started_at <= stats.completed_at

    @pytest.mark.asyncio
    async def test_dimension_mismatch_fails(self, tmp_path):
        legacy = tmp_path / "dude.db"
        await build_legacy_store(legacy, [(1, "issue", "A", seeded_embedding(1))])

        with pytest.raises(MigrationError):
            await migrate_store(legacy, tmp_path / "out.db", dimensions=128)
        assert not (tmp_path / "out.db").exists()
        assert not (tmp_path / "out.db-wal").exists()


def load_migration_script():
    path = Path(__file__).resolve().parents[1] / "scripts" / "migrate_to_native.py"
    spec = importlib.util.spec_from_file_location("migrate_to_native", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestMigrationScript:
    """scripts/migrate_to_native.py end to end."""

    @pytest.mark.asyncio
    async def test_failed_run_leaves_no_target(self, tmp_path, monkeypatch, capsys):
        legacy = tmp_path / "dude.db"
        target = tmp_path / "dude-libsql.db"
        await build_legacy_store(legacy, [(1, "issue", "A", seeded_embedding(1))])
        script = load_migration_script()
        argv = ["migrate_to_native.py", "--legacy", str(legacy), "--target", str(target)]

        monkeypatch.setattr(sys, "argv", argv + ["--dimensions", "8"])
        assert await script.main() == 1
        assert not target.exists()

        monkeypatch.setattr(sys, "argv", argv)
        assert await script.main() == 0
        assert target.exists()
        assert json.loads(capsys.readouterr().out)["records"] == 1

    @pytest.mark.asyncio
    async def test_refuses_existing_target(self, tmp_path, monkeypatch):
        legacy = tmp_path / "dude.db"
        target = tmp_path / "dude-libsql.db"
        await build_legacy_store(legacy, [])
        target.write_text("keep me")

        monkeypatch.setattr(
            sys, "argv", ["migrate_to_native.py", "--legacy", str(legacy), "--target", str(target)]
        )
        assert await load_migration_script().main() == 1
        assert target.read_text() == "keep me"


class TestMigrationStats:
    """Result serialization."""

    def test_to_dict_without_timing(self):
        stats = MigrationStats(projects=1, records=3, embeddings=2)
        assert stats.to_dict() == {
            "projects": 1,
            "records": 3,
            "embeddings": 2,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": None,
        }
