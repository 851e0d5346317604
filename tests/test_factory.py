"""
Tests for backend selection and automatic migration on startup.
"""

import pytest
from conftest import (
    PROJECT,
    make_config,
    require_legacy_backend,
    require_native_backend,
    seeded_embedding,
)

from dude_memory.backends.base import RecordDraft
from dude_memory.backends.legacy import SqliteVecAdapter
from dude_memory.backends.native import LibsqlAdapter
from dude_memory.exceptions import MigrationError
from dude_memory.factory import (
    BackendState,
    backup_legacy_store,
    backup_path_for,
    create_adapter,
    inspect_store,
    open_store,
)
from dude_memory.utils import remove_store_files


class TestInspectStore:
    """State is decided from the files on disk."""

    def test_fresh(self, tmp_path):
        assert inspect_store(make_config(tmp_path)) is BackendState.FRESH

    def test_needs_migration(self, tmp_path):
        (tmp_path / "dude.db").write_bytes(b"")
        assert inspect_store(make_config(tmp_path)) is BackendState.NEEDS_MIGRATION

    def test_migrated_wins_over_legacy(self, tmp_path):
        (tmp_path / "dude.db").write_bytes(b"")
        (tmp_path / "dude-libsql.db").write_bytes(b"")
        assert inspect_store(make_config(tmp_path)) is BackendState.MIGRATED

    def test_custom_paths(self, tmp_path):
        legacy = tmp_path / "old" / "memory.db"
        legacy.parent.mkdir()
        legacy.write_bytes(b"")
        config = make_config(tmp_path, legacy_db_path=legacy, db_path=tmp_path / "new.db")
        assert inspect_store(config) is BackendState.NEEDS_MIGRATION

    def test_remote_url_is_never_migrated(self, tmp_path):
        (tmp_path / "dude.db").write_bytes(b"")
        config = make_config(tmp_path, url="libsql://memory-acme.turso.io")
        assert inspect_store(config) is BackendState.MIGRATED


class TestBackupFiles:
    """Moving and removing store files with their sidecars."""

    def test_backup_moves_sidecars(self, tmp_path):
        legacy = tmp_path / "dude.db"
        for name in ("dude.db", "dude.db-wal", "dude.db-shm"):
            (tmp_path / name).write_text(name)

        backup = backup_legacy_store(legacy)

        assert backup == tmp_path / "dude.db.backup"
        assert backup.read_text() == "dude.db"
        assert (tmp_path / "dude.db.backup-wal").read_text() == "dude.db-wal"
        assert (tmp_path / "dude.db.backup-shm").read_text() == "dude.db-shm"
        assert not legacy.exists()

    def test_existing_backup_gets_timestamp(self, tmp_path):
        (tmp_path / "dude.db.backup").write_text("older")
        backup = backup_path_for(tmp_path / "dude.db")
        assert backup.name.startswith("dude.db.")
        assert backup.name.endswith(".backup")
        assert backup != tmp_path / "dude.db.backup"

    def test_remove_store_files(self, tmp_path):
        for name in ("new.db", "new.db-wal"):
            (tmp_path / name).write_text("x")
        remove_store_files(tmp_path / "new.db")
        assert list(tmp_path.iterdir()) == []


class TestCreateAdapter:
    """Backend name to adapter class."""

    def test_known_backends(self, tmp_path):
        config = make_config(tmp_path)
        assert isinstance(create_adapter("legacy", config), SqliteVecAdapter)
        assert isinstance(create_adapter("native", config), LibsqlAdapter)

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown backend"):
            create_adapter("postgres", make_config(tmp_path))


class TestOpenStore:
    """End-to-end startup."""

    @pytest.mark.asyncio
    async def test_fresh_creates_native_store(self, tmp_path):
        require_native_backend()
        store = await open_store(make_config(tmp_path))
        try:
            assert isinstance(store, LibsqlAdapter)
            assert (await store.get_current_project()).name == PROJECT
        finally:
            await store.close()
        assert (tmp_path / "dude-libsql.db").exists()
        assert not (tmp_path / "dude.db").exists()

    @pytest.mark.asyncio
    async def test_legacy_store_is_migrated_and_backed_up(self, tmp_path):
        require_legacy_backend()
        require_native_backend()
        config = make_config(tmp_path)

        legacy = await SqliteVecAdapter.create(config)
        embedding = seeded_embedding(3)
        try:
            saved = await legacy.upsert(RecordDraft(kind="spec", title="Carry me"), embedding)
        finally:
            await legacy.close()

        store = await open_store(config)
        try:
            assert (await store.get(saved.id)).title == "Carry me"
            assert (await store.search(embedding))[0].id == saved.id
        finally:
            await store.close()

        assert not (tmp_path / "dude.db").exists()
        assert (tmp_path / "dude.db.backup").exists()
        assert inspect_store(config) is BackendState.MIGRATED

    @pytest.mark.asyncio
    async def test_failed_migration_cleans_up(self, tmp_path):
        require_legacy_backend()
        require_native_backend()
        legacy = tmp_path / "dude.db"
        legacy.write_bytes(b"this is not a sqlite database" * 100)

        with pytest.raises(MigrationError):
            await open_store(make_config(tmp_path))

        assert legacy.exists()
        assert not (tmp_path / "dude-libsql.db").exists()
        assert not (tmp_path / "dude.db.backup").exists()
        assert inspect_store(make_config(tmp_path)) is BackendState.NEEDS_MIGRATION
