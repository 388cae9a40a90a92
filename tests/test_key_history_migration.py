"""
Tests for the key_history model and its migration.
"""

import importlib.util
from pathlib import Path

import pytest
from sqlalchemy import create_engine, inspect

from llmreq.config import settings
from llmreq.db.migration_runner import get_sync_database_url, run_migrations
from llmreq.db.models import Base, KeyHistory

# Get project root from test file location
PROJECT_ROOT = Path(__file__).parent.parent
MIGRATION_FILE = PROJECT_ROOT / "alembic" / "versions" / "2026_10_19_0001-create_key_history.py"


class TestKeyHistoryModel:
    """Tests for KeyHistory ORM model definition."""

    def test_model_tablename(self):
        assert KeyHistory.__tablename__ == "key_history"

    def test_model_columns_exist(self):
        """All shadow record fields are mapped."""
        column_names = [col.key for col in inspect(KeyHistory).columns]

        for col_name in [
            "id",
            "user_id",
            "litellm_key_id",
            "key_name",
            "key_mask",
            "key_type",
            "status",
            "created_at",
            "expires_at",
            "revoked_at",
        ]:
            assert col_name in column_names, f"Missing column: {col_name}"

    def test_remote_key_id_is_not_unique(self):
        """LiteLLM identifiers drift and history is kept, so duplicates are legal."""
        columns = {col.key: col for col in inspect(KeyHistory).columns}
        assert not columns["litellm_key_id"].unique

    def test_model_nullable_fields(self):
        columns = {col.key: col for col in inspect(KeyHistory).columns}

        assert columns["user_id"].nullable is False
        assert columns["litellm_key_id"].nullable is False
        assert columns["status"].nullable is False
        assert columns["expires_at"].nullable is True
        assert columns["revoked_at"].nullable is True

    def test_model_indexes(self):
        table = KeyHistory.__table__  # type: ignore[attr-defined]
        index_names = [idx.name for idx in table.indexes]

        assert "idx_key_history_user_id" in index_names
        assert "idx_key_history_user_key" in index_names
        assert "idx_key_history_user_type_status" in index_names

    def test_model_inherits_base(self):
        assert issubclass(KeyHistory, Base)


class TestMigrationFile:
    """Tests for migration file structure."""

    def test_migration_revision_chain(self):
        spec = importlib.util.spec_from_file_location("migration", str(MIGRATION_FILE))
        assert spec is not None and spec.loader is not None
        migration = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(migration)

        assert migration.revision == "2026_10_19_0001"
        assert migration.down_revision is None
        assert callable(migration.upgrade)
        assert callable(migration.downgrade)


class TestMigrationRunner:
    """Tests for the startup migration runner."""

    def test_sync_url_swaps_async_drivers(self):
        assert (
            get_sync_database_url("postgresql+asyncpg://u:p@db/llmreq")
            == "postgresql+psycopg2://u:p@db/llmreq"
        )
        assert get_sync_database_url("sqlite+aiosqlite:///./app.db") == "sqlite:///./app.db"

    def test_upgrade_creates_schema(self, tmp_path, monkeypatch):
        """Running migrations on an empty SQLite file creates key_history."""
        db_file = tmp_path / "migrated.db"
        monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{db_file}")

        run_migrations()

        engine = create_engine(f"sqlite:///{db_file}")
        try:
            inspector = inspect(engine)
            assert "key_history" in inspector.get_table_names()
            index_names = {idx["name"] for idx in inspector.get_indexes("key_history")}
            assert "idx_key_history_user_key" in index_names
        finally:
            engine.dispose()

    def test_missing_alembic_ini_reports_nothing_run(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "llmreq.db.migration_runner.ALEMBIC_INI_PATH", tmp_path / "alembic.ini"
        )

        assert run_migrations() is False

    @pytest.mark.asyncio
    async def test_startup_creates_tables_when_migrations_unavailable(
        self, tmp_path, monkeypatch
    ):
        """Auto-migrate without an alembic.ini still leaves a usable schema."""
        import llmreq.main as main_module

        created: list[bool] = []

        async def fake_create_tables() -> None:
            created.append(True)

        async def noop() -> None:
            return None

        monkeypatch.setattr(settings, "auto_migrate", True)
        monkeypatch.setattr(
            "llmreq.db.migration_runner.ALEMBIC_INI_PATH", tmp_path / "alembic.ini"
        )
        monkeypatch.setattr(main_module, "create_tables", fake_create_tables)
        monkeypatch.setattr(main_module, "close_litellm_client", noop)
        monkeypatch.setattr(main_module, "close_engine", noop)

        async with main_module.lifespan(main_module.app):
            assert created == [True]
