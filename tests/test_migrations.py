"""Tests for the initial Alembic migration."""

import importlib.util
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from payments_reconciler.database import Base

MIGRATION = (
    Path(__file__).resolve().parents[1]
    / "src" / "payments_reconciler" / "database" / "migrations" / "versions" / "001_initial.py"
)


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("migration_001_initial", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def sync_engine():
    engine = sa.create_engine("sqlite://")
    yield engine
    engine.dispose()


def run(engine, step):
    with engine.begin() as conn:
        context = MigrationContext.configure(conn)
        with Operations.context(context):
            step()


class TestInitialMigration:
    """Tests for 001_initial."""

    def test_revision(self, migration):
        assert migration.revision == "001_initial"
        assert migration.down_revision is None

    def test_upgrade_creates_every_model_table(self, migration, sync_engine):
        """Test the migration creates the same tables as the models."""
        run(sync_engine, migration.upgrade)

        tables = set(sa.inspect(sync_engine).get_table_names())
        assert set(Base.metadata.tables) <= tables

    def test_upgrade_matches_model_columns(self, migration, sync_engine):
        run(sync_engine, migration.upgrade)
        inspector = sa.inspect(sync_engine)

        for name, table in Base.metadata.tables.items():
            migrated = {column["name"] for column in inspector.get_columns(name)}
            assert {column.name for column in table.columns} == migrated, name

    def test_provider_transaction_key_is_unique(self, migration, sync_engine):
        run(sync_engine, migration.upgrade)
        insert = sa.text(
            "INSERT INTO payment_provider_transactions "
            "(id, provider, provider_transaction_id, reference, status, amount, currency, raw_json, "
            "first_seen_at, last_seen_at) "
            "VALUES (:id, 'mpesa', 'TX-1', '', 'success', 1, 'KES', '', "
            "'2025-03-01 00:00:00', '2025-03-01 00:00:00')"
        )

        with sync_engine.begin() as conn:
            conn.execute(insert, {"id": "a"})
        with pytest.raises(sa.exc.IntegrityError):
            with sync_engine.begin() as conn:
                conn.execute(insert, {"id": "b"})

    def test_downgrade_drops_everything(self, migration, sync_engine):
        run(sync_engine, migration.upgrade)
        run(sync_engine, migration.downgrade)

        assert sa.inspect(sync_engine).get_table_names() == []
