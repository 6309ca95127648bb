"""Checks for the Python migrations and the migration runner."""

from __future__ import annotations

import io
import textwrap

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations

from app.models import Base
from app.models.session import MIGRATIONS_DIR, _load_migration, get_engine, run_migrations


def _offline_sql(step: str) -> str:
    """Render a migration step as PostgreSQL DDL without a database."""

    module = _load_migration(MIGRATIONS_DIR / "001_create_queue_tables.py")
    buffer = io.StringIO()
    context = MigrationContext.configure(
        dialect_name="postgresql", opts={"as_sql": True, "output_buffer": buffer}
    )
    with Operations.context(context):
        getattr(module, step)()
    return buffer.getvalue()


def test_queue_migration_creates_every_model_table():
    sql = _offline_sql("upgrade")

    assert 'CREATE EXTENSION IF NOT EXISTS "pgcrypto"' in sql
    for table in Base.metadata.sorted_tables:
        create = sql.split(f"CREATE TABLE {table.name} (", 1)
        assert len(create) == 2, table.name
        body = create[1].split(");", 1)[0]
        for column in table.columns:
            assert column.name in body, f"{table.name}.{column.name}"


def test_queue_migration_declares_idempotency_indexes():
    sql = _offline_sql("upgrade")

    for index in Base.metadata.tables["messages"].indexes:
        assert index.name in sql
    assert "uq_conversations_tenant_phone" in sql or "UNIQUE (tenant_id, phone)" in sql


def test_queue_migration_downgrade_drops_tables():
    sql = _offline_sql("downgrade")

    for table in Base.metadata.sorted_tables:
        assert f"DROP TABLE {table.name}" in sql


def test_run_migrations_is_idempotent(tmp_path):
    migrations = tmp_path / "migrations"
    migrations.mkdir()
    (migrations / "001_create_notes.py").write_text(
        textwrap.dedent(
            """
            from alembic import op
            import sqlalchemy as sa


            def upgrade():
                op.create_table("notes", sa.Column("id", sa.Integer, primary_key=True))
            """
        )
    )
    (migrations / "002_no_upgrade.py").write_text("revision = '002'\n")
    (migrations / "helpers.py").write_text("raise RuntimeError('not a migration')\n")
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'migrations.db'}")

    assert run_migrations(engine, migrations) == ["001_create_notes"]
    assert run_migrations(engine, migrations) == []
    assert "notes" in sa.inspect(engine).get_table_names()
    engine.dispose()
