"""Helpers for configuring SQLAlchemy engine and session factories."""

from __future__ import annotations

import importlib.util
import logging
import os
import uuid
from pathlib import Path
from types import ModuleType

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from . import Base

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def as_sqlalchemy_url(db_url: str) -> str:
    """Ensure Postgres URLs use the ``psycopg`` driver."""

    if db_url.startswith("postgresql+psycopg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+psycopg://", 1)
    return db_url


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        database_url: Optional database URL. When ``None`` the ``DATABASE_URL``
            environment variable is used.
        **kwargs: Additional keyword arguments forwarded to
            :func:`sqlalchemy.create_engine`.

    Returns:
        Configured SQLAlchemy :class:`~sqlalchemy.engine.Engine` instance.
    """

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    url = as_sqlalchemy_url(url)
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def get_sessionmaker(
    database_url: str | None = None,
    *,
    engine: Engine | None = None,
    **kwargs: object,
) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine`` or a freshly configured one."""

    bind = engine or get_engine(database_url=database_url, **kwargs)
    return sessionmaker(bind=bind, expire_on_commit=False, future=True)


def create_schema(engine: Engine) -> None:
    """Create every table known to :class:`Base` (development and tests)."""

    Base.metadata.create_all(engine)


_applied_migrations = sa.Table(
    "app_python_migrations",
    sa.MetaData(),
    sa.Column("id", sa.Text, primary_key=True),
    sa.Column(
        "applied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    ),
)


def _load_migration(path: Path) -> ModuleType:
    spec = importlib.util.spec_from_file_location(f"app.migrations.{path.stem}", path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Cannot load migration {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run_migrations(engine: Engine, migrations_dir: Path | None = None) -> list[str]:
    """Execute Alembic-style Python migrations in deterministic order.

    Applied revisions are recorded in ``app_python_migrations`` so the call is
    idempotent.  Each migration runs in its own transaction.  Returns the ids
    applied by this call.
    """

    migrations_dir = migrations_dir or MIGRATIONS_DIR
    migration_files = sorted(
        path for path in migrations_dir.glob("[0-9][0-9][0-9]_*.py") if path.is_file()
    )

    with engine.begin() as connection:
        _applied_migrations.create(connection, checkfirst=True)
        applied = set(connection.scalars(sa.select(_applied_migrations.c.id)))

    newly_applied: list[str] = []
    for path in migration_files:
        migration_id = path.stem
        if migration_id in applied:
            continue
        upgrade = getattr(_load_migration(path), "upgrade", None)
        if upgrade is None:
            continue
        with engine.begin() as connection:
            with Operations.context(MigrationContext.configure(connection)):
                upgrade()
            connection.execute(_applied_migrations.insert().values(id=migration_id))
        logger.info("Applied migration %s", migration_id)
        newly_applied.append(migration_id)
    return newly_applied


def ensure_schema(engine: Engine) -> None:
    """Bring the schema up to date: migrations on Postgres, ``create_all`` elsewhere."""

    if engine.dialect.name == "postgresql":
        run_migrations(engine)
    else:
        create_schema(engine)


__all__ = [
    "Base",
    "MIGRATIONS_DIR",
    "as_sqlalchemy_url",
    "create_schema",
    "ensure_schema",
    "get_engine",
    "get_sessionmaker",
    "run_migrations",
]
