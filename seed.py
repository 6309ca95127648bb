"""Utility script to bootstrap the database with a demo tenant and attendants.

Prints one access token per seeded attendant plus a supervisor and an admin
token so the API can be exercised right away.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import time
import uuid
from dataclasses import dataclass

from dotenv import load_dotenv
from sqlalchemy import Engine, select, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from app.channels.config import GLOBAL_KEY_KEY, GLOBAL_URL_KEY
from app.conversations.models import Presence, Sector
from app.models import Attendant, GlobalSetting, Tenant
from app.models.session import ensure_schema, get_engine, get_sessionmaker
from app.security import create_access_token

logger = logging.getLogger("seed")


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    tenant_name: str
    tenant_slug: str
    provider: str
    provider_instance: str
    timezone: str
    evolution_api_url: str | None
    evolution_api_key: str | None
    attendants_per_sector: int


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        parsed = make_url(db_url)
    except Exception:  # pragma: no cover - defensive fallback
        return db_url
    if parsed.password is None:
        return db_url
    redacted = parsed.set(password="***")
    return redacted.render_as_string(hide_password=False)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables."""

    slug = os.getenv("SEED_TENANT_SLUG", "demo").strip().lower()
    return SeedConfig(
        db_url=_build_database_url(),
        tenant_name=os.getenv("SEED_TENANT_NAME", "Demo Clinic").strip(),
        tenant_slug=slug,
        provider=os.getenv("SEED_PROVIDER", "evolution").strip().lower(),
        provider_instance=os.getenv("SEED_PROVIDER_INSTANCE", slug).strip(),
        timezone=os.getenv("SEED_TIMEZONE", "America/Sao_Paulo").strip(),
        evolution_api_url=os.getenv("EVOLUTION_API_URL"),
        evolution_api_key=os.getenv("EVOLUTION_API_KEY"),
        attendants_per_sector=int(os.getenv("SEED_ATTENDANTS_PER_SECTOR", "2")),
    )


def wait_for_database(engine: Engine, max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    safe_url = _safe_url(engine.url.render_as_string(hide_password=False))

    for attempt in range(1, max_attempts + 1):
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _provision_tenant(factory: sessionmaker[Session], config: SeedConfig) -> uuid.UUID:
    """Create or reuse the demo tenant and the global provider defaults."""

    with factory.begin() as session:
        tenant = session.execute(
            select(Tenant).where(Tenant.slug == config.tenant_slug)
        ).scalar_one_or_none()
        if tenant is None:
            tenant = Tenant(
                name=config.tenant_name,
                slug=config.tenant_slug,
                provider=config.provider,
                provider_instance=config.provider_instance,
                timezone=config.timezone,
            )
            session.add(tenant)
            session.flush()
            logger.info("Created tenant %s (%s)", tenant.id, tenant.slug)
        else:
            logger.info("Tenant %s already exists; reusing.", tenant.slug)

        for key, value in (
            (GLOBAL_URL_KEY, config.evolution_api_url),
            (GLOBAL_KEY_KEY, config.evolution_api_key),
        ):
            if value and session.get(GlobalSetting, key) is None:
                session.add(GlobalSetting(key=key, value=value))
                logger.info("Stored global setting %s", key)
        return tenant.id


def _provision_attendants(
    factory: sessionmaker[Session], tenant_id: uuid.UUID, config: SeedConfig
) -> list[tuple[uuid.UUID, str, str | None]]:
    """Ensure each sector has ``attendants_per_sector`` attendants on a weekday shift."""

    seeded: list[tuple[uuid.UUID, str, str | None]] = []
    weekdays = sum(1 << day for day in range(1, 6))
    with factory.begin() as session:
        for sector in Sector:
            for index in range(1, config.attendants_per_sector + 1):
                name = f"{sector.value.title()} {index}"
                attendant = session.execute(
                    select(Attendant).where(
                        Attendant.tenant_id == tenant_id, Attendant.name == name
                    )
                ).scalar_one_or_none()
                if attendant is None:
                    attendant = Attendant(
                        tenant_id=tenant_id,
                        name=name,
                        email=f"{sector.value}{index}@{config.tenant_slug}.example",
                        sector=sector.value,
                        presence=Presence.ONLINE.value,
                        max_load=5,
                        work_start=dt.time(8, 0),
                        work_end=dt.time(18, 0),
                        work_days=weekdays,
                    )
                    session.add(attendant)
                    session.flush()
                    logger.info("Created attendant %s (%s)", attendant.name, attendant.id)
                seeded.append((attendant.id, attendant.name, attendant.sector))
    return seeded


def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    config = _load_config()
    engine = get_engine(config.db_url)
    wait_for_database(engine)
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    ensure_schema(engine)
    session_factory = get_sessionmaker(engine=engine)
    tenant_id = _provision_tenant(session_factory, config)
    attendants = _provision_attendants(session_factory, tenant_id, config)

    for attendant_id, name, _sector in attendants:
        token = create_access_token(tenant_id, attendant_id, ("attendant",), name=name)
        print(f"{name}: {token}")
    supervisor = create_access_token(tenant_id, uuid.uuid4(), ("supervisor",), name="Supervisor")
    admin = create_access_token(tenant_id, uuid.uuid4(), ("admin",), name="Admin")
    print(f"Supervisor: {supervisor}")
    print(f"Admin: {admin}")

    logger.info("Seed process completed. Tenant ID: %s", tenant_id)


if __name__ == "__main__":
    main()
