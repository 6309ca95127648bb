"""Tenant-related SQLAlchemy models.

A tenant is the institution that owns a WhatsApp provider instance together
with its attendants and conversations.  The models mirror the DDL maintained
in the migrations (see ``app/migrations/001_create_queue_tables.py``) to keep
ORM usage and raw SQL migrations consistent.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import DateTime, Index, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Tenant(Base):
    """Represents an institution served by the engine.

    Attributes:
        id: Primary key generated via ``gen_random_uuid`` in Postgres.
        name: Display name of the tenant.
        slug: Unique short identifier.
        provider: Provider kind used for WhatsApp traffic.
        provider_instance: Provider instance name; webhooks are routed to the
            tenant through this value.
        provider_api_url: Optional per-tenant override of the provider URL.
        provider_api_key: Optional per-tenant override of the provider key.
        timezone: IANA zone used to evaluate attendant working hours.
    """

    __tablename__ = "tenants"
    __table_args__ = (
        Index("ix_tenants_slug_unique", "slug", unique=True),
        Index("ix_tenants_provider_instance_unique", "provider_instance", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    slug: Mapped[str] = mapped_column(String(length=255), nullable=False)
    provider: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="evolution",
        server_default=text("'evolution'"),
    )
    provider_instance: Mapped[str | None] = mapped_column(String(length=255))
    provider_api_url: Mapped[str | None] = mapped_column(Text())
    provider_api_key: Mapped[str | None] = mapped_column(Text())
    timezone: Mapped[str] = mapped_column(
        String(length=64),
        nullable=False,
        default="UTC",
        server_default=text("'UTC'"),
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


class GlobalSetting(Base):
    """Key/value settings shared by every tenant (global provider defaults)."""

    __tablename__ = "global_settings"

    key: Mapped[str] = mapped_column(String(length=128), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text())
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


__all__ = ["GlobalSetting", "Tenant"]
