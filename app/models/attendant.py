"""Attendant model: a human agent that claims conversations from the queue."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base
from .tenant import _utcnow


class Attendant(Base):
    """Attendant profile, capacity and working schedule.

    ``current_load`` is only written by the assignment coordinator, inside the
    same transaction that changes a conversation's assignment.

    ``work_days`` is a bitset where bit ``n`` enables weekday ``n`` (0 is
    Sunday).  ``None`` means every day; a missing ``work_start``/``work_end``
    pair means no hour restriction.
    """

    __tablename__ = "attendants"
    __table_args__ = (
        Index("ix_attendants_tenant_sector", "tenant_id", "sector"),
        CheckConstraint("max_load >= 0", name="ck_attendants_max_load"),
        CheckConstraint("current_load >= 0", name="ck_attendants_current_load"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(length=320))
    sector: Mapped[str | None] = mapped_column(String(length=32))
    presence: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="offline",
        server_default=text("'offline'"),
    )
    active: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    max_load: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=5,
        server_default=text("5"),
    )
    current_load: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    work_start: Mapped[dt.time | None] = mapped_column(Time())
    work_end: Mapped[dt.time | None] = mapped_column(Time())
    work_days: Mapped[int | None] = mapped_column(Integer())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


__all__ = ["Attendant"]
