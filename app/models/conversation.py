"""Conversation and Message models.

``Conversation.assigned_attendant_id`` and ``Attendant.current_load`` are only
written through the conditional updates issued by
:mod:`app.conversations.repository`; the ``last_message*`` summary columns are
only written by the ingestion gateway.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base
from .tenant import _utcnow


class Conversation(Base):
    """One WhatsApp chat between a customer phone and a tenant."""

    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_conversations_tenant_phone"),
        Index(
            "ix_conversations_queue",
            "tenant_id",
            "sector",
            "assigned_attendant_id",
            "last_message_at",
        ),
        Index("ix_conversations_assigned", "assigned_attendant_id"),
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
    phone: Mapped[str] = mapped_column(String(length=32), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(length=255))
    sector: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="reception",
        server_default=text("'reception'"),
    )
    status: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )
    assigned_attendant_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("attendants.id", ondelete="SET NULL"),
    )
    assigned_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    stage_entered_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    last_release_reason: Mapped[str | None] = mapped_column(String(length=32))
    last_message: Mapped[str | None] = mapped_column(Text())
    last_message_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    unread_count: Mapped[int] = mapped_column(
        Integer(),
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    blocked: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    blocked_reason: Mapped[str | None] = mapped_column(Text())
    blocked_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class Message(Base):
    """One inbound or outbound WhatsApp message.

    ``provider_message_id`` is the idempotency key shared by the outbound send
    path and the provider webhook/sync path.  NULLs never collide, so manual
    messages without a provider id are plain inserts.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_message_id",
            name="uq_messages_tenant_provider_message_id",
        ),
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
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
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    sender_role: Mapped[str] = mapped_column(String(length=16), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="text",
        server_default=text("'text'"),
    )
    provider_message_id: Mapped[str | None] = mapped_column(String(length=255))
    read: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    timestamp: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )


__all__ = ["Conversation", "Message"]
