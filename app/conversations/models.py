"""Domain values used by the queue and assignment engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union


class Sector(str, Enum):
    SALES = "sales"
    SUPPORT = "support"
    RECEPTION = "reception"


DEFAULT_SECTOR = Sector.RECEPTION


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    CLOSED = "closed"
    BLOCKED = "blocked"


#: Statuses whose unassigned conversations are shown in the queue.
QUEUEABLE_STATUSES = (ConversationStatus.ACTIVE.value, ConversationStatus.PENDING.value)


class Presence(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    AWAY = "away"
    BUSY = "busy"


class SenderRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    BOT = "bot"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"


MEDIA_PLACEHOLDERS: dict[MessageKind, str] = {
    MessageKind.IMAGE: "📷 Image",
    MessageKind.VIDEO: "🎥 Video",
    MessageKind.AUDIO: "🎵 Audio",
    MessageKind.DOCUMENT: "📄 Document",
}


class ReleaseReason(str, Enum):
    CLOSED = "closed"
    TRANSFERRED = "transferred"
    MANUAL_RELEASE = "manual_release"


_JID_SUFFIX = re.compile(r"@(s\.whatsapp\.net|c\.us|g\.us|lid|broadcast)$", re.IGNORECASE)


def normalize_phone(raw: str | None) -> str:
    """Strip provider suffixes and formatting from a phone or JID.

    ``"5511999990000@s.whatsapp.net"`` and ``"+55 (11) 99999-0000"`` both end
    up as ``"5511999990000"``, so webhook JIDs and typed numbers meet on the
    same conversation.
    """

    if not raw:
        return ""
    value = _JID_SUFFIX.sub("", raw.strip())
    # device suffix, e.g. 5511999990000:12@s.whatsapp.net
    value = value.split(":", 1)[0]
    return re.sub(r"\D", "", value)


def utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MessageDraft:
    """Message content handed to :meth:`MessageIngestionGateway.ingest`."""

    content: str
    sender_role: SenderRole | str = SenderRole.CUSTOMER
    kind: MessageKind | str = MessageKind.TEXT
    timestamp: datetime | None = None
    read: bool | None = None


# ---------------------------------------------------------------------------
# Canonical provider events, produced by the decoders in ``app.channels``.


@dataclass
class InboundMessage:
    """Uniform representation of a provider message (webhook or sync)."""

    phone: str
    content: str
    kind: MessageKind = MessageKind.TEXT
    sender_role: SenderRole = SenderRole.CUSTOMER
    provider_message_id: str | None = None
    timestamp: datetime = field(default_factory=utcnow)
    display_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_draft(self) -> MessageDraft:
        return MessageDraft(
            content=self.content,
            sender_role=self.sender_role,
            kind=self.kind,
            timestamp=self.timestamp,
        )


@dataclass
class ReceiptEvent:
    """Delivery/read status update for a previously sent message."""

    provider_message_id: str
    status: str


@dataclass
class ConnectionEvent:
    """Provider instance connectivity change."""

    instance: str | None
    state: str


ProviderEvent = Union[InboundMessage, ReceiptEvent, ConnectionEvent]


__all__ = [
    "ConnectionEvent",
    "ConversationStatus",
    "DEFAULT_SECTOR",
    "InboundMessage",
    "MEDIA_PLACEHOLDERS",
    "MessageDraft",
    "MessageKind",
    "Presence",
    "ProviderEvent",
    "QUEUEABLE_STATUSES",
    "ReceiptEvent",
    "ReleaseReason",
    "Sector",
    "SenderRole",
    "normalize_phone",
    "utc",
    "utcnow",
]
