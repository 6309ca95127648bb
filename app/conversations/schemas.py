"""Pydantic schemas for queue, assignment and message APIs."""

from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Annotated, Any
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# SQLite hands back naive datetimes; everything stored is UTC.
UtcDateTime = Annotated[datetime, AfterValidator(_ensure_utc)]


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TenantRecord(_Record):
    id: UUID
    name: str
    slug: str
    provider: str = "evolution"
    provider_instance: str | None = None
    provider_api_url: str | None = None
    provider_api_key: str | None = None
    timezone: str = "UTC"


class AttendantRecord(_Record):
    id: UUID
    tenant_id: UUID
    name: str
    email: str | None = None
    sector: str | None = None
    presence: str = "offline"
    active: bool = True
    max_load: int = 5
    current_load: int = 0
    work_start: time | None = None
    work_end: time | None = None
    work_days: int | None = None


class ConversationRecord(_Record):
    id: UUID
    tenant_id: UUID
    phone: str
    display_name: str | None = None
    sector: str
    status: str
    assigned_attendant_id: UUID | None = None
    assigned_at: UtcDateTime | None = None
    stage_entered_at: UtcDateTime | None = None
    last_release_reason: str | None = None
    last_message: str | None = None
    last_message_at: UtcDateTime | None = None
    unread_count: int = 0
    blocked: bool = False
    blocked_reason: str | None = None
    blocked_at: UtcDateTime | None = None
    created_at: UtcDateTime
    updated_at: UtcDateTime


class MessageRecord(_Record):
    id: UUID
    tenant_id: UUID
    conversation_id: UUID
    content: str
    sender_role: str
    kind: str
    provider_message_id: str | None = None
    read: bool = False
    timestamp: UtcDateTime
    created_at: UtcDateTime


class IngestResult(BaseModel):
    """Outcome of one ingest call.

    ``created`` is ``False`` when the provider message id was already stored;
    ``message`` is then the existing row.
    """

    message: MessageRecord
    created: bool
    summary_applied: bool
    conversation: ConversationRecord


class QueueEntry(BaseModel):
    conversation_id: UUID
    phone: str
    display_name: str | None = None
    sector: str
    status: str
    last_message: str | None = None
    last_message_at: UtcDateTime | None = None
    unread_count: int = 0
    waiting_since: UtcDateTime
    wait_seconds: float


class SectorQueue(BaseModel):
    sector: str
    count: int
    mean_wait_seconds: float
    max_wait_seconds: float
    entries: list[QueueEntry] = Field(default_factory=list)


class QueueSnapshot(BaseModel):
    tenant_id: UUID
    generated_at: UtcDateTime
    total: int
    sectors: list[SectorQueue] = Field(default_factory=list)


class MessageList(BaseModel):
    items: list[MessageRecord]
    total: int


class AttendantLoad(BaseModel):
    attendant_id: UUID
    previous_load: int
    current_load: int


# ---------------------------------------------------------------------------
# Request bodies


class ClaimRequest(BaseModel):
    attendant_id: UUID | None = None


class ReleaseRequest(BaseModel):
    reason: str = "manual_release"


class TransferRequest(BaseModel):
    sector: str | None = None
    attendant_id: UUID | None = None


class BlockRequest(BaseModel):
    reason: str | None = None


class SendMessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4096)


class IngestMessageRequest(BaseModel):
    content: str
    sender_role: str = "customer"
    kind: str = "text"
    provider_message_id: str | None = None
    timestamp: datetime | None = None
    read: bool | None = None


class MarkReadRequest(BaseModel):
    message_ids: list[UUID] | None = None


class SyncRequest(BaseModel):
    phones: list[str] | None = None
    messages_per_chat: int | None = Field(default=None, ge=1, le=500)


class SyncJobView(BaseModel):
    job_id: UUID
    tenant_id: UUID
    status: str
    chats: int = 0
    messages: int = 0
    duplicates: int = 0
    errors: int = 0
    error: str | None = None
    created_at: UtcDateTime
    finished_at: UtcDateTime | None = None


class EventView(BaseModel):
    sequence: int
    type: str
    tenant_id: UUID
    conversation_id: UUID | None = None
    occurred_at: UtcDateTime
    payload: dict[str, Any] = Field(default_factory=dict)


class EventPage(BaseModel):
    events: list[EventView]
    latest_sequence: int
    poll_interval_seconds: float


__all__ = [
    "AttendantLoad",
    "AttendantRecord",
    "BlockRequest",
    "ClaimRequest",
    "ConversationRecord",
    "EventPage",
    "EventView",
    "IngestMessageRequest",
    "IngestResult",
    "MarkReadRequest",
    "MessageList",
    "MessageRecord",
    "QueueEntry",
    "QueueSnapshot",
    "ReleaseRequest",
    "SectorQueue",
    "SendMessageRequest",
    "SyncJobView",
    "SyncRequest",
    "TenantRecord",
    "TransferRequest",
    "UtcDateTime",
]
