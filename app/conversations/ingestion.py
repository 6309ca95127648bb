"""Message ingestion gateway.

The single write path for messages: webhooks, history sync, outbound sends
and manual API calls all go through :meth:`MessageIngestionGateway.ingest`.
Deduplication is enforced by the store's unique ``(tenant_id,
provider_message_id)`` key, and the conversation summary only moves forward
in time, so concurrent and out-of-order deliveries converge on the same state.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence
from uuid import UUID

from . import schemas
from .errors import ConversationNotFound, InvalidMessage, TenantMismatch
from .models import (
    DEFAULT_SECTOR,
    MEDIA_PLACEHOLDERS,
    MessageDraft,
    MessageKind,
    Sector,
    SenderRole,
    normalize_phone,
    utc,
    utcnow,
)
from .notifier import EventType, Notifier
from .repository import ConversationStore, StoreTransaction

logger = logging.getLogger(__name__)


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidMessage(f"Unknown {label}: {value!r}") from exc


class MessageIngestionGateway:
    """Persists messages and keeps the owning conversation's summary current."""

    def __init__(
        self,
        store: ConversationStore,
        *,
        tenant_id: UUID,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._notifier = notifier
        self._clock = clock

    @property
    def tenant_id(self) -> UUID:
        return self._tenant_id

    def _load(self, tx: StoreTransaction, conversation_id: UUID) -> schemas.ConversationRecord:
        conversation = tx.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        if conversation.tenant_id != self._tenant_id:
            raise TenantMismatch(
                f"Conversation {conversation_id} does not belong to tenant {self._tenant_id}"
            )
        return conversation

    def _publish(self, event_type: EventType, conversation_id: UUID, **payload) -> None:
        if self._notifier is not None:
            self._notifier.publish(
                self._tenant_id, event_type, conversation_id=conversation_id, payload=payload
            )

    # ------------------------------------------------------------------
    def get_conversation(self, conversation_id: UUID) -> schemas.ConversationRecord:
        with self._store.transaction() as tx:
            return self._load(tx, conversation_id)

    def resolve_conversation(
        self,
        phone: str,
        *,
        display_name: str | None = None,
        sector: str | None = None,
    ) -> tuple[schemas.ConversationRecord, bool]:
        """Return the conversation for ``phone``, creating it when missing."""

        normalized = normalize_phone(phone)
        if not normalized:
            raise InvalidMessage(f"Invalid phone number: {phone!r}")
        sector_value = _coerce(Sector, sector or DEFAULT_SECTOR, "sector").value
        name = (display_name or "").strip() or None

        with self._store.transaction() as tx:
            created = tx.insert_conversation_if_absent(
                self._tenant_id, normalized, display_name=name, sector=sector_value
            )
            conversation = tx.find_conversation_by_phone(self._tenant_id, normalized)
            if not created and name and conversation.display_name != name:
                tx.update_display_name(conversation.id, name)
                conversation = conversation.model_copy(update={"display_name": name})

        if created:
            logger.info(
                "Created conversation %s for tenant %s (sector=%s)",
                conversation.id,
                self._tenant_id,
                conversation.sector,
            )
            self._publish(EventType.CONVERSATION_CREATED, conversation.id, sector=conversation.sector)
        return conversation, created

    def ingest(
        self,
        conversation_id: UUID,
        message: MessageDraft,
        provider_message_id: str | None = None,
        *,
        conversation_open: bool = False,
    ) -> schemas.IngestResult:
        """Store ``message`` and advance the conversation summary.

        Returns the stored message with ``created=False`` when the provider id
        was seen before.  ``conversation_open`` signals that an attendant is
        looking at the chat, so a new customer message does not count as
        unread.
        """

        sender_role = _coerce(SenderRole, message.sender_role, "sender role")
        kind = _coerce(MessageKind, message.kind, "message kind")
        content = (message.content or "").strip()
        if not content:
            if kind is MessageKind.TEXT:
                raise InvalidMessage("Text messages require content")
            content = MEDIA_PLACEHOLDERS[kind]
        provider_id = (provider_message_id or "").strip() or None
        timestamp = utc(message.timestamp) if message.timestamp else utc(self._clock())
        read = message.read
        if read is None:
            read = sender_role is not SenderRole.CUSTOMER or conversation_open

        with self._store.transaction() as tx:
            self._load(tx, conversation_id)
            stored, created = tx.upsert_message(
                tenant_id=self._tenant_id,
                conversation_id=conversation_id,
                content=content,
                sender_role=sender_role.value,
                kind=kind.value,
                provider_message_id=provider_id,
                read=read,
                timestamp=timestamp,
            )
            # A duplicate may belong to another conversation of the tenant.
            # Its summary was written with the original insert.
            target_id = stored.conversation_id
            summary_applied = created and tx.apply_summary(
                target_id, stored.content, stored.timestamp
            )
            if created and not stored.read and stored.sender_role == SenderRole.CUSTOMER.value:
                tx.increment_unread(target_id)
            conversation = tx.get_conversation(target_id)

        if created:
            logger.info(
                "Ingested %s message %s into conversation %s (provider_id=%s)",
                stored.sender_role,
                stored.id,
                target_id,
                provider_id,
            )
            self._publish(
                EventType.MESSAGE_INGESTED,
                target_id,
                message_id=str(stored.id),
                sender_role=stored.sender_role,
                last_message=conversation.last_message,
                unread_count=conversation.unread_count,
            )
        else:
            logger.debug("Duplicate provider message %s ignored", provider_id)

        return schemas.IngestResult(
            message=stored,
            created=created,
            summary_applied=summary_applied,
            conversation=conversation,
        )

    def mark_read(
        self, conversation_id: UUID, message_ids: Sequence[UUID] | None = None
    ) -> schemas.ConversationRecord:
        """Mark messages read and recompute the unread counter."""

        with self._store.transaction() as tx:
            self._load(tx, conversation_id)
            changed = tx.mark_messages_read(conversation_id, message_ids)
            unread = tx.recount_unread(conversation_id)
            conversation = tx.get_conversation(conversation_id)
        if changed:
            self._publish(EventType.MESSAGES_READ, conversation_id, unread_count=unread)
        return conversation

    def mark_read_by_provider_id(self, provider_message_id: str) -> schemas.MessageRecord | None:
        """Apply a provider read receipt; unknown ids are ignored."""

        with self._store.transaction() as tx:
            message = tx.mark_read_by_provider_id(self._tenant_id, provider_message_id)
            if message is None:
                return None
            unread = tx.recount_unread(message.conversation_id)
        self._publish(EventType.MESSAGES_READ, message.conversation_id, unread_count=unread)
        return message

    def list_messages(
        self, conversation_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> schemas.MessageList:
        with self._store.transaction() as tx:
            self._load(tx, conversation_id)
            items, total = tx.list_messages(conversation_id, limit=limit, offset=offset)
        return schemas.MessageList(items=items, total=total)


__all__ = ["MessageIngestionGateway"]
