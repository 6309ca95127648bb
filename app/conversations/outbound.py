"""Outbound send path: provider send first, then idempotent ingest.

The provider echoes every sent message back through the webhook with the
same provider message id, so whichever of the two writes lands second is a
no-op.
"""

from __future__ import annotations

import logging
from uuid import UUID

from . import schemas
from .errors import Blocked, InvalidMessage, ProviderError
from .models import MessageDraft, MessageKind, SenderRole
from .service import ConversationService

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 4096


class OutboundDispatcher:
    """Sends text through a provider adapter and records the result."""

    def __init__(self, service: ConversationService, adapter) -> None:
        self._service = service
        self._adapter = adapter

    def send_text(
        self,
        conversation_id: UUID,
        text: str,
        *,
        sender_role: SenderRole = SenderRole.AGENT,
    ) -> schemas.IngestResult:
        content = (text or "").strip()
        if not content:
            raise InvalidMessage("Message text is required")
        if len(content) > MAX_TEXT_LENGTH:
            raise InvalidMessage(f"Message text exceeds {MAX_TEXT_LENGTH} characters")

        conversation = self._service.ingestion.get_conversation(conversation_id)
        if conversation.blocked:
            raise Blocked(conversation_id)

        result = self._adapter.send_text(conversation.phone, content)
        if result.error or not result.message_id:
            logger.warning(
                "Provider send failed for conversation %s: %s", conversation_id, result.error
            )
            raise ProviderError(result.error or "Provider did not return a message id")

        draft = MessageDraft(
            content=content,
            sender_role=sender_role,
            kind=MessageKind.TEXT,
            timestamp=result.timestamp,
            read=True,
        )
        return self._service.with_retry(
            lambda: self._service.ingestion.ingest(
                conversation_id,
                draft,
                result.message_id,
                conversation_open=True,
            )
        )


__all__ = ["MAX_TEXT_LENGTH", "OutboundDispatcher"]
