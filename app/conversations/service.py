"""High-level conversation flow orchestration."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable
from uuid import UUID

from . import schemas
from .assignment import AssignmentCoordinator
from .ingestion import MessageIngestionGateway
from .models import ConnectionEvent, InboundMessage, ProviderEvent, ReceiptEvent, SenderRole, utcnow
from .notifier import Notifier
from .queue import QueueViewBuilder
from .repository import ConversationStore
from .retry import call_with_backoff

logger = logging.getLogger(__name__)

#: Receipt statuses that mean the recipient has seen the message.
READ_STATUSES = frozenset({"read", "played"})


class ConversationService:
    """Wires the gateway, queue builder and coordinator for one tenant.

    Provider events (webhooks and history sync) enter through
    :meth:`process_event`, which normalises nothing itself: decoding happens in
    :mod:`app.channels` before the event gets here.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        tenant_id: UUID,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tenant_id = tenant_id
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self.ingestion = MessageIngestionGateway(store, tenant_id=tenant_id, notifier=notifier, clock=clock)
        self.queue = QueueViewBuilder(store, tenant_id=tenant_id, clock=clock)
        self.assignment = AssignmentCoordinator(store, tenant_id=tenant_id, notifier=notifier, clock=clock)

    @property
    def tenant_id(self) -> UUID:
        return self._tenant_id

    def with_retry(self, operation: Callable[[], object]):
        """Run ``operation`` retrying transient store failures."""

        return call_with_backoff(
            operation,
            attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Provider events

    def process_inbound(self, message: InboundMessage) -> schemas.IngestResult:
        """Resolve the conversation for ``message`` and ingest it."""

        # outbound echoes carry the instance owner's name, not the customer's
        display_name = message.display_name if message.sender_role is SenderRole.CUSTOMER else None
        conversation, _ = self.with_retry(
            lambda: self.ingestion.resolve_conversation(message.phone, display_name=display_name)
        )
        return self.with_retry(
            lambda: self.ingestion.ingest(
                conversation.id,
                message.to_draft(),
                message.provider_message_id,
            )
        )

    def process_event(self, event: ProviderEvent) -> str:
        """Apply one decoded provider event and report what happened."""

        if isinstance(event, InboundMessage):
            result = self.process_inbound(event)
            return "ingested" if result.created else "duplicate"
        if isinstance(event, ReceiptEvent):
            if event.status.lower() not in READ_STATUSES:
                return "ignored"
            message = self.with_retry(
                lambda: self.ingestion.mark_read_by_provider_id(event.provider_message_id)
            )
            return "receipt" if message is not None else "ignored"
        if isinstance(event, ConnectionEvent):
            logger.info(
                "Provider instance %s connection state: %s (tenant=%s)",
                event.instance,
                event.state,
                self._tenant_id,
            )
            return "connection"
        raise TypeError(f"Unsupported provider event: {type(event).__name__}")


__all__ = ["ConversationService", "READ_STATUSES"]
