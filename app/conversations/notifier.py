"""In-process event fan-out for queue and conversation changes.

Events are best effort: the durable state lives in the store, so a failed or
dropped delivery only delays a client until its next poll.  Each tenant keeps
a bounded ring buffer of recent events so clients can catch up by sequence
number; live subscribers receive events through bounded queues and lose the
oldest ones when they fall behind.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from .models import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    MESSAGE_INGESTED = "message_ingested"
    CONVERSATION_CREATED = "conversation_created"
    CONVERSATION_UPDATED = "conversation_updated"
    CONVERSATION_CLAIMED = "conversation_claimed"
    CONVERSATION_RELEASED = "conversation_released"
    CONVERSATION_BLOCKED = "conversation_blocked"
    CONVERSATION_UNBLOCKED = "conversation_unblocked"
    MESSAGES_READ = "messages_read"


@dataclass(frozen=True)
class EngineEvent:
    sequence: int
    type: EventType
    tenant_id: UUID
    conversation_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "type": self.type.value,
            "tenant_id": str(self.tenant_id),
            "conversation_id": str(self.conversation_id) if self.conversation_id else None,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }


class Subscription:
    """Live feed of one tenant's events.

    Publishers run in worker threads; an async consumer waiting in
    :meth:`wait` is woken through its event loop, so it holds no thread.
    """

    def __init__(self, tenant_id: UUID, maxsize: int) -> None:
        self.tenant_id = tenant_id
        self.dropped = 0
        self._queue: queue.Queue[EngineEvent] = queue.Queue(maxsize=maxsize)
        self._waiter_lock = threading.Lock()
        self._waiter: tuple[asyncio.AbstractEventLoop, asyncio.Event] | None = None

    def offer(self, event: EngineEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass
        self._wake()

    def _wake(self) -> None:
        with self._waiter_lock:
            waiter = self._waiter
        if waiter is None:
            return
        loop, ready = waiter
        try:
            loop.call_soon_threadsafe(ready.set)
        except RuntimeError:
            logger.debug("Subscriber loop for tenant %s is closed", self.tenant_id)

    def get(self, timeout: float | None = None) -> EngineEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def _get_nowait(self) -> EngineEvent | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    async def wait(self, timeout: float | None = None) -> EngineEvent | None:
        """Await the next event without blocking a thread; ``None`` on timeout."""

        ready = asyncio.Event()
        with self._waiter_lock:
            self._waiter = (asyncio.get_running_loop(), ready)
        try:
            event = self._get_nowait()
            if event is not None:
                return event
            try:
                await asyncio.wait_for(ready.wait(), timeout)
            except asyncio.TimeoutError:
                return None
            return self._get_nowait()
        finally:
            with self._waiter_lock:
                self._waiter = None


class Notifier:
    """Publishes :class:`EngineEvent` objects to tenant subscribers."""

    def __init__(self, *, buffer_size: int = 500, queue_size: int = 100) -> None:
        self._buffer_size = buffer_size
        self._queue_size = queue_size
        self._sequence = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()
        self._buffers: dict[UUID, deque[EngineEvent]] = {}
        self._subscribers: dict[UUID, list[Subscription]] = {}

    @property
    def buffer_size(self) -> int:
        return self._buffer_size

    @property
    def latest_sequence(self) -> int:
        return self._latest

    def tenant_sequence(self, tenant_id: UUID) -> int:
        """Highest sequence in ``tenant_id``'s buffer, or 0."""
        with self._lock:
            buffer = self._buffers.get(tenant_id)
            return buffer[-1].sequence if buffer else 0

    def publish(
        self,
        tenant_id: UUID,
        event_type: EventType,
        *,
        conversation_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> EngineEvent | None:
        """Record and fan out an event.  Never raises."""

        try:
            with self._lock:
                event = EngineEvent(
                    sequence=next(self._sequence),
                    type=event_type,
                    tenant_id=tenant_id,
                    conversation_id=conversation_id,
                    payload=dict(payload or {}),
                )
                self._latest = event.sequence
                buffer = self._buffers.get(tenant_id)
                if buffer is None:
                    buffer = self._buffers[tenant_id] = deque(maxlen=self._buffer_size)
                buffer.append(event)
                subscribers = list(self._subscribers.get(tenant_id, ()))
            for subscription in subscribers:
                subscription.offer(event)
        except Exception:  # pragma: no cover - delivery must never fail the caller
            logger.exception("Failed to publish %s event for tenant %s", event_type, tenant_id)
            return None
        logger.debug(
            "Published %s #%d (tenant=%s conversation=%s)",
            event.type.value,
            event.sequence,
            tenant_id,
            conversation_id,
        )
        return event

    def subscribe(self, tenant_id: UUID) -> Subscription:
        subscription = Subscription(tenant_id, self._queue_size)
        with self._lock:
            self._subscribers.setdefault(tenant_id, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.tenant_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscribers.pop(subscription.tenant_id, None)

    def events_since(self, tenant_id: UUID, after: int = 0, limit: int = 100) -> list[EngineEvent]:
        """Return buffered events with ``sequence > after``, oldest first."""

        with self._lock:
            buffer = list(self._buffers.get(tenant_id, ()))
        return [event for event in buffer if event.sequence > after][:limit]


__all__ = ["EngineEvent", "EventType", "Notifier", "Subscription"]
