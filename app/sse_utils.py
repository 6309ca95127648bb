"""SSE helpers for streaming engine events.

This module turns the notifier's live subscription into Server-Sent Events
(SSE) so dashboards can refresh their queue view without polling.

Event format produced:
- "id: <sequence>", "event: <event type>" and "data: <json event>" per event
- ": keep-alive" comment lines while nothing happens, so proxies keep the
  connection open
"""

import json
from typing import AsyncIterator, Awaitable, Callable, Optional
from uuid import UUID

from .conversations.notifier import EngineEvent, Notifier

KEEP_ALIVE = ": keep-alive\n\n"


def format_sse(data: str, event: Optional[str] = None, event_id: Optional[int] = None) -> str:
    """Render one SSE frame; multi-line ``data`` is split across data lines."""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    if event:
        lines.append(f"event: {event}")
    lines.extend(f"data: {line}" for line in data.splitlines() or [""])
    return "\n".join(lines) + "\n\n"


def format_event(event: EngineEvent) -> str:
    return format_sse(
        json.dumps(event.to_dict(), separators=(",", ":")),
        event=event.type.value,
        event_id=event.sequence,
    )


async def sse_event_stream(
    notifier: Notifier,
    tenant_id: UUID,
    *,
    after: int = 0,
    heartbeat_seconds: float = 15.0,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[str]:
    """Replay buffered events newer than ``after`` and then follow live ones.

    The subscription is opened before the replay so nothing published in
    between is lost; events already replayed are skipped by sequence.

    Parameters
    ----------
    notifier:
        Source of events.
    tenant_id:
        Only this tenant's events are streamed.
    after:
        Last sequence number the client has seen (``Last-Event-ID``).
    heartbeat_seconds:
        Idle time after which a keep-alive comment is sent.
    is_disconnected:
        Awaitable check, usually ``request.is_disconnected``; the stream ends
        once it returns ``True``.
    """
    subscription = notifier.subscribe(tenant_id)
    last = after
    try:
        for event in notifier.events_since(tenant_id, after, limit=notifier.buffer_size):
            last = event.sequence
            yield format_event(event)
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            event = await subscription.wait(heartbeat_seconds)
            if event is None:
                yield KEEP_ALIVE
                continue
            if event.sequence <= last:
                continue
            last = event.sequence
            yield format_event(event)
    finally:
        notifier.unsubscribe(subscription)
