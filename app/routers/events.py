"""Change feed routes: cursor polling and a live SSE stream."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import StreamingResponse

from ..conversations import schemas as convo_schemas
from ..security.auth import require_role
from ..sse_utils import sse_event_stream
from .dependencies import service_context

router = APIRouter(tags=["events"])


@router.get("/api/events", response_model=convo_schemas.EventPage)
def poll_events(
    request: Request,
    after: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.EventPage:
    """Events newer than ``after``; clients pass back the last sequence they saw."""
    with service_context(request) as (runtime, service):
        events = runtime.notifier.events_since(service.tenant_id, after, limit=limit)
        return convo_schemas.EventPage(
            events=[convo_schemas.EventView(**event.to_dict()) for event in events],
            latest_sequence=runtime.notifier.tenant_sequence(service.tenant_id),
            poll_interval_seconds=runtime.settings.notifier_poll_interval_seconds,
        )


@router.get("/api/events/stream")
def stream_events(
    request: Request,
    after: int = Query(default=0, ge=0),
    last_event_id: int | None = Header(default=None),
    role: str = Depends(require_role("attendant")),
) -> StreamingResponse:
    with service_context(request) as (runtime, service):
        stream = sse_event_stream(
            runtime.notifier,
            service.tenant_id,
            after=max(after, last_event_id or 0),
            is_disconnected=request.is_disconnected,
        )
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
