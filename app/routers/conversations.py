"""Conversation and message API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from ..conversations import schemas as convo_schemas
from ..conversations.models import MessageDraft
from ..conversations.outbound import OutboundDispatcher
from ..security.auth import require_role
from .dependencies import service_context

router = APIRouter(tags=["conversations"])


@router.get(
    "/api/conversations/{conversation_id}",
    response_model=convo_schemas.ConversationRecord,
)
def get_conversation(
    conversation_id: UUID,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        return service.ingestion.get_conversation(conversation_id)


@router.get(
    "/api/conversations/{conversation_id}/messages",
    response_model=convo_schemas.MessageList,
)
def list_messages(
    conversation_id: UUID,
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.MessageList:
    with service_context(request) as (_, service):
        return service.ingestion.list_messages(conversation_id, limit=limit, offset=offset)


@router.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=convo_schemas.IngestResult,
)
def send_message(
    conversation_id: UUID,
    payload: convo_schemas.SendMessageRequest,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.IngestResult:
    """Send ``payload.text`` through the tenant's provider and record it."""
    with service_context(request) as (runtime, service):
        adapter = runtime.adapter_for(runtime.tenant(service.tenant_id))
        return OutboundDispatcher(service, adapter).send_text(conversation_id, payload.text)


@router.post(
    "/api/conversations/{conversation_id}/messages/ingest",
    response_model=convo_schemas.IngestResult,
)
def ingest_message(
    conversation_id: UUID,
    payload: convo_schemas.IngestMessageRequest,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.IngestResult:
    """Record a message produced outside the provider webhook (bots, imports)."""
    draft = MessageDraft(
        content=payload.content,
        sender_role=payload.sender_role,
        kind=payload.kind,
        timestamp=payload.timestamp,
        read=payload.read,
    )
    with service_context(request) as (_, service):
        return service.with_retry(
            lambda: service.ingestion.ingest(
                conversation_id, draft, payload.provider_message_id
            )
        )


@router.post(
    "/api/conversations/{conversation_id}/read",
    response_model=convo_schemas.ConversationRecord,
)
def mark_read(
    conversation_id: UUID,
    request: Request,
    payload: convo_schemas.MarkReadRequest | None = None,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    message_ids = payload.message_ids if payload else None
    with service_context(request) as (_, service):
        return service.ingestion.mark_read(conversation_id, message_ids)
