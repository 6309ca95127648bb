"""Queue and assignment API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..conversations import schemas as convo_schemas
from ..security.auth import has_role, require_role
from .dependencies import current_roles, current_user_id, service_context

router = APIRouter(tags=["queue"])


def _ensure_own_or_supervisor(request: Request, attendant_id: UUID | None) -> None:
    if attendant_id is None or has_role(current_roles(request), "supervisor"):
        return
    if attendant_id != current_user_id(request):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Attendants may only act on their own conversations.",
        )


@router.get("/api/queue", response_model=convo_schemas.QueueSnapshot)
def get_queue(
    request: Request,
    sector: list[str] | None = Query(default=None),
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.QueueSnapshot:
    """Unassigned, open conversations grouped by sector with wait statistics."""
    with service_context(request) as (_, service):
        return service.queue.build(sector)


@router.post(
    "/api/conversations/{conversation_id}/claim",
    response_model=convo_schemas.ConversationRecord,
)
def claim_conversation(
    conversation_id: UUID,
    request: Request,
    payload: convo_schemas.ClaimRequest | None = None,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    attendant_id = payload.attendant_id if payload and payload.attendant_id else None
    _ensure_own_or_supervisor(request, attendant_id)
    with service_context(request) as (_, service):
        return service.assignment.claim(
            conversation_id, attendant_id or current_user_id(request)
        )


@router.post(
    "/api/conversations/{conversation_id}/release",
    response_model=convo_schemas.ConversationRecord,
)
def release_conversation(
    conversation_id: UUID,
    request: Request,
    payload: convo_schemas.ReleaseRequest | None = None,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    reason = payload.reason if payload else "manual_release"
    with service_context(request) as (_, service):
        conversation = service.ingestion.get_conversation(conversation_id)
        _ensure_own_or_supervisor(request, conversation.assigned_attendant_id)
        return service.assignment.release(conversation_id, reason)


@router.post(
    "/api/conversations/{conversation_id}/close",
    response_model=convo_schemas.ConversationRecord,
)
def close_conversation(
    conversation_id: UUID,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        conversation = service.ingestion.get_conversation(conversation_id)
        _ensure_own_or_supervisor(request, conversation.assigned_attendant_id)
        return service.assignment.close(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/reopen",
    response_model=convo_schemas.ConversationRecord,
)
def reopen_conversation(
    conversation_id: UUID,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        return service.assignment.reopen(conversation_id)


@router.post(
    "/api/conversations/{conversation_id}/transfer",
    response_model=convo_schemas.ConversationRecord,
)
def transfer_conversation(
    conversation_id: UUID,
    payload: convo_schemas.TransferRequest,
    request: Request,
    role: str = Depends(require_role("attendant")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        conversation = service.ingestion.get_conversation(conversation_id)
        _ensure_own_or_supervisor(request, conversation.assigned_attendant_id)
        return service.assignment.transfer(
            conversation_id, sector=payload.sector, attendant_id=payload.attendant_id
        )


@router.post(
    "/api/conversations/{conversation_id}/block",
    response_model=convo_schemas.ConversationRecord,
)
def block_conversation(
    conversation_id: UUID,
    request: Request,
    payload: convo_schemas.BlockRequest | None = None,
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        return service.assignment.block(
            conversation_id, payload.reason if payload else None
        )


@router.post(
    "/api/conversations/{conversation_id}/unblock",
    response_model=convo_schemas.ConversationRecord,
)
def unblock_conversation(
    conversation_id: UUID,
    request: Request,
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.ConversationRecord:
    with service_context(request) as (_, service):
        return service.assignment.unblock(conversation_id)


@router.get(
    "/api/attendants/suggestion",
    response_model=convo_schemas.AttendantRecord | None,
)
def suggest_attendant(
    request: Request,
    sector: str = Query(...),
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.AttendantRecord | None:
    """Least-loaded attendant currently able to take a conversation in ``sector``."""
    with service_context(request) as (_, service):
        return service.assignment.suggest_attendant(sector)


@router.post(
    "/api/attendants/reconcile-loads",
    response_model=list[convo_schemas.AttendantLoad],
)
def reconcile_loads(
    request: Request,
    role: str = Depends(require_role("admin")),
) -> list[convo_schemas.AttendantLoad]:
    with service_context(request) as (_, service):
        return service.assignment.reconcile_loads()
