"""Chat history sync job routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..conversations import schemas as convo_schemas
from ..security.auth import require_role
from ..sync import SyncJob
from .dependencies import service_context

router = APIRouter(tags=["sync"])


def _view(job: SyncJob) -> convo_schemas.SyncJobView:
    return convo_schemas.SyncJobView(
        job_id=job.job_id,
        tenant_id=job.tenant_id,
        status=job.status,
        chats=job.chats,
        messages=job.messages,
        duplicates=job.duplicates,
        errors=job.errors,
        error=job.error,
        created_at=job.created_at,
        finished_at=job.finished_at,
    )


@router.post(
    "/api/sync",
    response_model=convo_schemas.SyncJobView,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_sync(
    request: Request,
    payload: convo_schemas.SyncRequest | None = None,
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.SyncJobView:
    """Queue a history sync of the tenant's remote chats."""
    payload = payload or convo_schemas.SyncRequest()
    with service_context(request) as (runtime, service):
        adapter = runtime.adapter_for(runtime.tenant(service.tenant_id))
        job = runtime.sync.start(
            service,
            adapter,
            phones=payload.phones,
            messages_per_chat=payload.messages_per_chat
            or runtime.settings.sync_messages_per_chat,
        )
        return _view(job)


@router.get("/api/sync", response_model=list[convo_schemas.SyncJobView])
def list_sync_jobs(
    request: Request,
    role: str = Depends(require_role("supervisor")),
) -> list[convo_schemas.SyncJobView]:
    with service_context(request) as (runtime, service):
        jobs = sorted(runtime.sync.list(service.tenant_id), key=lambda job: job.created_at)
        return [_view(job) for job in jobs]


@router.get("/api/sync/{job_id}", response_model=convo_schemas.SyncJobView)
def get_sync_job(
    job_id: UUID,
    request: Request,
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.SyncJobView:
    with service_context(request) as (runtime, service):
        job = runtime.sync.get(job_id, service.tenant_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Sync job not found")
    return _view(job)


@router.post("/api/sync/{job_id}/cancel", response_model=convo_schemas.SyncJobView)
def cancel_sync_job(
    job_id: UUID,
    request: Request,
    role: str = Depends(require_role("supervisor")),
) -> convo_schemas.SyncJobView:
    with service_context(request) as (runtime, service):
        job = runtime.sync.get(job_id, service.tenant_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Sync job not found")
        runtime.sync.cancel(job_id)
    return _view(job)
