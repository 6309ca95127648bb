"""Webhook ingestion routes for WhatsApp providers."""

from __future__ import annotations

import json
import logging
from collections import Counter

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ..channels import get_adapter
from ..conversations.errors import EngineError
from ..conversations.models import ProviderEvent
from ..conversations.service import ConversationService
from ..core.config import get_settings
from ..core.limiter import limiter
from ..core.runtime import get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


def _webhook_rate_limit() -> str:
    return get_settings().webhook_rate_limit


def _process_events(service: ConversationService, events: list[ProviderEvent]) -> Counter:
    outcomes: Counter = Counter()
    for event in events:
        try:
            outcomes[service.process_event(event)] += 1
        except EngineError as exc:
            if exc.retryable:
                raise
            outcomes["errors"] += 1
            logger.warning(
                "Dropping %s for tenant %s: %s", type(event).__name__, service.tenant_id, exc
            )
    return outcomes


@router.post("/api/webhooks/{provider}/{instance}")
@limiter.limit(_webhook_rate_limit)
async def receive_webhook(provider: str, instance: str, request: Request) -> dict[str, int]:
    """Decode a provider callback and feed its events to the tenant's engine.

    Retryable store failures surface as ``503`` so the provider redelivers;
    redelivery is harmless because ingestion is idempotent per provider
    message id.
    """
    body_bytes = await request.body()
    try:
        payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(
            status_code=400, detail=f"Invalid JSON payload: {exc}"
        ) from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook payload must be an object")

    try:
        adapter_cls = get_adapter(provider)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    runtime = get_runtime()
    tenant = await run_in_threadpool(runtime.tenant_by_instance, instance)
    if get_adapter(tenant.provider) is not adapter_cls:
        raise HTTPException(
            status_code=404,
            detail=f"Instance {instance!r} is not served by provider {provider!r}",
        )
    adapter = await run_in_threadpool(runtime.adapter_for, tenant)
    if not adapter.verify_signature(body_bytes, request.headers):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    events = adapter.decode(payload, request.headers)
    outcomes = await run_in_threadpool(_process_events, runtime.service(tenant.id), events)
    logger.debug("Webhook %s/%s processed: %s", provider, instance, dict(outcomes))
    return {"received": len(events), **outcomes}
