"""Shared router plumbing: engine error mapping and tenant-scoped services."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..conversations.errors import (
    AlreadyClaimed,
    Blocked,
    EngineError,
    InvalidMessage,
    InvalidRequest,
    NotEligible,
    NotFound,
    ProviderError,
    TenantMismatch,
    TransientStoreError,
)
from ..conversations.service import ConversationService
from ..core.runtime import EngineRuntime, get_runtime
from ..core.tenant_context import get_current_user_id, get_required_tenant_id

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[EngineError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    TenantMismatch: status.HTTP_403_FORBIDDEN,
    AlreadyClaimed: status.HTTP_409_CONFLICT,
    NotEligible: status.HTTP_409_CONFLICT,
    Blocked: status.HTTP_423_LOCKED,
    InvalidMessage: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidRequest: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
}


def error_status(exc: EngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def engine_error_response(exc: EngineError) -> JSONResponse:
    body: dict[str, str] = {"detail": str(exc), "code": exc.code}
    if isinstance(exc, NotEligible):
        body["reason"] = exc.reason
    status_code = error_status(exc)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """FastAPI exception handler translating :class:`EngineError` to HTTP."""

    assert isinstance(exc, EngineError)
    response = engine_error_response(exc)
    if response.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return response


def _tenant_id(request: Request) -> UUID:
    try:
        return get_required_tenant_id(getattr(request.state, "tenant_id", None))
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def current_user_id(request: Request) -> UUID:
    """Identifier of the authenticated caller (the attendant id for attendants)."""

    candidate = getattr(request.state, "user_id", None) or get_current_user_id()
    try:
        return UUID(str(candidate))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier in token.",
        ) from exc


def current_roles(request: Request) -> list[str]:
    return list(getattr(request.state, "roles", None) or [])


@contextmanager
def service_context(request: Request) -> Iterator[tuple[EngineRuntime, ConversationService]]:
    """Yield the runtime and a :class:`ConversationService` for the caller's tenant."""

    tenant_id = _tenant_id(request)
    runtime = get_runtime()
    yield runtime, runtime.service(tenant_id)


__all__ = [
    "ERROR_STATUS",
    "current_roles",
    "current_user_id",
    "engine_error_handler",
    "engine_error_response",
    "error_status",
    "service_context",
]
