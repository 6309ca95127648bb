"""Middleware responsible for wiring tenant context into each request."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .auth import get_tenant_context, is_token_auth_configured, token_roles
from .tenant_context import reset_tenant_context, set_tenant_context

__all__ = ["PUBLIC_ENDPOINTS", "TenantContextMiddleware"]

logger = logging.getLogger(__name__)

PUBLIC_ENDPOINTS = frozenset({"/api/health", "/api/version", "/api/metrics"})
#: Provider callbacks authenticate by instance name and signature instead.
PUBLIC_PREFIXES = ("/api/webhooks/",)


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Populate request state and the tenant context from the bearer token."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        if not is_token_auth_configured() or self._should_bypass(request):
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Missing Authorization header."},
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            payload = await get_tenant_context(request)
        except HTTPException as exc:
            headers = dict(exc.headers or {})
            if exc.status_code == status.HTTP_401_UNAUTHORIZED:
                headers.setdefault("WWW-Authenticate", "Bearer")
            logger.debug("Rejected request to %s: %s", request.url.path, exc.detail)
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=headers or None,
            )

        roles = token_roles(payload)
        request.state.tenant_id = payload["tenant_id"]
        request.state.user_id = payload["user_id"]
        request.state.roles = roles

        context_token = set_tenant_context(payload["tenant_id"], payload["user_id"], roles)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(context_token)

    @staticmethod
    def _should_bypass(request: Request) -> bool:
        if request.method.upper() == "OPTIONS":
            return True
        path = request.url.path
        if path in PUBLIC_ENDPOINTS:
            return True
        return path.startswith(PUBLIC_PREFIXES)
