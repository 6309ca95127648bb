"""Runtime helpers for storing tenant-aware request context.

This module exposes a small API around a :class:`contextvars.ContextVar`
that keeps track of the current tenant and caller during a request. The
``TenantContextMiddleware`` populates the context by calling
``set_tenant_context`` and obtains a token that must be passed back to
``reset_tenant_context`` once the response has been sent. Routers call
``get_required_tenant_id`` to scope every engine operation to the caller's
tenant without needing the original HTTP request object.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TypedDict
from uuid import UUID

__all__ = [
    "TenantRuntimeContext",
    "get_current_roles",
    "get_current_tenant_id",
    "get_current_user_id",
    "get_required_tenant_id",
    "reset_tenant_context",
    "set_tenant_context",
]


class TenantRuntimeContext(TypedDict):
    """Values stored in the tenant context during a request."""

    tenant_id: str
    user_id: str
    roles: list[str]


_tenant_context: ContextVar[TenantRuntimeContext | None] = ContextVar(
    "tenant_runtime_context", default=None
)


def set_tenant_context(
    tenant_id: str, user_id: str, roles: list[str] | None = None
) -> Token[TenantRuntimeContext | None]:
    """Persist the tenant metadata in the request-scoped context variable.

    Args:
        tenant_id: Identifier of the tenant extracted from the JWT payload.
        user_id: Identifier of the authenticated attendant or operator.
        roles: Roles granted by the token.

    Returns:
        ``Token`` returned by :meth:`contextvars.ContextVar.set`; pass it to
        :func:`reset_tenant_context` once the response has been sent.
    """

    return _tenant_context.set(
        {"tenant_id": tenant_id, "user_id": user_id, "roles": list(roles or [])}
    )


def reset_tenant_context(token: Token[TenantRuntimeContext | None]) -> None:
    """Restore the tenant context to the state prior to ``set_tenant_context``."""

    _tenant_context.reset(token)


def get_current_tenant_id() -> str | None:
    """Return the tenant identifier for the current execution context.

    Returns ``None`` when the middleware has not populated the context.
    """

    context = _tenant_context.get()
    if context is None:
        return None
    return context["tenant_id"]


def get_current_user_id() -> str | None:
    context = _tenant_context.get()
    if context is None:
        return None
    return context["user_id"]


def get_current_roles() -> list[str]:
    context = _tenant_context.get()
    if context is None:
        return []
    return list(context["roles"])


def get_required_tenant_id(tenant_id: str | UUID | None = None) -> UUID:
    """Return the current tenant identifier or raise ``RuntimeError``."""

    effective = tenant_id or get_current_tenant_id()
    if effective is None:
        raise RuntimeError("Tenant context missing")
    if isinstance(effective, UUID):
        return effective
    try:
        return UUID(str(effective))
    except ValueError as exc:
        raise RuntimeError("Invalid tenant identifier") from exc
