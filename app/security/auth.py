"""JWT-backed authorization dependencies for FastAPI routers."""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from app.core.auth import TenantTokenPayload, get_tenant_context, token_roles

_ROLE_LEVELS = {"attendant": 0, "supervisor": 1, "admin": 2}


async def get_current_token_payload(request: Request) -> TenantTokenPayload:
    """Decode and validate the bearer token from ``request``."""

    payload = await get_tenant_context(request)
    token_type = payload.get("type")
    if token_type and token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required.",
        )
    return payload


def get_current_tenant_uuid(
    payload: TenantTokenPayload = Depends(get_current_token_payload),
) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload["tenant_id"]))
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid tenant identifier in token.",
        ) from exc


def get_current_user_uuid(
    payload: TenantTokenPayload = Depends(get_current_token_payload),
) -> uuid.UUID:
    try:
        return uuid.UUID(str(payload["user_id"]))
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier in token.",
        ) from exc


def highest_role(roles: list[str]) -> str | None:
    ranked = sorted({role for role in roles if role in _ROLE_LEVELS}, key=_ROLE_LEVELS.get)
    return ranked[-1] if ranked else None


def has_role(roles: list[str], min_role: str) -> bool:
    highest = highest_role(roles)
    return highest is not None and _ROLE_LEVELS[highest] >= _ROLE_LEVELS[min_role]


def require_role(min_role: str) -> Callable[..., str]:
    """Create a dependency ensuring the caller has at least ``min_role`` privileges."""

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    async def dependency(
        payload: TenantTokenPayload = Depends(get_current_token_payload),
    ) -> str:
        highest = highest_role(token_roles(payload))
        if highest is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No roles assigned to user.",
            )
        if _ROLE_LEVELS[highest] < _ROLE_LEVELS[min_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role.",
            )
        return highest

    return dependency


__all__ = [
    "get_current_tenant_uuid",
    "get_current_token_payload",
    "get_current_user_uuid",
    "has_role",
    "highest_role",
    "require_role",
]
