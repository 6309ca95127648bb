"""Helpers for issuing tenant access tokens (seeding, tooling and tests)."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
from collections.abc import Iterable
from functools import lru_cache
from typing import Any

import jwt


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Runtime configuration for issuing access tokens."""

    secret: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    access_token_ttl_seconds: int = 60 * 60 * 8  # one shift


@lru_cache(maxsize=1)
def get_jwt_settings() -> JWTSettings:
    """Load settings from the environment."""

    secret = os.getenv("TENANT_TOKEN_SECRET")
    issuer = os.getenv("TENANT_TOKEN_ISSUER")
    audience = os.getenv("TENANT_TOKEN_AUDIENCE")
    algorithm = os.getenv("TENANT_TOKEN_ALGORITHM", "HS256")
    if not secret or not issuer or not audience:
        raise RuntimeError(
            "TENANT_TOKEN_SECRET, TENANT_TOKEN_ISSUER and TENANT_TOKEN_AUDIENCE must be set.",
        )
    access_ttl = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", str(60 * 60 * 8)))
    return JWTSettings(
        secret=secret,
        issuer=issuer,
        audience=audience,
        algorithm=algorithm,
        access_token_ttl_seconds=access_ttl,
    )


def reset_jwt_settings_cache() -> None:
    """Clear cached JWT settings; useful in tests when env vars change."""

    get_jwt_settings.cache_clear()


def create_access_token(
    tenant_id: Any,
    user_id: Any,
    roles: Iterable[str] = ("attendant",),
    *,
    name: str | None = None,
    settings: JWTSettings | None = None,
    now: dt.datetime | None = None,
) -> str:
    """Sign an access token for ``user_id`` within ``tenant_id``."""

    settings = settings or get_jwt_settings()
    issued_at = now or dt.datetime.now(dt.timezone.utc)
    claims: dict[str, Any] = {
        "tenant_id": str(tenant_id),
        "user_id": str(user_id),
        "roles": list(roles),
        "type": "access",
        "iss": settings.issuer,
        "aud": settings.audience,
        "iat": int(issued_at.timestamp()),
        "exp": int(
            (issued_at + dt.timedelta(seconds=settings.access_token_ttl_seconds)).timestamp()
        ),
    }
    if name:
        claims["name"] = name
    return jwt.encode(claims, settings.secret, algorithm=settings.algorithm)


__all__ = [
    "JWTSettings",
    "create_access_token",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
