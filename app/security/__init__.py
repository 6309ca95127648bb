"""Security utilities exposed for convenience."""

from .auth import (
    get_current_tenant_uuid,
    get_current_token_payload,
    get_current_user_uuid,
    has_role,
    require_role,
)
from .tokens import (
    JWTSettings,
    create_access_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "create_access_token",
    "get_current_tenant_uuid",
    "get_current_token_payload",
    "get_current_user_uuid",
    "get_jwt_settings",
    "has_role",
    "require_role",
    "reset_jwt_settings_cache",
]
