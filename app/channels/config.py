"""Provider configuration resolution.

Precedence is tenant override, then the ``global_settings`` table, then the
process environment.  Resolution happens once, when an adapter is built, so
business logic never reads provider settings from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

GLOBAL_URL_KEY = "evolution_api_url"
GLOBAL_KEY_KEY = "evolution_api_key"
GLOBAL_WEBHOOK_SECRET_KEY = "whatsapp_webhook_secret"


@dataclass(frozen=True)
class ProviderConfig:
    api_url: str | None = None
    api_key: str | None = None
    instance: str | None = None
    webhook_secret: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.api_url and self.api_key)


def _first(*values: str | None) -> str | None:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


def resolve_provider_config(
    tenant_override: ProviderConfig | None,
    global_default: ProviderConfig | None,
    env: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Merge the three configuration layers field by field."""

    env = os.environ if env is None else env
    tenant_override = tenant_override or ProviderConfig()
    global_default = global_default or ProviderConfig()
    api_url = _first(
        tenant_override.api_url, global_default.api_url, env.get("EVOLUTION_API_URL")
    )
    return ProviderConfig(
        api_url=api_url.rstrip("/") if api_url else None,
        api_key=_first(
            tenant_override.api_key, global_default.api_key, env.get("EVOLUTION_API_KEY")
        ),
        instance=_first(tenant_override.instance, global_default.instance),
        webhook_secret=_first(
            tenant_override.webhook_secret,
            global_default.webhook_secret,
            env.get("WHATSAPP_WEBHOOK_SECRET"),
        ),
    )


def global_config_from_settings(settings: Mapping[str, str]) -> ProviderConfig:
    return ProviderConfig(
        api_url=settings.get(GLOBAL_URL_KEY),
        api_key=settings.get(GLOBAL_KEY_KEY),
        webhook_secret=settings.get(GLOBAL_WEBHOOK_SECRET_KEY),
    )


GLOBAL_SETTING_KEYS = (GLOBAL_URL_KEY, GLOBAL_KEY_KEY, GLOBAL_WEBHOOK_SECRET_KEY)


__all__ = [
    "GLOBAL_SETTING_KEYS",
    "ProviderConfig",
    "global_config_from_settings",
    "resolve_provider_config",
]
