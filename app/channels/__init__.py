"""Provider adapter registry for WhatsApp gateways."""

from __future__ import annotations

from collections.abc import Mapping

import requests

from ..conversations.schemas import TenantRecord
from .base import ProviderAdapter, SendResult
from .config import (
    GLOBAL_SETTING_KEYS,
    ProviderConfig,
    global_config_from_settings,
    resolve_provider_config,
)
from .evolution import EvolutionAdapter
from .whatsapp import WhatsAppCloudAdapter

_REGISTRY: dict[str, type[ProviderAdapter]] = {}


def register_adapter(adapter: type[ProviderAdapter]) -> None:
    """Register a provider adapter class in the global registry."""
    _REGISTRY[adapter.provider_name] = adapter


def get_adapter(name: str) -> type[ProviderAdapter]:
    """Retrieve an adapter class for ``name`` or raise ``KeyError``."""
    normalized = name.lower().replace("-", "_")
    if normalized not in _REGISTRY:
        raise KeyError(f"Provider '{name}' is not configured")
    return _REGISTRY[normalized]


def build_adapter(
    tenant: TenantRecord,
    global_settings: Mapping[str, str],
    *,
    session: requests.Session | None = None,
    timeout: float = 10.0,
    env: Mapping[str, str] | None = None,
) -> ProviderAdapter:
    """Instantiate the tenant's adapter with its resolved configuration."""

    adapter_cls = get_adapter(tenant.provider)
    config = resolve_provider_config(
        ProviderConfig(
            api_url=tenant.provider_api_url,
            api_key=tenant.provider_api_key,
            instance=tenant.provider_instance,
        ),
        global_config_from_settings(global_settings),
        env,
    )
    return adapter_cls(config, session=session, timeout=timeout)


# Pre-register built-in adapters
register_adapter(EvolutionAdapter)
register_adapter(WhatsAppCloudAdapter)

__all__ = [
    "GLOBAL_SETTING_KEYS",
    "ProviderAdapter",
    "ProviderConfig",
    "SendResult",
    "build_adapter",
    "get_adapter",
    "register_adapter",
    "resolve_provider_config",
]
