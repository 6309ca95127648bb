"""Base abstractions for WhatsApp provider adapters."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import requests

from ..conversations.errors import ProviderError
from ..conversations.models import InboundMessage, ProviderEvent
from .config import ProviderConfig


@dataclass
class SendResult:
    """Outcome of a provider send: a message id or an error."""

    message_id: str | None = None
    error: str | None = None
    timestamp: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Abstract base class encapsulating provider-specific behaviour."""

    #: Lowercase provider identifier used in routes and tenant configuration.
    provider_name: str

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    def decode(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> list[ProviderEvent]:
        """Convert a webhook payload into canonical provider events."""

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True

    @abstractmethod
    def send_text(self, phone: str, text: str) -> SendResult:
        """Send a text message and return the provider message id."""

    def fetch_chats(self) -> list[str]:
        """Return the phones of every remote chat known to the provider."""

        raise ProviderError(f"{self.provider_name} does not support chat history sync")

    def fetch_messages(self, phone: str, limit: int = 50) -> list[InboundMessage]:
        """Return up to ``limit`` historical messages of one remote chat."""

        raise ProviderError(f"{self.provider_name} does not support chat history sync")

    # ------------------------------------------------------------------
    # Helpers

    def _require_config(self) -> ProviderConfig:
        if not self.config.is_complete:
            raise ProviderError(f"{self.provider_name} API URL/key are not configured")
        return self.config

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            self.logger.warning("%s request %s %s failed: %s", self.provider_name, method, url, exc)
            raise ProviderError(str(exc)) from exc
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.provider_name} returned a non-JSON response") from exc


__all__ = ["ProviderAdapter", "SendResult"]
