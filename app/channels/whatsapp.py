"""WhatsApp Cloud API adapter."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.errors import ProviderError
from ..conversations.models import (
    InboundMessage,
    MessageKind,
    ProviderEvent,
    ReceiptEvent,
    SenderRole,
    normalize_phone,
)
from .base import ProviderAdapter, SendResult

GRAPH_API_URL = "https://graph.facebook.com/v19.0"

_MEDIA_TYPES = {
    "image": MessageKind.IMAGE,
    "video": MessageKind.VIDEO,
    "audio": MessageKind.AUDIO,
    "voice": MessageKind.AUDIO,
    "document": MessageKind.DOCUMENT,
}


def _sent_at(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


class WhatsAppCloudAdapter(ProviderAdapter):
    """Meta's hosted API.  ``config.instance`` is the phone number id."""

    provider_name = "whatsapp_cloud"

    def verify_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        secret = self.config.webhook_secret
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256") or headers.get("x-hub-signature-256")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        expected = f"sha256={digest}"
        return hmac.compare_digest(received, expected)

    def decode(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> list[ProviderEvent]:
        events: list[ProviderEvent] = []
        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                value = change.get("value", {})
                contacts = {c.get("wa_id"): c for c in value.get("contacts", [])}
                for message in value.get("messages", []):
                    decoded = self._decode_message(message, contacts)
                    if decoded is not None:
                        events.append(decoded)
                for status in value.get("statuses", []):
                    if status.get("id") and status.get("status"):
                        events.append(
                            ReceiptEvent(
                                provider_message_id=str(status["id"]),
                                status=str(status["status"]).lower(),
                            )
                        )
        return events

    def _decode_message(
        self, message: Mapping[str, Any], contacts: Mapping[str, Any]
    ) -> InboundMessage | None:
        sender_id = message.get("from") or ""
        phone = normalize_phone(sender_id)
        if not phone:
            return None
        contact = contacts.get(sender_id, {})
        message_type = message.get("type")
        kind = MessageKind.TEXT
        text = ""
        if message_type == "text":
            text = (message.get("text") or {}).get("body", "")
        elif message_type in _MEDIA_TYPES:
            kind = _MEDIA_TYPES[message_type]
            media = message.get(message_type, {})
            text = media.get("caption") or media.get("filename") or ""
        elif message_type == "interactive":
            interactive = message.get("interactive", {})
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            text = reply.get("title") or ""
        elif message_type == "button":
            text = (message.get("button") or {}).get("text", "")
        if not text.strip() and kind is MessageKind.TEXT:
            return None
        return InboundMessage(
            phone=phone,
            content=text.strip(),
            kind=kind,
            sender_role=SenderRole.CUSTOMER,
            provider_message_id=message.get("id"),
            timestamp=_sent_at(message.get("timestamp")),
            display_name=(contact.get("profile") or {}).get("name"),
            metadata={"message_type": message_type},
        )

    def send_text(self, phone: str, text: str) -> SendResult:
        if not self.config.api_key or not self.config.instance:
            return SendResult(error="WhatsApp Cloud access token/phone number id are not configured")
        base_url = self.config.api_url or GRAPH_API_URL
        try:
            payload = self._request(
                "POST",
                f"{base_url}/{self.config.instance}/messages",
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                json={
                    "messaging_product": "whatsapp",
                    "to": normalize_phone(phone),
                    "type": "text",
                    "text": {"body": text},
                },
            )
        except ProviderError as exc:
            return SendResult(error=str(exc))
        messages = (payload or {}).get("messages") or []
        if not messages or not messages[0].get("id"):
            return SendResult(error="WhatsApp Cloud response has no message id", raw=payload or {})
        return SendResult(message_id=messages[0]["id"], raw=payload)


__all__ = ["GRAPH_API_URL", "WhatsAppCloudAdapter"]
