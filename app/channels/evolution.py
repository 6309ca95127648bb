"""Evolution API adapter (Baileys-based WhatsApp gateway).

Evolution payloads are loosely shaped: event names come in two spellings,
``data`` is either one object or a list, and message content hides under
several keys depending on the message type.  Everything is decoded here into
:class:`~app.conversations.models.InboundMessage`, :class:`ReceiptEvent` and
:class:`ConnectionEvent` values.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.errors import ProviderError
from ..conversations.models import (
    ConnectionEvent,
    InboundMessage,
    MessageKind,
    ProviderEvent,
    ReceiptEvent,
    SenderRole,
    normalize_phone,
)
from .base import ProviderAdapter, SendResult

MESSAGES_UPSERT = "messages.upsert"
MESSAGES_UPDATE = "messages.update"
CONNECTION_UPDATE = "connection.update"

_MEDIA_KEYS: tuple[tuple[str, MessageKind], ...] = (
    ("imageMessage", MessageKind.IMAGE),
    ("videoMessage", MessageKind.VIDEO),
    ("documentMessage", MessageKind.DOCUMENT),
    ("documentWithCaptionMessage", MessageKind.DOCUMENT),
    ("audioMessage", MessageKind.AUDIO),
)


def event_name(payload: Mapping[str, Any]) -> str:
    """``MESSAGES_UPSERT`` and ``messages.upsert`` both become the latter."""

    raw = payload.get("event") or payload.get("type") or ""
    return str(raw).strip().lower().replace("_", ".")


def _items(data: Any) -> list[Mapping[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, Mapping)]
    if isinstance(data, Mapping):
        nested = data.get("messages")
        if isinstance(nested, list):
            return [item for item in nested if isinstance(item, Mapping)]
        return [data]
    return []


def _skip_jid(jid: str) -> bool:
    return jid.endswith("@g.us") or jid.endswith("@broadcast")


def parse_timestamp(value: Any) -> datetime:
    """Convert a ``messageTimestamp`` (seconds, maybe stringified) to UTC."""

    if isinstance(value, Mapping):  # protobuf Long: {"low": ..., "high": ...}
        value = value.get("low")
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)
    if seconds > 10**11:  # milliseconds
        seconds //= 1000
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def message_kind(message: Mapping[str, Any]) -> MessageKind:
    for key, kind in _MEDIA_KEYS:
        if message.get(key):
            return kind
    return MessageKind.TEXT


def message_content(message: Mapping[str, Any]) -> str:
    """First non-empty text in the order the provider fills them."""

    candidates = [
        message.get("conversation"),
        (message.get("extendedTextMessage") or {}).get("text"),
        (message.get("imageMessage") or {}).get("caption"),
        (message.get("videoMessage") or {}).get("caption"),
        (message.get("documentMessage") or {}).get("caption"),
        (
            ((message.get("documentWithCaptionMessage") or {}).get("message") or {}).get(
                "documentMessage"
            )
            or {}
        ).get("caption"),
        (message.get("documentMessage") or {}).get("fileName"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def decode_message(item: Mapping[str, Any]) -> InboundMessage | None:
    """Decode one ``messages.upsert`` item; ``None`` when it carries no message."""

    key = item.get("key") or {}
    jid = key.get("remoteJid") or item.get("remoteJid") or ""
    if not jid or _skip_jid(jid):
        return None
    phone = normalize_phone(jid)
    if not phone:
        return None
    message = item.get("message") or {}
    kind = message_kind(message)
    content = message_content(message)
    if not content and kind is MessageKind.TEXT:
        # reactions, protocol messages, edits without text
        return None
    return InboundMessage(
        phone=phone,
        content=content,
        kind=kind,
        sender_role=SenderRole.AGENT if key.get("fromMe") else SenderRole.CUSTOMER,
        provider_message_id=key.get("id") or item.get("id"),
        timestamp=parse_timestamp(item.get("messageTimestamp")),
        display_name=item.get("pushName"),
        metadata={"remote_jid": jid, "message_type": item.get("messageType")},
    )


def decode_receipt(item: Mapping[str, Any]) -> ReceiptEvent | None:
    message_id = (item.get("key") or {}).get("id") or item.get("keyId") or item.get("messageId")
    status = item.get("status")
    if not message_id or not status:
        return None
    return ReceiptEvent(provider_message_id=str(message_id), status=str(status).lower())


class EvolutionAdapter(ProviderAdapter):
    provider_name = "evolution"

    def _headers(self) -> dict[str, str]:
        return {"apikey": self.config.api_key or "", "Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        config = self._require_config()
        if not config.instance:
            raise ProviderError("Evolution instance is not configured")
        return f"{config.api_url}/{path.strip('/')}/{config.instance}"

    # Webhooks -----------------------------------------------------------------
    def decode(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> list[ProviderEvent]:
        name = event_name(payload)
        data = payload.get("data")
        events: list[ProviderEvent] = []
        if name == MESSAGES_UPSERT:
            for item in _items(data):
                decoded = decode_message(item)
                if decoded is not None:
                    events.append(decoded)
        elif name == MESSAGES_UPDATE:
            for item in _items(data):
                receipt = decode_receipt(item)
                if receipt is not None:
                    events.append(receipt)
        elif name == CONNECTION_UPDATE:
            state = None
            if isinstance(data, Mapping):
                state = data.get("state") or data.get("status")
            events.append(
                ConnectionEvent(
                    instance=payload.get("instance") or payload.get("instanceName"),
                    state=str(state or "unknown"),
                )
            )
        else:
            self.logger.debug("Ignoring Evolution event %r", name or None)
        return events

    # Outbound -------------------------------------------------------------------
    def send_text(self, phone: str, text: str) -> SendResult:
        try:
            payload = self._request(
                "POST",
                self._url("message/sendText"),
                headers=self._headers(),
                json={"number": normalize_phone(phone), "text": text},
            )
        except ProviderError as exc:
            return SendResult(error=str(exc))
        payload = payload or {}
        message_id = (payload.get("key") or {}).get("id")
        if not message_id:
            return SendResult(error="Evolution API response has no message id", raw=payload)
        return SendResult(
            message_id=message_id,
            timestamp=parse_timestamp(payload.get("messageTimestamp"))
            if payload.get("messageTimestamp")
            else None,
            raw=payload,
        )

    # History sync ------------------------------------------------------------------
    def fetch_chats(self) -> list[str]:
        chats: Any = None
        last_error: ProviderError | None = None
        for path in ("chat/fetchChats", "chat/all"):
            try:
                chats = self._request("GET", self._url(path), headers=self._headers())
                break
            except ProviderError as exc:
                last_error = exc
        if chats is None:
            raise last_error or ProviderError("Evolution API returned no chats")

        records: Iterable[Any] = chats if isinstance(chats, list) else list(chats.values())
        phones: list[str] = []
        for chat in records:
            if not isinstance(chat, Mapping):
                continue
            data = chat.get("chat") or chat
            jid = data.get("id") or data.get("jid") or data.get("remoteJid") or ""
            if not jid or _skip_jid(jid):
                continue
            phone = normalize_phone(jid)
            if phone and phone not in phones:
                phones.append(phone)
        return phones

    def fetch_messages(self, phone: str, limit: int = 50) -> list[InboundMessage]:
        jid = f"{normalize_phone(phone)}@s.whatsapp.net"
        params = {"where": json.dumps({"key": {"remoteJid": jid}}), "limit": str(limit)}
        payload = self._request(
            "GET", self._url("message/fetchMessages"), headers=self._headers(), params=params
        )
        if isinstance(payload, Mapping):
            nested = payload.get("messages")
            if isinstance(nested, Mapping):
                items = nested.get("records") or []
            else:
                items = list(payload.values())
        else:
            items = payload or []
        messages = [
            decoded
            for decoded in (decode_message(item) for item in items if isinstance(item, Mapping))
            if decoded is not None
        ]
        messages.sort(key=lambda message: message.timestamp)
        return messages[:limit]


__all__ = [
    "CONNECTION_UPDATE",
    "EvolutionAdapter",
    "MESSAGES_UPDATE",
    "MESSAGES_UPSERT",
    "decode_message",
    "decode_receipt",
    "event_name",
    "message_content",
    "message_kind",
    "parse_timestamp",
]
