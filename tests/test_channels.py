from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
import requests

from app.channels import ProviderConfig, build_adapter, get_adapter, resolve_provider_config
from app.channels.evolution import EvolutionAdapter, event_name, parse_timestamp
from app.channels.whatsapp import WhatsAppCloudAdapter
from app.conversations.errors import ProviderError
from app.conversations.models import (
    ConnectionEvent,
    InboundMessage,
    MessageKind,
    ReceiptEvent,
    SenderRole,
)
from app.conversations.schemas import TenantRecord

SENT_AT = 1709643600  # 2024-03-05 13:00 UTC


class _FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.content = json.dumps(payload).encode() if payload is not None else b""

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self._payload


class _FakeSession:
    def __init__(self, responses: List[_FakeResponse]):
        self._responses = responses
        self.requests: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        if not self._responses:
            raise AssertionError("no more responses queued")
        return self._responses.pop(0)


def _evolution(session: _FakeSession | None = None) -> EvolutionAdapter:
    config = ProviderConfig(api_url="https://evo.example", api_key="evo-key", instance="clinic")
    return EvolutionAdapter(config, session=session or _FakeSession([]))


def _upsert(message: Dict[str, Any], *, from_me: bool = False, jid: str = "5511988887777@s.whatsapp.net"):
    return {
        "event": "messages.upsert",
        "instance": "clinic",
        "data": {
            "key": {"remoteJid": jid, "fromMe": from_me, "id": "3EB0ABC"},
            "pushName": "Maria",
            "message": message,
            "messageType": next(iter(message), None),
            "messageTimestamp": SENT_AT,
        },
    }


def test_event_name_accepts_both_spellings():
    assert event_name({"event": "MESSAGES_UPSERT"}) == "messages.upsert"
    assert event_name({"type": "messages.update"}) == "messages.update"
    assert event_name({}) == ""


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (SENT_AT, datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)),
        (str(SENT_AT), datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)),
        (SENT_AT * 1000, datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)),
        ({"low": SENT_AT, "high": 0}, datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_timestamp(raw, expected):
    assert parse_timestamp(raw) == expected


def test_evolution_decodes_text_message():
    events = _evolution().decode(_upsert({"conversation": "  Olá, preciso de ajuda  "}))

    assert len(events) == 1
    message = events[0]
    assert isinstance(message, InboundMessage)
    assert message.phone == "5511988887777"
    assert message.content == "Olá, preciso de ajuda"
    assert message.kind is MessageKind.TEXT
    assert message.sender_role is SenderRole.CUSTOMER
    assert message.provider_message_id == "3EB0ABC"
    assert message.display_name == "Maria"
    assert message.timestamp == datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)


def test_evolution_decodes_extended_text_and_outbound_echo():
    events = _evolution().decode(
        _upsert({"extendedTextMessage": {"text": "see https://example.com"}}, from_me=True)
    )

    assert events[0].content == "see https://example.com"
    assert events[0].sender_role is SenderRole.AGENT


def test_evolution_decodes_media_with_and_without_caption():
    adapter = _evolution()

    image = adapter.decode(_upsert({"imageMessage": {"caption": "receipt"}}))[0]
    audio = adapter.decode(_upsert({"audioMessage": {"seconds": 4}}))[0]
    document = adapter.decode(_upsert({"documentMessage": {"fileName": "invoice.pdf"}}))[0]

    assert (image.kind, image.content) == (MessageKind.IMAGE, "receipt")
    assert (audio.kind, audio.content) == (MessageKind.AUDIO, "")
    assert (document.kind, document.content) == (MessageKind.DOCUMENT, "invoice.pdf")


def test_evolution_skips_groups_broadcasts_and_empty_messages():
    adapter = _evolution()

    assert adapter.decode(_upsert({"conversation": "hi"}, jid="120363@g.us")) == []
    assert adapter.decode(_upsert({"conversation": "hi"}, jid="status@broadcast")) == []
    assert adapter.decode(_upsert({"reactionMessage": {"text": "👍"}})) == []
    assert adapter.decode({"event": "presence.update", "data": {}}) == []


def test_evolution_decodes_message_lists():
    payload = _upsert({"conversation": "first"})
    second = dict(payload["data"], key={"remoteJid": "5511911112222@s.whatsapp.net", "id": "B"})
    payload["data"] = {"messages": [payload["data"], second]}

    events = _evolution().decode(payload)

    assert [event.phone for event in events] == ["5511988887777", "5511911112222"]


def test_evolution_decodes_receipts_and_connection_updates():
    adapter = _evolution()

    receipts = adapter.decode(
        {
            "event": "MESSAGES_UPDATE",
            "data": [{"keyId": "3EB0ABC", "status": "READ"}, {"status": "DELIVERY_ACK"}],
        }
    )
    connection = adapter.decode(
        {"event": "connection.update", "instance": "clinic", "data": {"state": "open"}}
    )

    assert receipts == [ReceiptEvent(provider_message_id="3EB0ABC", status="read")]
    assert connection == [ConnectionEvent(instance="clinic", state="open")]


def test_evolution_send_text_posts_to_instance():
    session = _FakeSession(
        [_FakeResponse({"key": {"id": "OUT-1"}, "messageTimestamp": str(SENT_AT)})]
    )

    result = _evolution(session).send_text("+55 11 98888-7777", "hello")

    assert result.message_id == "OUT-1"
    assert result.error is None
    assert result.timestamp == datetime(2024, 3, 5, 13, 0, tzinfo=timezone.utc)
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://evo.example/message/sendText/clinic"
    assert request["headers"]["apikey"] == "evo-key"
    assert request["json"] == {"number": "5511988887777", "text": "hello"}


def test_evolution_send_text_reports_failures():
    failing = _evolution(_FakeSession([_FakeResponse({"error": "down"}, status_code=500)]))
    no_id = _evolution(_FakeSession([_FakeResponse({"status": "PENDING"})]))

    assert "500" in failing.send_text("5511988887777", "hi").error
    assert no_id.send_text("5511988887777", "hi").error == "Evolution API response has no message id"


def test_evolution_requires_configuration():
    adapter = EvolutionAdapter(ProviderConfig(instance="clinic"), session=_FakeSession([]))

    result = adapter.send_text("5511988887777", "hi")

    assert result.message_id is None
    assert "not configured" in result.error


def test_evolution_fetch_chats_falls_back_and_filters():
    session = _FakeSession(
        [
            _FakeResponse({"error": "not found"}, status_code=404),
            _FakeResponse(
                [
                    {"id": "5511988887777@s.whatsapp.net"},
                    {"id": "120363@g.us"},
                    {"remoteJid": "5511911112222@s.whatsapp.net"},
                    {"id": "5511988887777@s.whatsapp.net"},
                ]
            ),
        ]
    )

    phones = _evolution(session).fetch_chats()

    assert phones == ["5511988887777", "5511911112222"]
    assert [r["url"] for r in session.requests] == [
        "https://evo.example/chat/fetchChats/clinic",
        "https://evo.example/chat/all/clinic",
    ]


def test_evolution_fetch_messages_sorts_chronologically():
    records = [
        {
            "key": {"remoteJid": "5511988887777@s.whatsapp.net", "id": "late"},
            "message": {"conversation": "second"},
            "messageTimestamp": SENT_AT + 60,
        },
        {
            "key": {"remoteJid": "5511988887777@s.whatsapp.net", "id": "early", "fromMe": True},
            "message": {"conversation": "first"},
            "messageTimestamp": SENT_AT,
        },
    ]
    session = _FakeSession([_FakeResponse({"messages": {"records": records}})])

    messages = _evolution(session).fetch_messages("5511988887777", limit=10)

    assert [m.provider_message_id for m in messages] == ["early", "late"]
    where = json.loads(session.requests[0]["params"]["where"])
    assert where == {"key": {"remoteJid": "5511988887777@s.whatsapp.net"}}


def _cloud_payload():
    return {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"wa_id": "5511988887777", "profile": {"name": "Maria"}}],
                            "messages": [
                                {
                                    "from": "5511988887777",
                                    "id": "wamid.1",
                                    "timestamp": str(SENT_AT),
                                    "type": "text",
                                    "text": {"body": "oi"},
                                },
                                {
                                    "from": "5511988887777",
                                    "id": "wamid.2",
                                    "timestamp": str(SENT_AT),
                                    "type": "image",
                                    "image": {"id": "media-1"},
                                },
                            ],
                            "statuses": [{"id": "wamid.0", "status": "read"}],
                        }
                    }
                ]
            }
        ]
    }


def test_whatsapp_cloud_decodes_messages_and_statuses():
    adapter = WhatsAppCloudAdapter(ProviderConfig())

    text, image, receipt = adapter.decode(_cloud_payload())

    assert (text.phone, text.content, text.display_name) == ("5511988887777", "oi", "Maria")
    assert (image.kind, image.content) == (MessageKind.IMAGE, "")
    assert receipt == ReceiptEvent(provider_message_id="wamid.0", status="read")


def test_whatsapp_cloud_signature_verification():
    body = json.dumps(_cloud_payload()).encode()
    signature = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()
    adapter = WhatsAppCloudAdapter(ProviderConfig(webhook_secret="app-secret"))

    assert adapter.verify_signature(body, {"X-Hub-Signature-256": signature})
    assert not adapter.verify_signature(body, {"X-Hub-Signature-256": "sha256=deadbeef"})
    assert not adapter.verify_signature(body, {})
    assert WhatsAppCloudAdapter(ProviderConfig()).verify_signature(body, {})


def test_whatsapp_cloud_send_text():
    session = _FakeSession([_FakeResponse({"messages": [{"id": "wamid.out"}]})])
    adapter = WhatsAppCloudAdapter(
        ProviderConfig(api_key="token", instance="1234567890"), session=session
    )

    result = adapter.send_text("+55 11 98888-7777", "hello")

    assert result.message_id == "wamid.out"
    request = session.requests[0]
    assert request["url"] == "https://graph.facebook.com/v19.0/1234567890/messages"
    assert request["headers"] == {"Authorization": "Bearer token"}
    assert request["json"]["to"] == "5511988887777"


def test_history_sync_is_unsupported_by_cloud_adapter():
    with pytest.raises(ProviderError):
        WhatsAppCloudAdapter(ProviderConfig()).fetch_chats()


def test_resolve_provider_config_precedence():
    config = resolve_provider_config(
        ProviderConfig(api_key="tenant-key", instance="clinic"),
        ProviderConfig(api_url="https://global.example/", api_key="global-key"),
        {"EVOLUTION_API_URL": "https://env.example", "WHATSAPP_WEBHOOK_SECRET": "env-secret"},
    )

    assert config == ProviderConfig(
        api_url="https://global.example",
        api_key="tenant-key",
        instance="clinic",
        webhook_secret="env-secret",
    )


def test_resolve_provider_config_ignores_blank_values():
    config = resolve_provider_config(
        ProviderConfig(api_url="  ", api_key=""),
        None,
        {"EVOLUTION_API_URL": "https://env.example", "EVOLUTION_API_KEY": "env-key"},
    )

    assert config.api_url == "https://env.example"
    assert config.api_key == "env-key"
    assert not ProviderConfig(api_url="https://x").is_complete


def test_registry_lookup():
    assert get_adapter("evolution") is EvolutionAdapter
    assert get_adapter("WhatsApp-Cloud") is WhatsAppCloudAdapter
    with pytest.raises(KeyError):
        get_adapter("telegram")


def test_build_adapter_uses_tenant_and_global_settings():
    tenant = TenantRecord(
        id=uuid.uuid4(),
        name="Clinic",
        slug="clinic",
        provider="evolution",
        provider_instance="clinic-wa",
    )

    adapter = build_adapter(
        tenant,
        {"evolution_api_url": "https://evo.example", "evolution_api_key": "global-key"},
        env={},
    )

    assert isinstance(adapter, EvolutionAdapter)
    assert adapter.config == ProviderConfig(
        api_url="https://evo.example", api_key="global-key", instance="clinic-wa"
    )
