from __future__ import annotations

from datetime import timedelta

import pytest

from app.channels import SendResult
from app.conversations.errors import Blocked, InvalidMessage, ProviderError
from app.conversations.models import InboundMessage, SenderRole
from app.conversations.notifier import EventType
from app.conversations.outbound import MAX_TEXT_LENGTH, OutboundDispatcher


class _FakeAdapter:
    provider_name = "fake"

    def __init__(self, result: SendResult | None = None):
        self.result = result or SendResult(message_id="OUT-1")
        self.sent: list[tuple[str, str]] = []

    def send_text(self, phone: str, text: str) -> SendResult:
        self.sent.append((phone, text))
        return self.result


def test_send_text_records_read_agent_message(service, factory, tenant_id, notifier):
    conversation = factory.conversation(tenant_id, phone="5511988887777", unread_count=2)
    adapter = _FakeAdapter()

    result = OutboundDispatcher(service, adapter).send_text(conversation, "  On my way  ")

    assert adapter.sent == [("5511988887777", "On my way")]
    assert result.created is True
    assert result.message.provider_message_id == "OUT-1"
    assert result.message.sender_role == SenderRole.AGENT.value
    assert result.message.read is True
    assert result.conversation.last_message == "On my way"
    assert result.conversation.unread_count == 2
    assert notifier.events_since(tenant_id)[-1].type is EventType.MESSAGE_INGESTED


def test_send_text_uses_provider_timestamp(service, factory, tenant_id, clock):
    conversation = factory.conversation(tenant_id)
    sent_at = clock.now - timedelta(seconds=5)
    adapter = _FakeAdapter(SendResult(message_id="OUT-2", timestamp=sent_at))

    result = OutboundDispatcher(service, adapter).send_text(conversation, "hello")

    assert result.message.timestamp == sent_at


def test_webhook_echo_of_sent_message_is_a_duplicate(service, factory, tenant_id, clock):
    conversation = factory.conversation(tenant_id, phone="5511988887777")
    OutboundDispatcher(service, _FakeAdapter()).send_text(conversation, "hello")

    echo = service.process_inbound(
        InboundMessage(
            phone="5511988887777",
            content="hello",
            sender_role=SenderRole.AGENT,
            provider_message_id="OUT-1",
            timestamp=clock.now,
        )
    )

    assert echo.created is False
    assert echo.message.conversation_id == conversation
    assert service.ingestion.list_messages(conversation).total == 1


def test_blocked_conversation_is_not_sent(service, factory, tenant_id):
    conversation = factory.conversation(tenant_id, blocked=True, status="blocked")
    adapter = _FakeAdapter()

    with pytest.raises(Blocked):
        OutboundDispatcher(service, adapter).send_text(conversation, "hello")
    assert adapter.sent == []


def test_provider_failure_stores_nothing(service, factory, tenant_id):
    conversation = factory.conversation(tenant_id)
    adapter = _FakeAdapter(SendResult(error="instance disconnected"))

    with pytest.raises(ProviderError, match="instance disconnected"):
        OutboundDispatcher(service, adapter).send_text(conversation, "hello")
    assert service.ingestion.list_messages(conversation).total == 0


@pytest.mark.parametrize("text", ["", "   ", "x" * (MAX_TEXT_LENGTH + 1)])
def test_invalid_text_is_rejected(service, factory, tenant_id, text):
    conversation = factory.conversation(tenant_id)
    adapter = _FakeAdapter()

    with pytest.raises(InvalidMessage):
        OutboundDispatcher(service, adapter).send_text(conversation, text)
    assert adapter.sent == []
