"""Error taxonomy of the queue and assignment engine.

Every error carries a stable ``code`` so callers (and the HTTP layer) can tell
routine outcomes such as :class:`AlreadyClaimed` apart from real failures.
"""

from __future__ import annotations

from uuid import UUID


class EngineError(RuntimeError):
    """Base class for errors raised by the engine."""

    code = "engine_error"
    #: Whether retrying the same call can succeed without any state change.
    retryable = False


class NotFound(EngineError):
    code = "not_found"


class ConversationNotFound(NotFound):
    code = "conversation_not_found"

    def __init__(self, conversation_id: UUID | str) -> None:
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class AttendantNotFound(NotFound):
    code = "attendant_not_found"

    def __init__(self, attendant_id: UUID | str) -> None:
        super().__init__(f"Attendant {attendant_id} not found")
        self.attendant_id = attendant_id


class TenantNotFound(NotFound):
    code = "tenant_not_found"


class TenantMismatch(EngineError):
    code = "tenant_mismatch"


class AlreadyClaimed(EngineError):
    """Lost the claim race or the conversation is already assigned.

    Expected control flow: refresh the queue and pick another conversation.
    """

    code = "already_claimed"

    def __init__(self, conversation_id: UUID | str) -> None:
        super().__init__(f"Conversation {conversation_id} is already claimed")
        self.conversation_id = conversation_id


class NotEligible(EngineError):
    """An eligibility rule rejected the claim; ``reason`` names the rule."""

    code = "not_eligible"

    INACTIVE = "inactive"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"
    CAPACITY = "capacity"
    SECTOR_MISMATCH = "sector_mismatch"
    CONVERSATION_CLOSED = "conversation_closed"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or f"Not eligible: {reason}")
        self.reason = reason


class Blocked(EngineError):
    code = "blocked"

    def __init__(self, conversation_id: UUID | str) -> None:
        super().__init__(f"Conversation {conversation_id} is blocked")
        self.conversation_id = conversation_id


class InvalidMessage(EngineError, ValueError):
    code = "invalid_message"


class InvalidRequest(EngineError, ValueError):
    code = "invalid_request"


class TransientStoreError(EngineError):
    """The store failed in a way that may succeed on retry."""

    code = "transient_store_error"
    retryable = True


class ProviderError(EngineError):
    """The WhatsApp provider rejected or failed a request."""

    code = "provider_error"


__all__ = [
    "AlreadyClaimed",
    "AttendantNotFound",
    "Blocked",
    "ConversationNotFound",
    "EngineError",
    "InvalidMessage",
    "InvalidRequest",
    "NotEligible",
    "NotFound",
    "ProviderError",
    "TenantMismatch",
    "TenantNotFound",
    "TransientStoreError",
]
