"""Conversation queue, ingestion and assignment engine."""

from . import schemas
from .assignment import AssignmentCoordinator
from .ingestion import MessageIngestionGateway
from .models import InboundMessage, MessageDraft
from .notifier import Notifier
from .queue import QueueViewBuilder
from .repository import SqlAlchemyConversationStore
from .service import ConversationService

__all__ = [
    "AssignmentCoordinator",
    "ConversationService",
    "InboundMessage",
    "MessageDraft",
    "MessageIngestionGateway",
    "Notifier",
    "QueueViewBuilder",
    "SqlAlchemyConversationStore",
    "schemas",
]
