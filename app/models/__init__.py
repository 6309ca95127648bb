"""SQLAlchemy declarative base and the engine's persistent models.

This package hosts the SQLAlchemy models used across the backend.  It exposes a
single declarative ``Base`` class that other modules can import when creating
tables or writing migrations in Python.  Individual models live in dedicated
modules within this package.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export the models for convenience so callers can import them via
# ``from app.models import Conversation`` instead of touching private modules.
from .tenant import GlobalSetting, Tenant
from .attendant import Attendant
from .conversation import Conversation, Message


__all__ = [
    "Attendant",
    "Base",
    "Conversation",
    "GlobalSetting",
    "Message",
    "Tenant",
]
