"""Persistence layer for conversations, messages and attendants.

All engine state lives here.  Services open a :meth:`transaction` and compose
the primitives below; every primitive that protects shared state is a single
conditional ``UPDATE`` whose affected row count tells the caller whether the
guard held.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.models import Attendant, Conversation, GlobalSetting, Message, Tenant

from . import schemas
from .errors import TransientStoreError
from .models import QUEUEABLE_STATUSES, utc, utcnow

logger = logging.getLogger(__name__)

_TENANTS = Tenant.__table__
_SETTINGS = GlobalSetting.__table__
_ATTENDANTS = Attendant.__table__
_CONVERSATIONS = Conversation.__table__
_MESSAGES = Message.__table__


class StoreTransaction(Protocol):
    """Primitives available inside one atomic unit of work."""

    # Tenants and settings ---------------------------------------------------
    def get_tenant(self, tenant_id: UUID) -> Optional[schemas.TenantRecord]: ...

    def get_tenant_by_instance(self, instance: str) -> Optional[schemas.TenantRecord]: ...

    def get_global_settings(self, keys: Iterable[str]) -> Dict[str, str]: ...

    # Conversations ----------------------------------------------------------
    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.ConversationRecord]: ...

    def find_conversation_by_phone(
        self, tenant_id: UUID, phone: str
    ) -> Optional[schemas.ConversationRecord]: ...

    def insert_conversation_if_absent(
        self, tenant_id: UUID, phone: str, *, display_name: Optional[str], sector: str
    ) -> bool: ...

    def update_display_name(self, conversation_id: UUID, display_name: str) -> None: ...

    def list_unassigned(
        self, tenant_id: UUID, sectors: Optional[Sequence[str]] = None
    ) -> List[schemas.ConversationRecord]: ...

    def list_assigned_to(self, attendant_id: UUID) -> List[schemas.ConversationRecord]: ...

    def apply_summary(self, conversation_id: UUID, content: str, timestamp: datetime) -> bool: ...

    def increment_unread(self, conversation_id: UUID) -> None: ...

    def recount_unread(self, conversation_id: UUID) -> int: ...

    def try_assign(self, conversation_id: UUID, attendant_id: UUID, now: datetime) -> bool: ...

    def try_unassign(
        self, conversation_id: UUID, attendant_id: UUID, reason: str, now: datetime
    ) -> bool: ...

    def set_status(self, conversation_id: UUID, status: str, now: datetime) -> None: ...

    def set_sector(self, conversation_id: UUID, sector: str, now: datetime) -> None: ...

    def set_blocked(
        self, conversation_id: UUID, blocked: bool, reason: Optional[str], now: datetime
    ) -> bool: ...

    # Messages ---------------------------------------------------------------
    def upsert_message(
        self,
        *,
        tenant_id: UUID,
        conversation_id: UUID,
        content: str,
        sender_role: str,
        kind: str,
        provider_message_id: Optional[str],
        read: bool,
        timestamp: datetime,
    ) -> Tuple[schemas.MessageRecord, bool]: ...

    def mark_messages_read(
        self, conversation_id: UUID, message_ids: Optional[Sequence[UUID]] = None
    ) -> int: ...

    def mark_read_by_provider_id(
        self, tenant_id: UUID, provider_message_id: str
    ) -> Optional[schemas.MessageRecord]: ...

    def list_messages(
        self, conversation_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[schemas.MessageRecord], int]: ...

    # Attendants -------------------------------------------------------------
    def get_attendant(self, attendant_id: UUID) -> Optional[schemas.AttendantRecord]: ...

    def list_attendants(
        self, tenant_id: UUID, *, sector: Optional[str] = None
    ) -> List[schemas.AttendantRecord]: ...

    def try_increment_load(self, attendant_id: UUID) -> bool: ...

    def decrement_load(self, attendant_id: UUID) -> bool: ...

    def count_assigned(self, attendant_id: UUID) -> int: ...

    def set_load(self, attendant_id: UUID, load: int) -> None: ...


class ConversationStore(Protocol):
    """Factory of atomic units of work over the engine's state."""

    def transaction(self) -> Iterator[StoreTransaction]: ...


class SqlAlchemyStoreTransaction:
    """SQLAlchemy Core implementation of :class:`StoreTransaction`."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # Utility -----------------------------------------------------------------
    @property
    def dialect(self) -> str:
        return self._session.get_bind().dialect.name

    def _insert(self, table):
        if self.dialect == "postgresql":
            return postgresql.insert(table)
        if self.dialect == "sqlite":
            return sqlite.insert(table)
        raise RuntimeError(f"Unsupported dialect: {self.dialect}")

    def _one(self, statement, model):
        row = self._session.execute(statement).mappings().first()
        if row is None:
            return None
        return model.model_validate(dict(row))

    def _many(self, statement, model) -> list:
        rows = self._session.execute(statement).mappings().all()
        return [model.model_validate(dict(row)) for row in rows]

    # Tenants and settings -----------------------------------------------------
    def get_tenant(self, tenant_id: UUID) -> Optional[schemas.TenantRecord]:
        return self._one(select(_TENANTS).where(_TENANTS.c.id == tenant_id), schemas.TenantRecord)

    def get_tenant_by_instance(self, instance: str) -> Optional[schemas.TenantRecord]:
        statement = select(_TENANTS).where(
            or_(_TENANTS.c.provider_instance == instance, _TENANTS.c.slug == instance)
        )
        return self._one(statement.order_by(_TENANTS.c.provider_instance.is_(None)), schemas.TenantRecord)

    def get_global_settings(self, keys: Iterable[str]) -> Dict[str, str]:
        keys = list(keys)
        if not keys:
            return {}
        rows = self._session.execute(
            select(_SETTINGS.c.key, _SETTINGS.c.value).where(_SETTINGS.c.key.in_(keys))
        ).all()
        return {row.key: row.value for row in rows if row.value is not None}

    # Conversations -------------------------------------------------------------
    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.ConversationRecord]:
        statement = select(_CONVERSATIONS).where(_CONVERSATIONS.c.id == conversation_id)
        return self._one(statement, schemas.ConversationRecord)

    def find_conversation_by_phone(
        self, tenant_id: UUID, phone: str
    ) -> Optional[schemas.ConversationRecord]:
        statement = select(_CONVERSATIONS).where(
            _CONVERSATIONS.c.tenant_id == tenant_id,
            _CONVERSATIONS.c.phone == phone,
        )
        return self._one(statement, schemas.ConversationRecord)

    def insert_conversation_if_absent(
        self, tenant_id: UUID, phone: str, *, display_name: Optional[str], sector: str
    ) -> bool:
        now = utcnow()
        conversation_id = uuid4()
        statement = (
            self._insert(_CONVERSATIONS)
            .values(
                id=conversation_id,
                tenant_id=tenant_id,
                phone=phone,
                display_name=display_name,
                sector=sector,
                status="active",
                unread_count=0,
                blocked=False,
                stage_entered_at=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "phone"])
        )
        self._session.execute(statement)
        existing = self._session.execute(
            select(_CONVERSATIONS.c.id).where(
                _CONVERSATIONS.c.tenant_id == tenant_id, _CONVERSATIONS.c.phone == phone
            )
        ).scalar_one()
        return existing == conversation_id

    def update_display_name(self, conversation_id: UUID, display_name: str) -> None:
        self._session.execute(
            update(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.id == conversation_id)
            .values(display_name=display_name)
        )

    def list_unassigned(
        self, tenant_id: UUID, sectors: Optional[Sequence[str]] = None
    ) -> List[schemas.ConversationRecord]:
        c = _CONVERSATIONS.c
        statement = select(_CONVERSATIONS).where(
            c.tenant_id == tenant_id,
            c.assigned_attendant_id.is_(None),
            c.blocked.is_(False),
            c.status.in_(QUEUEABLE_STATUSES),
        )
        if sectors:
            statement = statement.where(c.sector.in_(list(sectors)))
        statement = statement.order_by(func.coalesce(c.last_message_at, c.created_at).asc(), c.id)
        return self._many(statement, schemas.ConversationRecord)

    def list_assigned_to(self, attendant_id: UUID) -> List[schemas.ConversationRecord]:
        statement = (
            select(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.assigned_attendant_id == attendant_id)
            .order_by(_CONVERSATIONS.c.assigned_at.asc())
        )
        return self._many(statement, schemas.ConversationRecord)

    def apply_summary(self, conversation_id: UUID, content: str, timestamp: datetime) -> bool:
        """Write the summary unless a newer message already owns it."""

        c = _CONVERSATIONS.c
        timestamp = utc(timestamp)
        result = self._session.execute(
            update(_CONVERSATIONS)
            .where(
                c.id == conversation_id,
                or_(c.last_message_at.is_(None), c.last_message_at <= timestamp),
            )
            .values(last_message=content, last_message_at=timestamp, updated_at=utcnow())
        )
        return result.rowcount == 1

    def increment_unread(self, conversation_id: UUID) -> None:
        self._session.execute(
            update(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.id == conversation_id)
            .values(unread_count=_CONVERSATIONS.c.unread_count + 1)
        )

    def recount_unread(self, conversation_id: UUID) -> int:
        m = _MESSAGES.c
        unread = self._session.execute(
            select(func.count())
            .select_from(_MESSAGES)
            .where(
                m.conversation_id == conversation_id,
                m.sender_role == "customer",
                m.read.is_(False),
            )
        ).scalar_one()
        self._session.execute(
            update(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.id == conversation_id)
            .values(unread_count=unread)
        )
        return int(unread)

    def try_assign(self, conversation_id: UUID, attendant_id: UUID, now: datetime) -> bool:
        c = _CONVERSATIONS.c
        result = self._session.execute(
            update(_CONVERSATIONS)
            .where(
                c.id == conversation_id,
                c.assigned_attendant_id.is_(None),
                c.blocked.is_(False),
                c.status.in_(QUEUEABLE_STATUSES),
            )
            .values(
                assigned_attendant_id=attendant_id,
                assigned_at=now,
                stage_entered_at=now,
                updated_at=now,
            )
        )
        return result.rowcount == 1

    def try_unassign(
        self, conversation_id: UUID, attendant_id: UUID, reason: str, now: datetime
    ) -> bool:
        c = _CONVERSATIONS.c
        result = self._session.execute(
            update(_CONVERSATIONS)
            .where(c.id == conversation_id, c.assigned_attendant_id == attendant_id)
            .values(
                assigned_attendant_id=None,
                assigned_at=None,
                stage_entered_at=now,
                last_release_reason=reason,
                updated_at=now,
            )
        )
        return result.rowcount == 1

    def set_status(self, conversation_id: UUID, status: str, now: datetime) -> None:
        self._session.execute(
            update(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.id == conversation_id)
            .values(status=status, stage_entered_at=now, updated_at=now)
        )

    def set_sector(self, conversation_id: UUID, sector: str, now: datetime) -> None:
        self._session.execute(
            update(_CONVERSATIONS)
            .where(_CONVERSATIONS.c.id == conversation_id)
            .values(sector=sector, stage_entered_at=now, updated_at=now)
        )

    def set_blocked(
        self, conversation_id: UUID, blocked: bool, reason: Optional[str], now: datetime
    ) -> bool:
        c = _CONVERSATIONS.c
        values: Dict[str, Any] = {"blocked": blocked, "updated_at": now}
        if blocked:
            values.update(blocked_reason=reason, blocked_at=now)
        else:
            values.update(blocked_reason=None, blocked_at=None)
        result = self._session.execute(
            update(_CONVERSATIONS)
            .where(c.id == conversation_id, c.blocked.is_(not blocked))
            .values(**values)
        )
        return result.rowcount == 1

    # Messages --------------------------------------------------------------------
    def upsert_message(
        self,
        *,
        tenant_id: UUID,
        conversation_id: UUID,
        content: str,
        sender_role: str,
        kind: str,
        provider_message_id: Optional[str],
        read: bool,
        timestamp: datetime,
    ) -> Tuple[schemas.MessageRecord, bool]:
        """Insert a message, or return the stored one for a known provider id."""

        message_id = uuid4()
        values = dict(
            id=message_id,
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            content=content,
            sender_role=sender_role,
            kind=kind,
            provider_message_id=provider_message_id,
            read=read,
            timestamp=utc(timestamp),
            created_at=utcnow(),
        )
        m = _MESSAGES.c
        if provider_message_id is None:
            self._session.execute(_MESSAGES.insert().values(**values))
            lookup = select(_MESSAGES).where(m.id == message_id)
        else:
            self._session.execute(
                self._insert(_MESSAGES)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["tenant_id", "provider_message_id"])
            )
            lookup = select(_MESSAGES).where(
                m.tenant_id == tenant_id, m.provider_message_id == provider_message_id
            )
        stored = self._one(lookup, schemas.MessageRecord)
        return stored, stored.id == message_id

    def mark_messages_read(
        self, conversation_id: UUID, message_ids: Optional[Sequence[UUID]] = None
    ) -> int:
        m = _MESSAGES.c
        statement = update(_MESSAGES).where(
            m.conversation_id == conversation_id, m.read.is_(False)
        )
        if message_ids is not None:
            statement = statement.where(m.id.in_(list(message_ids)))
        result = self._session.execute(statement.values(read=True))
        return result.rowcount

    def mark_read_by_provider_id(
        self, tenant_id: UUID, provider_message_id: str
    ) -> Optional[schemas.MessageRecord]:
        m = _MESSAGES.c
        where = and_(m.tenant_id == tenant_id, m.provider_message_id == provider_message_id)
        self._session.execute(update(_MESSAGES).where(where).values(read=True))
        return self._one(select(_MESSAGES).where(where), schemas.MessageRecord)

    def list_messages(
        self, conversation_id: UUID, *, limit: int = 50, offset: int = 0
    ) -> Tuple[List[schemas.MessageRecord], int]:
        m = _MESSAGES.c
        total = self._session.execute(
            select(func.count()).select_from(_MESSAGES).where(m.conversation_id == conversation_id)
        ).scalar_one()
        statement = (
            select(_MESSAGES)
            .where(m.conversation_id == conversation_id)
            .order_by(m.timestamp.asc(), m.created_at.asc())
            .limit(limit)
            .offset(offset)
        )
        return self._many(statement, schemas.MessageRecord), int(total)

    # Attendants --------------------------------------------------------------------
    def get_attendant(self, attendant_id: UUID) -> Optional[schemas.AttendantRecord]:
        statement = select(_ATTENDANTS).where(_ATTENDANTS.c.id == attendant_id)
        return self._one(statement, schemas.AttendantRecord)

    def list_attendants(
        self, tenant_id: UUID, *, sector: Optional[str] = None
    ) -> List[schemas.AttendantRecord]:
        a = _ATTENDANTS.c
        statement = select(_ATTENDANTS).where(a.tenant_id == tenant_id)
        if sector is not None:
            statement = statement.where(or_(a.sector == sector, a.sector.is_(None)))
        return self._many(statement.order_by(a.name, a.id), schemas.AttendantRecord)

    def try_increment_load(self, attendant_id: UUID) -> bool:
        a = _ATTENDANTS.c
        result = self._session.execute(
            update(_ATTENDANTS)
            .where(a.id == attendant_id, a.current_load < a.max_load)
            .values(current_load=a.current_load + 1)
        )
        return result.rowcount == 1

    def decrement_load(self, attendant_id: UUID) -> bool:
        a = _ATTENDANTS.c
        result = self._session.execute(
            update(_ATTENDANTS)
            .where(a.id == attendant_id, a.current_load > 0)
            .values(current_load=a.current_load - 1)
        )
        return result.rowcount == 1

    def count_assigned(self, attendant_id: UUID) -> int:
        return int(
            self._session.execute(
                select(func.count())
                .select_from(_CONVERSATIONS)
                .where(_CONVERSATIONS.c.assigned_attendant_id == attendant_id)
            ).scalar_one()
        )

    def set_load(self, attendant_id: UUID, load: int) -> None:
        self._session.execute(
            update(_ATTENDANTS).where(_ATTENDANTS.c.id == attendant_id).values(current_load=load)
        )


class SqlAlchemyConversationStore:
    """Store backed by a SQLAlchemy session factory (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[SqlAlchemyStoreTransaction]:
        """Run the block atomically; commit on success, roll back on any error."""

        session = self._session_factory()
        try:
            with session.begin():
                yield SqlAlchemyStoreTransaction(session)
        except (OperationalError, InterfaceError) as exc:
            logger.warning("Transient store failure: %s", exc.__class__.__name__)
            raise TransientStoreError(str(exc.orig or exc)) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                logger.warning("Store connection invalidated")
                raise TransientStoreError(str(exc.orig or exc)) from exc
            raise
        finally:
            session.close()


__all__ = [
    "ConversationStore",
    "SqlAlchemyConversationStore",
    "SqlAlchemyStoreTransaction",
    "StoreTransaction",
]
