"""Assignment coordinator: the only writer of conversation ownership.

``assigned_attendant_id`` and ``Attendant.current_load`` change together,
inside one store transaction, through the conditional updates exposed by
:class:`~app.conversations.repository.StoreTransaction`.  The conditional
``UPDATE ... WHERE assigned_attendant_id IS NULL`` decides claim races: the
store commits exactly one winner and every other caller sees zero affected
rows and gets :class:`AlreadyClaimed`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import schemas
from .errors import (
    AlreadyClaimed,
    AttendantNotFound,
    Blocked,
    ConversationNotFound,
    InvalidRequest,
    NotEligible,
    TenantMismatch,
    TransientStoreError,
)
from .models import QUEUEABLE_STATUSES, ConversationStatus, Presence, ReleaseReason, Sector, utc, utcnow
from .notifier import EventType, Notifier
from .repository import ConversationStore, StoreTransaction

logger = logging.getLogger(__name__)

_RELEASE_ATTEMPTS = 3


def is_within_working_hours(attendant: schemas.AttendantRecord, moment: datetime) -> bool:
    """Return whether ``moment`` (tenant local time) is inside the schedule.

    Unconfigured days or hours never block: an attendant without a schedule
    is always available.  Windows whose end is before their start cross
    midnight.
    """

    if attendant.work_days:
        weekday = (moment.weekday() + 1) % 7  # 0 = Sunday
        if not attendant.work_days & (1 << weekday):
            return False
    start, end = attendant.work_start, attendant.work_end
    if start is None or end is None or start == end:
        return True
    current = moment.time().replace(tzinfo=None)
    if start < end:
        return start <= current < end
    return current >= start or current < end


def _tenant_zone(tenant: schemas.TenantRecord | None) -> ZoneInfo:
    name = tenant.timezone if tenant is not None else "UTC"
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown tenant timezone %r; using UTC", name)
        return ZoneInfo("UTC")


def check_eligibility(
    attendant: schemas.AttendantRecord,
    conversation: schemas.ConversationRecord,
    local_now: datetime,
) -> None:
    """Raise when ``attendant`` may not claim ``conversation`` right now."""

    if conversation.blocked:
        raise Blocked(conversation.id)
    if conversation.assigned_attendant_id is not None:
        raise AlreadyClaimed(conversation.id)
    if conversation.status not in QUEUEABLE_STATUSES:
        raise NotEligible(
            NotEligible.CONVERSATION_CLOSED,
            f"Conversation {conversation.id} is {conversation.status}",
        )
    if not attendant.active:
        raise NotEligible(NotEligible.INACTIVE, f"Attendant {attendant.id} is inactive")
    if not is_within_working_hours(attendant, local_now):
        raise NotEligible(
            NotEligible.OUTSIDE_WORKING_HOURS,
            f"Attendant {attendant.id} is outside working hours",
        )
    if attendant.sector is not None and attendant.sector != conversation.sector:
        raise NotEligible(
            NotEligible.SECTOR_MISMATCH,
            f"Attendant sector {attendant.sector!r} does not serve {conversation.sector!r}",
        )
    if attendant.current_load >= attendant.max_load:
        raise NotEligible(
            NotEligible.CAPACITY,
            f"Attendant {attendant.id} is at capacity ({attendant.current_load}/{attendant.max_load})",
        )


class AssignmentCoordinator:
    """Claims, releases and lifecycle transitions for one tenant."""

    def __init__(
        self,
        store: ConversationStore,
        *,
        tenant_id: UUID,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._notifier = notifier
        self._clock = clock

    # Utility -----------------------------------------------------------------
    def _now(self) -> datetime:
        return utc(self._clock())

    def _publish(self, event_type: EventType, conversation_id: UUID, **payload) -> None:
        if self._notifier is not None:
            self._notifier.publish(
                self._tenant_id, event_type, conversation_id=conversation_id, payload=payload
            )

    def _conversation(self, tx: StoreTransaction, conversation_id: UUID) -> schemas.ConversationRecord:
        conversation = tx.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        if conversation.tenant_id != self._tenant_id:
            raise TenantMismatch(
                f"Conversation {conversation_id} does not belong to tenant {self._tenant_id}"
            )
        return conversation

    def _attendant(self, tx: StoreTransaction, attendant_id: UUID) -> schemas.AttendantRecord:
        attendant = tx.get_attendant(attendant_id)
        if attendant is None:
            raise AttendantNotFound(attendant_id)
        if attendant.tenant_id != self._tenant_id:
            raise TenantMismatch(f"Attendant {attendant_id} does not belong to tenant {self._tenant_id}")
        return attendant

    def _claim_in(
        self,
        tx: StoreTransaction,
        conversation: schemas.ConversationRecord,
        attendant_id: UUID,
        now: datetime,
    ) -> schemas.ConversationRecord:
        attendant = self._attendant(tx, attendant_id)
        local_now = now.astimezone(_tenant_zone(tx.get_tenant(self._tenant_id)))
        check_eligibility(attendant, conversation, local_now)

        if not tx.try_assign(conversation.id, attendant.id, now):
            current = tx.get_conversation(conversation.id)
            if current is not None and current.blocked:
                raise Blocked(conversation.id)
            raise AlreadyClaimed(conversation.id)
        if not tx.try_increment_load(attendant.id):
            # raising rolls the assignment back with the transaction
            raise NotEligible(NotEligible.CAPACITY, f"Attendant {attendant.id} is at capacity")
        return tx.get_conversation(conversation.id)

    def _release_in(
        self,
        tx: StoreTransaction,
        conversation: schemas.ConversationRecord,
        reason: ReleaseReason,
        now: datetime,
    ) -> UUID | None:
        """Clear the current assignment; return the prior attendant id."""

        current = conversation
        for _ in range(_RELEASE_ATTEMPTS):
            prior = current.assigned_attendant_id
            if prior is None:
                return None
            if tx.try_unassign(current.id, prior, reason.value, now):
                if not tx.decrement_load(prior):
                    logger.warning("Attendant %s load was already zero on release", prior)
                return prior
            current = tx.get_conversation(conversation.id)
        raise TransientStoreError(f"Assignment of conversation {conversation.id} kept changing")

    # Operations -----------------------------------------------------------------
    def claim(self, conversation_id: UUID, attendant_id: UUID) -> schemas.ConversationRecord:
        """Bind ``conversation_id`` to ``attendant_id``.

        Raises :class:`AlreadyClaimed` when another attendant got there first
        and :class:`NotEligible` when an eligibility rule fails; neither
        mutates anything.
        """

        now = self._now()
        try:
            with self._store.transaction() as tx:
                conversation = self._conversation(tx, conversation_id)
                claimed = self._claim_in(tx, conversation, attendant_id, now)
        except AlreadyClaimed:
            logger.info("Claim of conversation %s by %s lost: already claimed", conversation_id, attendant_id)
            raise
        except NotEligible as exc:
            logger.info(
                "Claim of conversation %s by %s rejected: %s", conversation_id, attendant_id, exc.reason
            )
            raise

        logger.info("Conversation %s claimed by attendant %s", conversation_id, attendant_id)
        self._publish(
            EventType.CONVERSATION_CLAIMED,
            conversation_id,
            attendant_id=str(attendant_id),
            sector=claimed.sector,
        )
        return claimed

    def release(
        self, conversation_id: UUID, reason: ReleaseReason | str = ReleaseReason.MANUAL_RELEASE
    ) -> schemas.ConversationRecord:
        """Return the conversation to its sector queue.

        The status is left unchanged; releasing an unassigned conversation is
        a no-op.
        """

        try:
            reason = ReleaseReason(reason)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown release reason: {reason!r}") from exc

        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            prior = self._release_in(tx, conversation, reason, now)
            released = tx.get_conversation(conversation_id)

        if prior is not None:
            logger.info(
                "Conversation %s released by attendant %s (%s)", conversation_id, prior, reason.value
            )
            self._publish(
                EventType.CONVERSATION_RELEASED,
                conversation_id,
                attendant_id=str(prior),
                reason=reason.value,
                sector=released.sector,
            )
        return released

    def close(self, conversation_id: UUID) -> schemas.ConversationRecord:
        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            prior = self._release_in(tx, conversation, ReleaseReason.CLOSED, now)
            tx.set_status(conversation_id, ConversationStatus.CLOSED.value, now)
            closed = tx.get_conversation(conversation_id)

        if prior is not None:
            self._publish(
                EventType.CONVERSATION_RELEASED,
                conversation_id,
                attendant_id=str(prior),
                reason=ReleaseReason.CLOSED.value,
                sector=closed.sector,
            )
        self._publish(EventType.CONVERSATION_UPDATED, conversation_id, status=closed.status)
        return closed

    def reopen(self, conversation_id: UUID) -> schemas.ConversationRecord:
        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            if conversation.blocked:
                raise Blocked(conversation_id)
            if conversation.status != ConversationStatus.CLOSED.value:
                return conversation
            tx.set_status(conversation_id, ConversationStatus.ACTIVE.value, now)
            reopened = tx.get_conversation(conversation_id)

        self._publish(EventType.CONVERSATION_UPDATED, conversation_id, status=reopened.status)
        return reopened

    def transfer(
        self,
        conversation_id: UUID,
        *,
        sector: str | None = None,
        attendant_id: UUID | None = None,
    ) -> schemas.ConversationRecord:
        """Move a conversation to another sector and/or attendant atomically."""

        if sector is None and attendant_id is None:
            raise InvalidRequest("Transfer needs a target sector or attendant")
        if sector is not None:
            try:
                sector = Sector(sector).value
            except ValueError as exc:
                raise InvalidRequest(f"Unknown sector: {sector!r}") from exc

        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            if conversation.blocked:
                raise Blocked(conversation_id)
            prior = self._release_in(tx, conversation, ReleaseReason.TRANSFERRED, now)
            if sector is not None and sector != conversation.sector:
                tx.set_sector(conversation_id, sector, now)
            transferred = tx.get_conversation(conversation_id)
            if attendant_id is not None:
                transferred = self._claim_in(tx, transferred, attendant_id, now)

        logger.info(
            "Conversation %s transferred (sector=%s attendant=%s)",
            conversation_id,
            transferred.sector,
            transferred.assigned_attendant_id,
        )
        if prior is not None:
            self._publish(
                EventType.CONVERSATION_RELEASED,
                conversation_id,
                attendant_id=str(prior),
                reason=ReleaseReason.TRANSFERRED.value,
                sector=transferred.sector,
            )
        if attendant_id is not None:
            self._publish(
                EventType.CONVERSATION_CLAIMED,
                conversation_id,
                attendant_id=str(attendant_id),
                sector=transferred.sector,
            )
        return transferred

    def block(self, conversation_id: UUID, reason: str | None = None) -> schemas.ConversationRecord:
        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            if conversation.blocked:
                return conversation
            prior = self._release_in(tx, conversation, ReleaseReason.MANUAL_RELEASE, now)
            tx.set_blocked(conversation_id, True, reason, now)
            tx.set_status(conversation_id, ConversationStatus.BLOCKED.value, now)
            blocked = tx.get_conversation(conversation_id)

        logger.info("Conversation %s blocked", conversation_id)
        if prior is not None:
            self._publish(
                EventType.CONVERSATION_RELEASED,
                conversation_id,
                attendant_id=str(prior),
                reason=ReleaseReason.MANUAL_RELEASE.value,
                sector=blocked.sector,
            )
        self._publish(EventType.CONVERSATION_BLOCKED, conversation_id, reason=reason)
        return blocked

    def unblock(self, conversation_id: UUID) -> schemas.ConversationRecord:
        now = self._now()
        with self._store.transaction() as tx:
            conversation = self._conversation(tx, conversation_id)
            if not conversation.blocked:
                return conversation
            tx.set_blocked(conversation_id, False, None, now)
            tx.set_status(conversation_id, ConversationStatus.ACTIVE.value, now)
            unblocked = tx.get_conversation(conversation_id)

        logger.info("Conversation %s unblocked", conversation_id)
        self._publish(EventType.CONVERSATION_UNBLOCKED, conversation_id)
        return unblocked

    def suggest_attendant(self, sector: str) -> schemas.AttendantRecord | None:
        """Least-loaded online attendant that could claim in ``sector`` now."""

        now = self._now()
        with self._store.transaction() as tx:
            local_now = now.astimezone(_tenant_zone(tx.get_tenant(self._tenant_id)))
            candidates = [
                attendant
                for attendant in tx.list_attendants(self._tenant_id, sector=sector)
                if attendant.active
                and attendant.presence == Presence.ONLINE.value
                and attendant.current_load < attendant.max_load
                and is_within_working_hours(attendant, local_now)
            ]
        if not candidates:
            return None
        return min(candidates, key=lambda a: (a.current_load, a.name, str(a.id)))

    def reconcile_loads(self) -> list[schemas.AttendantLoad]:
        """Recompute every attendant's load from the assigned conversations."""

        changes = []
        with self._store.transaction() as tx:
            for attendant in tx.list_attendants(self._tenant_id):
                actual = tx.count_assigned(attendant.id)
                if actual != attendant.current_load:
                    tx.set_load(attendant.id, actual)
                    changes.append(
                        schemas.AttendantLoad(
                            attendant_id=attendant.id,
                            previous_load=attendant.current_load,
                            current_load=actual,
                        )
                    )
        for change in changes:
            logger.warning(
                "Attendant %s load drifted: %d -> %d",
                change.attendant_id,
                change.previous_load,
                change.current_load,
            )
        return changes


__all__ = [
    "AssignmentCoordinator",
    "check_eligibility",
    "is_within_working_hours",
]
