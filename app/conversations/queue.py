"""Read-only projection of the unassigned conversations, grouped by sector."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable
from uuid import UUID

from . import schemas
from .errors import InvalidRequest
from .models import Sector, utc, utcnow
from .repository import ConversationStore


def _sector_order() -> list[str]:
    return [sector.value for sector in Sector]


class QueueViewBuilder:
    """Builds :class:`~app.conversations.schemas.QueueSnapshot` objects.

    The view is derived from the store on every call and never cached, so a
    claim is reflected by the next build.  Wait times are measured from the
    last message (or creation, for silent conversations) to the injected
    clock's ``now``.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        tenant_id: UUID,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._clock = clock

    def build(self, sectors: Iterable[str] | None = None) -> schemas.QueueSnapshot:
        requested = None
        if sectors:
            requested = list(dict.fromkeys(sectors))
            unknown = [value for value in requested if value not in _sector_order()]
            if unknown:
                raise InvalidRequest(f"Unknown sector(s): {', '.join(unknown)}")

        now = utc(self._clock())
        with self._store.transaction() as tx:
            conversations = tx.list_unassigned(self._tenant_id, requested)

        grouped: dict[str, list[schemas.QueueEntry]] = {}
        for conversation in conversations:
            waiting_since = conversation.last_message_at or conversation.created_at
            grouped.setdefault(conversation.sector, []).append(
                schemas.QueueEntry(
                    conversation_id=conversation.id,
                    phone=conversation.phone,
                    display_name=conversation.display_name,
                    sector=conversation.sector,
                    status=conversation.status,
                    last_message=conversation.last_message,
                    last_message_at=conversation.last_message_at,
                    unread_count=conversation.unread_count,
                    waiting_since=waiting_since,
                    wait_seconds=max(0.0, (now - waiting_since).total_seconds()),
                )
            )

        order = requested or _sector_order()
        # sectors created outside the known set still show up, after the rest
        order = order + sorted(set(grouped) - set(order))
        sector_queues = []
        for sector in order:
            entries = sorted(
                grouped.get(sector, []),
                key=lambda entry: (entry.waiting_since, str(entry.conversation_id)),
            )
            waits = [entry.wait_seconds for entry in entries]
            sector_queues.append(
                schemas.SectorQueue(
                    sector=sector,
                    count=len(entries),
                    mean_wait_seconds=sum(waits) / len(waits) if waits else 0.0,
                    max_wait_seconds=max(waits, default=0.0),
                    entries=entries,
                )
            )
        return schemas.QueueSnapshot(
            tenant_id=self._tenant_id,
            generated_at=now,
            total=sum(queue.count for queue in sector_queues),
            sectors=sector_queues,
        )


__all__ = ["QueueViewBuilder"]
