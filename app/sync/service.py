"""Chat history sync: the second producer feeding the ingestion gateway.

A sync job lists the provider's remote chats and replays their recent
messages through :meth:`ConversationService.process_inbound`.  Messages
already delivered by the webhook are deduplicated by provider id, and older
history never overwrites a newer conversation summary, so a sync can run at
any time and any number of times.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from threading import Event, Lock
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from app.channels import ProviderAdapter
from app.conversations.errors import EngineError, ProviderError
from app.conversations.models import utcnow
from app.conversations.service import ConversationService

from .runner import SyncRunner

logger = logging.getLogger(__name__)


class SyncStatus:
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SyncJob:
    job_id: UUID
    tenant_id: UUID
    status: str = SyncStatus.QUEUED
    chats: int = 0
    messages: int = 0
    duplicates: int = 0
    errors: int = 0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    done: Event = field(default_factory=Event, repr=False, compare=False)


class ChatSyncJob:
    """Pulls remote history for one tenant and ingests it."""

    def __init__(
        self,
        service: ConversationService,
        adapter: ProviderAdapter,
        job: SyncJob,
        *,
        phones: Optional[Sequence[str]] = None,
        messages_per_chat: int = 50,
    ) -> None:
        self._service = service
        self._adapter = adapter
        self.job = job
        self._phones = list(phones) if phones else None
        self._messages_per_chat = messages_per_chat

    def run(self, cancel_event: Event) -> SyncJob:
        job = self.job
        job.status = SyncStatus.RUNNING
        logger.info("Sync job %s started for tenant %s", job.job_id, job.tenant_id)
        try:
            phones = self._phones if self._phones is not None else self._adapter.fetch_chats()
            for phone in phones:
                if cancel_event.is_set():
                    break
                self._sync_chat(phone, cancel_event)
            job.status = SyncStatus.CANCELLED if cancel_event.is_set() else SyncStatus.COMPLETED
        except ProviderError as exc:
            job.status = SyncStatus.FAILED
            job.error = str(exc)
            logger.error("Sync job %s failed: %s", job.job_id, exc)
        except Exception as exc:
            job.status = SyncStatus.FAILED
            job.error = str(exc)
            logger.exception("Sync job %s crashed", job.job_id)
        finally:
            job.finished_at = utcnow()
            job.done.set()
        logger.info(
            "Sync job %s %s: chats=%d messages=%d duplicates=%d errors=%d",
            job.job_id,
            job.status,
            job.chats,
            job.messages,
            job.duplicates,
            job.errors,
        )
        return job

    def _sync_chat(self, phone: str, cancel_event: Event) -> None:
        job = self.job
        try:
            messages = self._adapter.fetch_messages(phone, limit=self._messages_per_chat)
        except ProviderError as exc:
            job.errors += 1
            logger.warning("Could not fetch history for %s: %s", phone, exc)
            return
        job.chats += 1
        for message in messages:
            if cancel_event.is_set():
                return
            try:
                result = self._service.process_inbound(message)
            except EngineError as exc:
                job.errors += 1
                logger.warning(
                    "Skipping message %s from %s: %s", message.provider_message_id, phone, exc
                )
                continue
            if result.created:
                job.messages += 1
            else:
                job.duplicates += 1


class SyncManager:
    """Tracks sync jobs and runs them on a :class:`SyncRunner`.

    Finished jobs stay visible for status polling; only the newest
    ``keep_finished`` of them are retained.
    """

    def __init__(
        self,
        runner: Optional[SyncRunner] = None,
        *,
        max_workers: int = 2,
        keep_finished: int = 100,
    ) -> None:
        self.runner = runner or SyncRunner(max_workers=max_workers)
        self.keep_finished = keep_finished
        self._jobs: Dict[UUID, SyncJob] = {}
        self._lock = Lock()

    def start(
        self,
        service: ConversationService,
        adapter: ProviderAdapter,
        *,
        phones: Optional[Sequence[str]] = None,
        messages_per_chat: int = 50,
    ) -> SyncJob:
        job = SyncJob(job_id=uuid.uuid4(), tenant_id=service.tenant_id)
        with self._lock:
            self._prune()
            self._jobs[job.job_id] = job
        task = ChatSyncJob(
            service, adapter, job, phones=phones, messages_per_chat=messages_per_chat
        )
        self.runner.submit(job.job_id, task.run)
        return job

    def _prune(self) -> None:
        finished = sorted(
            (job for job in self._jobs.values() if job.done.is_set()),
            key=lambda job: job.finished_at or job.created_at,
        )
        for job in finished[: max(0, len(finished) - self.keep_finished)]:
            del self._jobs[job.job_id]

    def get(self, job_id: UUID, tenant_id: Optional[UUID] = None) -> Optional[SyncJob]:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            return None
        return job

    def list(self, tenant_id: UUID) -> List[SyncJob]:
        with self._lock:
            return [job for job in self._jobs.values() if job.tenant_id == tenant_id]

    def wait(self, job_id: UUID, timeout: Optional[float] = None) -> bool:
        """Block until the job has finished; ``False`` on timeout or unknown job."""
        job = self.get(job_id)
        return job is not None and job.done.wait(timeout)

    def cancel(self, job_id: UUID) -> bool:
        job = self.get(job_id)
        if job is None:
            return False
        if job.status == SyncStatus.QUEUED:
            job.status = SyncStatus.CANCELLED
            job.finished_at = utcnow()
            job.done.set()
        return self.runner.cancel(job_id)


__all__ = ["ChatSyncJob", "SyncJob", "SyncManager", "SyncStatus"]
