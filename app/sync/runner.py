"""Threaded chat-sync runner with cancel support."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Event, Lock
from uuid import UUID

logger = logging.getLogger(__name__)


class SyncRunner:
    """Simple wrapper around :class:`ThreadPoolExecutor` to manage sync jobs.

    Each submitted job gets an associated :class:`threading.Event` used as a
    cancellation flag. Worker functions receive this event as the first
    positional argument and are expected to check ``cancel_event.is_set()``
    between chats and abort early when set.
    """

    def __init__(self, max_workers: int = 2):
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="chat-sync")
        self._events: dict[UUID, Event] = {}
        self._futures: dict[UUID, Future] = {}
        self._lock = Lock()

    # Worker function signature
    Worker = Callable[[Event], None]

    def submit(self, job_id: UUID, fn: Worker) -> Future:
        """Submit a job for execution."""
        cancel_event = Event()
        with self._lock:
            self._events[job_id] = cancel_event
            future = self.executor.submit(fn, cancel_event)
            self._futures[job_id] = future
        future.add_done_callback(lambda _: self.clear(job_id))
        return future

    def clear(self, job_id: UUID) -> None:
        """Remove references for a finished or cancelled job."""
        with self._lock:
            self._events.pop(job_id, None)
            self._futures.pop(job_id, None)

    def cancel(self, job_id: UUID) -> bool:
        """Request cancellation; return whether the job was still known."""
        with self._lock:
            event = self._events.get(job_id)
            fut = self._futures.get(job_id)
        if event:
            event.set()
        if fut:
            fut.cancel()
        return bool(event or fut)

    def get(self, job_id: UUID) -> Future | None:
        """Return the future of a job that has not finished yet."""
        with self._lock:
            return self._futures.get(job_id)

    def list(self) -> Iterable[UUID]:
        with self._lock:
            return list(self._futures)

    def shutdown(self, wait: bool = False) -> None:
        for event in list(self._events.values()):
            event.set()
        self.executor.shutdown(wait=wait, cancel_futures=True)
        logger.debug("Sync runner shut down")


__all__ = ["SyncRunner"]
