from __future__ import annotations

from datetime import timedelta
from threading import Event
from uuid import uuid4

from app.conversations.errors import ProviderError
from app.conversations.models import InboundMessage, SenderRole
from app.sync import ChatSyncJob, SyncJob, SyncManager, SyncRunner, SyncStatus


class _HistoryAdapter:
    provider_name = "fake"

    def __init__(self, history, *, broken=()):
        self.history = history
        self.broken = set(broken)
        self.fetched: list[str] = []

    def fetch_chats(self):
        return list(self.history) + list(self.broken)

    def fetch_messages(self, phone, limit=50):
        self.fetched.append(phone)
        if phone in self.broken:
            raise ProviderError(f"history for {phone} unavailable")
        return self.history[phone][:limit]


class _DownAdapter:
    provider_name = "fake"

    def fetch_chats(self):
        raise ProviderError("instance disconnected")


def _message(phone, provider_id, at, content="hello", role=SenderRole.CUSTOMER):
    return InboundMessage(
        phone=phone,
        content=content,
        sender_role=role,
        provider_message_id=provider_id,
        timestamp=at,
    )


def _run(service, adapter, **kwargs) -> SyncJob:
    job = SyncJob(job_id=uuid4(), tenant_id=service.tenant_id)
    return ChatSyncJob(service, adapter, job, **kwargs).run(Event())


def test_sync_ingests_history_and_counts(service, clock):
    earlier = clock.now - timedelta(hours=1)
    adapter = _HistoryAdapter(
        {
            "5511911110000": [
                _message("5511911110000", "a1", earlier, "first"),
                _message("5511911110000", "a2", earlier + timedelta(minutes=1), "ok", SenderRole.AGENT),
            ],
            "5511922220000": [_message("5511922220000", "b1", earlier, "hi")],
        }
    )

    job = _run(service, adapter)

    assert job.status == SyncStatus.COMPLETED
    assert (job.chats, job.messages, job.duplicates, job.errors) == (2, 3, 0, 0)
    assert job.finished_at is not None
    assert service.queue.build().total == 2


def test_second_sync_only_finds_duplicates(service, clock):
    adapter = _HistoryAdapter({"5511911110000": [_message("5511911110000", "a1", clock.now)]})
    _run(service, adapter)

    job = _run(service, adapter)

    assert (job.messages, job.duplicates) == (0, 1)


def test_history_never_overwrites_newer_summary(service, factory, tenant_id, clock):
    conversation = factory.conversation(
        tenant_id, phone="5511911110000", last_message="latest", last_message_at=clock.now
    )
    adapter = _HistoryAdapter(
        {"5511911110000": [_message("5511911110000", "old", clock.now - timedelta(days=1), "old")]}
    )

    job = _run(service, adapter)

    assert job.messages == 1
    assert service.ingestion.get_conversation(conversation).last_message == "latest"


def test_chat_fetch_errors_are_counted(service, clock):
    adapter = _HistoryAdapter(
        {"5511911110000": [_message("5511911110000", "a1", clock.now)]},
        broken=["5511933330000"],
    )

    job = _run(service, adapter)

    assert job.status == SyncStatus.COMPLETED
    assert (job.chats, job.messages, job.errors) == (1, 1, 1)


def test_invalid_messages_are_skipped(service, clock):
    adapter = _HistoryAdapter(
        {
            "5511911110000": [
                _message("5511911110000", "empty", clock.now, content="  "),
                _message("5511911110000", "ok", clock.now),
            ]
        }
    )

    job = _run(service, adapter)

    assert (job.messages, job.errors) == (1, 1)


def test_provider_failure_marks_job_failed(service):
    job = _run(service, _DownAdapter())

    assert job.status == SyncStatus.FAILED
    assert job.error == "instance disconnected"


def test_explicit_phones_skip_chat_listing(service, clock):
    adapter = _HistoryAdapter(
        {
            "5511911110000": [_message("5511911110000", "a1", clock.now)],
            "5511922220000": [_message("5511922220000", "b1", clock.now)],
        }
    )

    _run(service, adapter, phones=["5511922220000"])

    assert adapter.fetched == ["5511922220000"]


def test_cancelled_job_stops_between_chats(service, clock):
    adapter = _HistoryAdapter({"5511911110000": [_message("5511911110000", "a1", clock.now)]})
    job = SyncJob(job_id=uuid4(), tenant_id=service.tenant_id)
    cancel = Event()
    cancel.set()

    ChatSyncJob(service, adapter, job).run(cancel)

    assert job.status == SyncStatus.CANCELLED
    assert adapter.fetched == []


def test_runner_cancel_stops_work():
    runner = SyncRunner(max_workers=1)
    job_id = uuid4()
    started = Event()

    def work(ev: Event):
        started.set()
        while not ev.is_set():
            ev.wait(0.01)

    fut = runner.submit(job_id, work)
    assert started.wait(1)
    assert runner.cancel(job_id) is True
    fut.result(timeout=1)
    assert fut.done()
    runner.shutdown(wait=True)


def test_runner_submit_and_forget():
    runner = SyncRunner(max_workers=1)
    job_id = uuid4()
    called = {}

    def work(ev: Event):
        called["ran"] = True

    runner.submit(job_id, work).result(timeout=1)
    runner.shutdown(wait=True)

    assert called["ran"]
    assert list(runner.list()) == []
    assert runner.get(job_id) is None


def test_manager_runs_job_and_scopes_by_tenant(service, clock):
    manager = SyncManager(max_workers=1)
    adapter = _HistoryAdapter({"5511911110000": [_message("5511911110000", "a1", clock.now)]})

    job = manager.start(service, adapter)
    assert manager.wait(job.job_id, timeout=5)

    assert manager.get(job.job_id) is job
    assert manager.get(job.job_id, tenant_id=uuid4()) is None
    assert manager.list(service.tenant_id) == [job]
    assert job.status == SyncStatus.COMPLETED
    assert job.messages == 1
    manager.runner.shutdown(wait=True)


def test_manager_cancel_unknown_job():
    manager = SyncManager(max_workers=1)

    assert manager.cancel(uuid4()) is False
    manager.runner.shutdown(wait=True)


def test_manager_cancel_queued_job_marks_cancelled():
    runner = SyncRunner(max_workers=1)
    manager = SyncManager(runner)
    job = SyncJob(job_id=uuid4(), tenant_id=uuid4())
    manager._jobs[job.job_id] = job

    manager.cancel(job.job_id)

    assert job.status == SyncStatus.CANCELLED
    assert job.finished_at is not None
    assert job.done.is_set()
    runner.shutdown(wait=True)


def test_manager_keeps_only_newest_finished_jobs(service):
    manager = SyncManager(max_workers=1, keep_finished=1)
    adapter = _HistoryAdapter({})

    first = manager.start(service, adapter)
    assert manager.wait(first.job_id, timeout=5)
    second = manager.start(service, adapter)
    assert manager.wait(second.job_id, timeout=5)
    third = manager.start(service, adapter)
    assert manager.wait(third.job_id, timeout=5)
    manager.runner.shutdown(wait=True)

    assert manager.get(first.job_id) is None
    assert manager.list(service.tenant_id) == [second, third]


def test_manager_wait_on_unknown_job():
    manager = SyncManager(max_workers=1)

    assert manager.wait(uuid4(), timeout=0) is False
    manager.runner.shutdown(wait=True)
