"""Process-wide engine wiring shared by the HTTP routers.

The runtime is built lazily on first use from :func:`get_settings`; tests
install their own with :func:`set_runtime`.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from datetime import datetime
from typing import Callable
from uuid import UUID

import requests

from app.channels import GLOBAL_SETTING_KEYS, ProviderAdapter, build_adapter
from app.conversations.errors import TenantNotFound
from app.conversations.models import utcnow
from app.conversations.notifier import Notifier
from app.conversations.repository import ConversationStore, SqlAlchemyConversationStore
from app.conversations.schemas import TenantRecord
from app.conversations.service import ConversationService
from app.models.session import ensure_schema, get_engine, get_sessionmaker
from app.sync import SyncManager

from .config import EngineSettings, get_settings

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class EngineRuntime:
    settings: EngineSettings
    store: ConversationStore
    notifier: Notifier
    sync: SyncManager
    http_session: requests.Session | None = None
    clock: Callable[[], datetime] = utcnow
    sleep: Callable[[float], None] = time.sleep

    def service(self, tenant_id: UUID) -> ConversationService:
        return ConversationService(
            self.store,
            tenant_id=tenant_id,
            notifier=self.notifier,
            clock=self.clock,
            retry_attempts=self.settings.ingest_retry_attempts,
            retry_base_delay=self.settings.ingest_retry_base_delay,
            sleep=self.sleep,
        )

    def tenant(self, tenant_id: UUID) -> TenantRecord:
        with self.store.transaction() as tx:
            tenant = tx.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound(f"Tenant {tenant_id} not found")
        return tenant

    def tenant_by_instance(self, instance: str) -> TenantRecord:
        with self.store.transaction() as tx:
            tenant = tx.get_tenant_by_instance(instance)
        if tenant is None:
            raise TenantNotFound(f"No tenant configured for instance {instance!r}")
        return tenant

    def adapter_for(self, tenant: TenantRecord) -> ProviderAdapter:
        with self.store.transaction() as tx:
            global_settings = tx.get_global_settings(GLOBAL_SETTING_KEYS)
        return build_adapter(
            tenant,
            global_settings,
            session=self.http_session,
            timeout=self.settings.provider_timeout_seconds,
        )


def build_runtime(settings: EngineSettings | None = None) -> EngineRuntime:
    settings = settings or get_settings()
    engine = get_engine(settings.database_url)
    if settings.create_schema:
        logger.info("Creating database schema")
        ensure_schema(engine)
    return EngineRuntime(
        settings=settings,
        store=SqlAlchemyConversationStore(get_sessionmaker(engine=engine)),
        notifier=Notifier(
            buffer_size=settings.notifier_buffer_size,
            queue_size=settings.notifier_queue_size,
        ),
        sync=SyncManager(max_workers=settings.sync_max_workers),
    )


_RUNTIME: EngineRuntime | None = None


def get_runtime() -> EngineRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME


def set_runtime(runtime: EngineRuntime | None) -> None:
    global _RUNTIME
    _RUNTIME = runtime


def shutdown_runtime() -> None:
    global _RUNTIME
    if _RUNTIME is not None:
        _RUNTIME.sync.runner.shutdown(wait=False)
        _RUNTIME = None


__all__ = [
    "EngineRuntime",
    "build_runtime",
    "get_runtime",
    "set_runtime",
    "shutdown_runtime",
]
