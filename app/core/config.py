"""Runtime settings of the queue engine, read from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be an integer.") from exc


def _to_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be a number.") from exc


@dataclasses.dataclass(frozen=True)
class EngineSettings:
    """Tunables for ingestion retries, the notifier, sync jobs and webhooks."""

    database_url: str | None = None
    provider_timeout_seconds: float = 10.0
    ingest_retry_attempts: int = 3
    ingest_retry_base_delay: float = 0.2
    notifier_buffer_size: int = 500
    notifier_queue_size: int = 100
    notifier_poll_interval_seconds: float = 5.0
    sync_max_workers: int = 2
    sync_messages_per_chat: int = 50
    webhook_rate_limit: str = "120/minute"
    create_schema: bool = False


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Load settings from the environment with defaults for development."""

    return EngineSettings(
        database_url=os.getenv("DATABASE_URL"),
        provider_timeout_seconds=_to_float("PROVIDER_TIMEOUT_SECONDS", 10.0),
        ingest_retry_attempts=max(1, _to_int("INGEST_RETRY_ATTEMPTS", 3)),
        ingest_retry_base_delay=_to_float("INGEST_RETRY_BASE_DELAY", 0.2),
        notifier_buffer_size=_to_int("NOTIFIER_BUFFER_SIZE", 500),
        notifier_queue_size=_to_int("NOTIFIER_QUEUE_SIZE", 100),
        notifier_poll_interval_seconds=_to_float("NOTIFIER_POLL_INTERVAL_SECONDS", 5.0),
        sync_max_workers=max(1, _to_int("SYNC_MAX_WORKERS", 2)),
        sync_messages_per_chat=_to_int("SYNC_MESSAGES_PER_CHAT", 50),
        webhook_rate_limit=os.getenv("WEBHOOK_RATE_LIMIT", "120/minute"),
        create_schema=_to_bool(os.getenv("CREATE_SCHEMA")),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["EngineSettings", "get_settings", "reset_settings_cache"]
