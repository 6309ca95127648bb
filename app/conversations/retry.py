"""Bounded retry for store operations that fail transiently."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from .errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_backoff(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` retrying :class:`TransientStoreError` with backoff.

    Only transient store failures are retried; every other error propagates
    on the first attempt.  The last transient error is re-raised once
    ``attempts`` calls have failed.
    """

    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStoreError as exc:
            if attempt >= attempts:
                logger.error("Store still unavailable after %d attempts: %s", attempts, exc)
                raise
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            logger.warning(
                "Transient store error (attempt %d/%d): %s; retrying in %.2fs",
                attempt,
                attempts,
                exc,
                delay,
            )
            sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["call_with_backoff"]
