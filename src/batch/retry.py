# src/batch/retry.py — v1
"""Retry helpers with exponential backoff.

``with_retry`` wraps notification delivery (its own budget, independent
of file retries); ``file_retry_delay`` computes the wait before a failed
file is re-queued.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from callbatch.core.models import RetryPolicy

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """All attempts failed."""

    def __init__(self, label: str, attempts: int, last_error: Exception):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"'{label}' failed after {attempts} attempts: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Attempt budget and backoff shape."""

    max_attempts: int = 3
    base_delay_s: float = 2.0
    backoff_factor: float = 2.0
    max_delay_s: float = 60.0
    jitter: bool = True


def compute_delay(config: RetryConfig, attempt: int) -> float:
    """Delay after failed attempt ``attempt`` (0-based), capped."""
    delay = min(config.base_delay_s * (config.backoff_factor ** attempt), config.max_delay_s)
    if config.jitter:
        delay *= 0.5 + random.random()  # noqa: S311
    return delay


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    config: RetryConfig | None = None,
    label: str = "operation",
    **kwargs: Any,
) -> Any:
    """Execute an async function, retrying any exception with backoff.

    Raises:
        RetryExhausted: If every attempt failed.
    """
    config = config or RetryConfig()
    attempts = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            attempts += 1
            if attempts >= config.max_attempts:
                raise RetryExhausted(label, attempts, e) from e

            delay = compute_delay(config, attempts - 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.1fs",
                label, attempts, config.max_attempts, e, delay,
            )
            await asyncio.sleep(delay)


def file_retry_delay(policy: RetryPolicy, retry_count: int) -> float:
    """Wait before retry number ``retry_count + 1`` of a file."""
    return policy.delay_for(retry_count)
