# tests/unit/batch/test_unit_retry.py — v1
"""Tests for batch/retry.py — backoff helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from callbatch.batch.retry import (
    RetryConfig,
    RetryExhausted,
    compute_delay,
    file_retry_delay,
    with_retry,
)
from callbatch.core.models import RetryPolicy

FAST = RetryConfig(max_attempts=3, base_delay_s=0.0, jitter=False)


class TestComputeDelay:
    def test_exponential_without_jitter(self):
        config = RetryConfig(base_delay_s=2.0, backoff_factor=2.0, jitter=False)
        assert [compute_delay(config, n) for n in range(4)] == [2.0, 4.0, 8.0, 16.0]

    def test_capped(self):
        config = RetryConfig(base_delay_s=10.0, max_delay_s=15.0, jitter=False)
        assert compute_delay(config, 5) == 15.0

    def test_jitter_bounds(self):
        config = RetryConfig(base_delay_s=10.0, jitter=True)
        for _ in range(20):
            assert 5.0 <= compute_delay(config, 0) <= 15.0


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        fn = AsyncMock(return_value="ok")
        assert await with_retry(fn, 1, config=FAST, key="v") == "ok"
        fn.assert_awaited_once_with(1, key="v")

    @pytest.mark.asyncio
    async def test_recovers(self):
        fn = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        assert await with_retry(fn, config=FAST) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        fn = AsyncMock(side_effect=RuntimeError("down"))
        with pytest.raises(RetryExhausted) as exc_info:
            await with_retry(fn, config=FAST, label="webhook ops")
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RuntimeError)
        assert "webhook ops" in str(exc_info.value)


class TestFileRetryDelay:
    def test_follows_policy(self):
        policy = RetryPolicy(delay_seconds=30, exponential_backoff=True)
        assert file_retry_delay(policy, 0) == 30
        assert file_retry_delay(policy, 2) == 120
