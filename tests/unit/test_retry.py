"""Tests for retry with backoff and run rate-limit parsing."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tether.core.errors import (
    ServiceAuthError,
    ServiceNotFoundError,
    ServiceOverloadedError,
    ServiceRateLimitError,
    ServiceTimeoutError,
)
from tether.core.retry import (
    RetryConfig,
    is_retryable,
    rate_limit_backoff_ms,
    retry_with_backoff,
)

# ─── RetryConfig ──────────────────────────────────────────────


class TestRetryConfig:
    def test_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_retries == 3
        assert cfg.base_delay == 1.0
        assert cfg.max_delay == 60.0
        assert cfg.jitter is True

    def test_frozen(self):
        cfg = RetryConfig()
        with pytest.raises(AttributeError):
            cfg.max_retries = 5  # type: ignore[misc]


# ─── is_retryable ─────────────────────────────────────────────


class TestIsRetryable:
    def test_transient_errors_are_retryable(self):
        assert is_retryable(ServiceRateLimitError("t")) is True
        assert is_retryable(ServiceTimeoutError("t", "timeout")) is True
        assert is_retryable(ServiceOverloadedError("t", "busy")) is True

    def test_auth_is_not_retryable(self):
        assert is_retryable(ServiceAuthError("t", "bad key")) is False

    def test_not_found_is_not_retryable(self):
        assert is_retryable(ServiceNotFoundError("t", "nope")) is False

    def test_generic_exception_is_not_retryable(self):
        assert is_retryable(ValueError("oops")) is False


# ─── RetryConfig.delay_for ────────────────────────────────────


class TestDelayFor:
    def test_exponential_backoff(self):
        cfg = RetryConfig(base_delay=1.0, jitter=False)
        err = ServiceTimeoutError("t", "timeout")
        assert [cfg.delay_for(i, err) for i in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_respects_max_delay(self):
        cfg = RetryConfig(base_delay=10.0, max_delay=15.0, jitter=False)
        err = ServiceTimeoutError("t", "timeout")
        assert cfg.delay_for(1, err) == 15.0

    def test_uses_retry_after_from_rate_limit(self):
        cfg = RetryConfig(base_delay=1.0, jitter=False)
        err = ServiceRateLimitError("t", retry_after=30.0)
        assert cfg.delay_for(5, err) == 30.0

    def test_jitter_adds_variance(self):
        cfg = RetryConfig(base_delay=10.0, jitter=True)
        err = ServiceTimeoutError("t", "timeout")
        with patch("tether.core.retry.random.uniform", return_value=0.8):
            delay = cfg.delay_for(0, err)
        assert delay == pytest.approx(8.0)


# ─── retry_with_backoff ───────────────────────────────────────


class TestRetryWithBackoff:
    async def test_succeeds_on_first_try(self):
        fn = AsyncMock(return_value="ok")
        assert await retry_with_backoff(fn) == "ok"
        assert fn.call_count == 1

    async def test_retries_on_rate_limit(self):
        fn = AsyncMock(side_effect=[ServiceRateLimitError("t"), "ok"])
        with patch.object(asyncio, "sleep", new_callable=AsyncMock):
            result = await retry_with_backoff(fn)
        assert result == "ok"
        assert fn.call_count == 2

    async def test_fails_fast_on_auth_error(self):
        fn = AsyncMock(side_effect=ServiceAuthError("t", "bad key"))
        with pytest.raises(ServiceAuthError):
            await retry_with_backoff(fn)
        assert fn.call_count == 1

    async def test_exhausts_retries_then_raises(self):
        cfg = RetryConfig(max_retries=2, jitter=False)
        fn = AsyncMock(side_effect=ServiceOverloadedError("t", "busy"))
        with (
            patch.object(asyncio, "sleep", new_callable=AsyncMock),
            pytest.raises(ServiceOverloadedError),
        ):
            await retry_with_backoff(fn, config=cfg)
        assert fn.call_count == 3

    async def test_on_retry_callback_called(self):
        cfg = RetryConfig(max_retries=2, jitter=False)
        fn = AsyncMock(
            side_effect=[ServiceRateLimitError("t"), ServiceTimeoutError("t", "x"), "ok"]
        )
        callback = MagicMock()
        with patch.object(asyncio, "sleep", new_callable=AsyncMock):
            await retry_with_backoff(fn, config=cfg, on_retry=callback)
        assert callback.call_count == 2
        attempt, delay, error = callback.call_args_list[0].args
        assert attempt == 1
        assert delay == 1.0
        assert isinstance(error, ServiceRateLimitError)

    async def test_set_cancel_event_skips_waiting(self):
        cfg = RetryConfig(max_retries=2, base_delay=30.0, jitter=False)
        fn = AsyncMock(side_effect=[ServiceTimeoutError("t", "slow"), "ok"])
        callback = MagicMock()
        cancel = asyncio.Event()
        cancel.set()
        result = await asyncio.wait_for(
            retry_with_backoff(fn, config=cfg, on_retry=callback, cancel=cancel),
            timeout=5,
        )
        assert result == "ok"
        assert callback.call_args.args[1] == 0.0

    async def test_cancel_during_wait_ends_it_early(self):
        cfg = RetryConfig(max_retries=1, base_delay=30.0, jitter=False)
        fn = AsyncMock(side_effect=[ServiceOverloadedError("t", "busy"), "ok"])
        cancel = asyncio.Event()
        task = asyncio.create_task(retry_with_backoff(fn, config=cfg, cancel=cancel))
        while fn.call_count < 1:
            await asyncio.sleep(0)
        cancel.set()
        assert await asyncio.wait_for(task, timeout=5) == "ok"
        assert fn.call_count == 2

    def test_from_settings(self):
        from tether.config.schema import RetrySettings

        cfg = RetryConfig.from_settings(RetrySettings(max_retries=5, jitter=False))
        assert cfg == RetryConfig(max_retries=5, jitter=False)


# ─── rate_limit_backoff_ms ────────────────────────────────────


class TestRateLimitBackoff:
    def test_minutes_and_seconds(self):
        detail = "Rate limit reached for requests. Please try again in 2m54.355s."
        assert rate_limit_backoff_ms(detail) == (2 * 60 + 54 + 1) * 1000
        assert rate_limit_backoff_ms(detail) == 175000

    def test_zero_minutes(self):
        assert rate_limit_backoff_ms("try again in 0m5.2s") == 6000

    def test_no_hint(self):
        assert rate_limit_backoff_ms("The server had an error") is None

    def test_seconds_only_hint_not_matched(self):
        assert rate_limit_backoff_ms("try again in 20s") is None

    def test_empty_detail(self):
        assert rate_limit_backoff_ms(None) is None
        assert rate_limit_backoff_ms("") is None
