"""
Tests for the external-call retry policy.
"""

import asyncio

import pytest

from src.core.resilience import RetryPolicy, call_with_retry, is_transient
from src.rag.errors import ProviderError

FAST_POLICY = RetryPolicy(timeout_seconds=1.0, max_attempts=3, initial_backoff=0, max_backoff=0, jitter=0)


def provider_error(msg, attempts):
    return ProviderError(msg, provider="test", attempts=attempts)


class FlakyOperation:
    """Fails with the given exceptions, then returns a value."""

    def __init__(self, *failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class HttpError(Exception):
    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class TestIsTransient:
    @pytest.mark.parametrize(
        "exc",
        [asyncio.TimeoutError(), ConnectionError("reset"), HttpError(503), HttpError(429)],
    )
    def test_transient(self, exc):
        assert is_transient(exc)

    @pytest.mark.parametrize(
        "exc",
        [ValueError("bad"), KeyError("k"), asyncio.CancelledError(), HttpError(400)],
    )
    def test_not_transient(self, exc):
        assert not is_transient(exc)


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        op = FlakyOperation()

        assert await call_with_retry(op, policy=FAST_POLICY, description="op", error_factory=provider_error) == "ok"
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self):
        op = FlakyOperation(ConnectionError("reset"))
        retries = []

        result = await call_with_retry(
            op, policy=FAST_POLICY, description="op", error_factory=provider_error, on_retry=retries.append
        )

        assert result == "ok"
        assert op.calls == 2
        assert retries == [1]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_error_factory_error(self):
        op = FlakyOperation(*(ConnectionError("down") for _ in range(5)))

        with pytest.raises(ProviderError) as exc_info:
            await call_with_retry(op, policy=FAST_POLICY, description="op", error_factory=provider_error)

        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert "after 3 attempts" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_transient_error_is_not_retried(self):
        op = FlakyOperation(ValueError("bad request"))

        with pytest.raises(ProviderError) as exc_info:
            await call_with_retry(op, policy=FAST_POLICY, description="op", error_factory=provider_error)

        assert op.calls == 1
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_transient(self):
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            await asyncio.sleep(10)

        policy = RetryPolicy(timeout_seconds=0.01, max_attempts=2, initial_backoff=0, max_backoff=0, jitter=0)
        with pytest.raises(ProviderError):
            await call_with_retry(slow, policy=policy, description="slow", error_factory=provider_error)

        assert calls == 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        op = FlakyOperation(asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await call_with_retry(op, policy=FAST_POLICY, description="op", error_factory=provider_error)
        assert op.calls == 1
