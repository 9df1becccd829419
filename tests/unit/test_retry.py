"""
Unit tests for connectivity retry.

Tests cover:
- Backoff delay computation
- Retryable classification by class name
- call_with_retry success, exhaustion and pass-through
"""

import pytest

from schemasync.config import Settings
from schemasync.errors import ConnectivityError, StatementError
from schemasync.runtime.retry import RetryPolicy, call_with_retry


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class Flaky:
    """Fails a number of times before succeeding."""

    def __init__(self, failures, error=None):
        self.failures = failures
        self.error = error or ConnectionError("connection refused")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_exponential_delays(self):
        """Delays grow by the multiplier and are capped."""
        policy = RetryPolicy(base_delay_ms=100, max_delay_ms=500, multiplier=2.0)
        assert [policy.delay_ms(n) for n in range(1, 6)] == [100, 200, 400, 500, 500]

    def test_retryable_by_class_name(self):
        """Subclasses of a named class are retryable too."""
        policy = RetryPolicy()
        assert policy.is_retryable(ConnectionResetError())
        assert policy.is_retryable(ConnectivityError("lost"))
        assert policy.is_retryable(TimeoutError())
        assert not policy.is_retryable(StatementError("bad syntax"))
        assert not policy.is_retryable(ValueError())

    def test_custom_retryable(self):
        """The retryable set is policy."""
        policy = RetryPolicy(retryable=("StatementError",))
        assert policy.is_retryable(StatementError("locked"))
        assert not policy.is_retryable(ConnectionError())

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay_ms": -1}, {"multiplier": 0.5}],
    )
    def test_invalid(self, kwargs):
        """Nonsensical policies are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_settings(self):
        """Policies are built from configuration."""
        settings = Settings(
            retry_max_attempts=3,
            retry_base_delay_ms=10,
            retry_max_delay_ms=40,
            retry_multiplier=3.0,
            retryable_errors=["OSError"],
        )
        policy = RetryPolicy.from_settings(settings)
        assert policy == RetryPolicy(
            max_attempts=3, base_delay_ms=10, max_delay_ms=40, multiplier=3.0, retryable=("OSError",)
        )


class TestCallWithRetry:
    """Tests for call_with_retry."""

    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self):
        """Transient failures are retried with backoff."""
        sleep = FakeSleep()
        fn = Flaky(failures=2)

        result = await call_with_retry(fn, RetryPolicy(base_delay_ms=100), sleep=sleep)

        assert result == "ok"
        assert fn.calls == 3
        assert sleep.delays == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        """Exhausted retries escalate as ConnectivityError."""
        sleep = FakeSleep()
        fn = Flaky(failures=10)

        with pytest.raises(ConnectivityError) as exc_info:
            await call_with_retry(fn, RetryPolicy(max_attempts=3), description="introspection", sleep=sleep)

        assert fn.calls == 3
        assert len(sleep.delays) == 2
        assert exc_info.value.attempts == 3
        assert "introspection failed after 3 attempt(s)" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self):
        """Semantic errors are raised on first occurrence, unchanged."""
        sleep = FakeSleep()
        error = StatementError("field exists", "DEFINE FIELD x ON TABLE t TYPE int;")
        fn = Flaky(failures=1, error=error)

        with pytest.raises(StatementError) as exc_info:
            await call_with_retry(fn, RetryPolicy(), sleep=sleep)

        assert exc_info.value is error
        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_single_attempt(self):
        """max_attempts=1 disables retries."""
        sleep = FakeSleep()
        with pytest.raises(ConnectivityError):
            await call_with_retry(Flaky(failures=1), RetryPolicy(max_attempts=1), sleep=sleep)
        assert sleep.delays == []
