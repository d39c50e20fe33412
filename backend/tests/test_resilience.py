"""
Resilient operation wrapper tests
Testing: attempt count, exponential backoff, per-attempt timeout, non-retryable errors
"""
import asyncio
import time

import pytest
from pydantic import ValidationError
from pymongo.errors import AutoReconnect, DuplicateKeyError

from escrow_core import (
    FinancialTransaction, NotFoundError, RetryPolicy, TransientStoreError, resilient, retry_with_backoff
)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class FlakyOperation:
    """Fails ``failures`` times, then returns ``result``."""

    def __init__(self, failures, error_factory=lambda n: TransientStoreError(f"boom {n}"), result="ok"):
        self.failures = failures
        self.error_factory = error_factory
        self.result = result
        self.calls = 0
        self.errors = []

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            error = self.error_factory(self.calls)
            self.errors.append(error)
            raise error
        return self.result


class TestRetryPolicy:

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 0.1
        assert policy.attempt_timeout == 5.0

    def test_delays_double(self):
        policy = RetryPolicy()
        assert policy.delay_for(0) == pytest.approx(0.1)
        assert policy.delay_for(1) == pytest.approx(0.2)
        assert policy.delay_for(2) == pytest.approx(0.4)
        assert policy.total_backoff == pytest.approx(0.3)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STORE_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("STORE_RETRY_BASE_DELAY_MS", "50")
        monkeypatch.setenv("STORE_ATTEMPT_TIMEOUT_SECONDS", "2.5")
        policy = RetryPolicy.from_env()
        assert policy.max_attempts == 5
        assert policy.base_delay == pytest.approx(0.05)
        assert policy.attempt_timeout == 2.5


class TestRetryWithBackoff:

    @pytest.mark.asyncio
    async def test_first_attempt_success_does_not_sleep(self):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=0)
        result = await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep)
        assert result == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=2)
        result = await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep)
        assert result == "ok"
        assert operation.calls == 3
        assert sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self):
        """Always-failing operation is attempted exactly max_attempts times"""
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=10)
        with pytest.raises(TransientStoreError) as exc_info:
            await retry_with_backoff(operation, RetryPolicy(max_attempts=3), "op", sleep=sleep)

        assert operation.calls == 3
        assert exc_info.value is operation.errors[-1]
        # No sleep after the final attempt
        assert sleep.delays == pytest.approx([0.1, 0.2])

    @pytest.mark.asyncio
    async def test_elapsed_time_covers_backoff(self):
        policy = RetryPolicy(max_attempts=3, base_delay=0.01, attempt_timeout=1.0)
        operation = FlakyOperation(failures=10)
        started = time.monotonic()
        with pytest.raises(TransientStoreError):
            await retry_with_backoff(operation, policy, "op")
        elapsed = time.monotonic() - started
        # Allow for event loop clock resolution
        assert elapsed >= policy.total_backoff - 0.005

    @pytest.mark.asyncio
    async def test_slow_attempt_times_out_as_transient(self):
        calls = 0

        async def hang():
            nonlocal calls
            calls += 1
            await asyncio.sleep(1)

        sleep = SleepRecorder()
        policy = RetryPolicy(max_attempts=2, base_delay=0.001, attempt_timeout=0.01)
        with pytest.raises(TransientStoreError) as exc_info:
            await retry_with_backoff(hang, policy, "slow read", sleep=sleep)

        assert calls == 2
        assert "timeout" in str(exc_info.value).lower()
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_domain_errors_are_not_retried(self):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=10, error_factory=lambda n: NotFoundError("Transaction", "tx-1"))
        with pytest.raises(NotFoundError):
            await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep)
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=10, error_factory=lambda n: ConnectionError(f"reset {n}"))
        with pytest.raises(ConnectionError, match="reset 3"):
            await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep)
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_untranslated_mongo_connection_errors_are_retried(self):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=1, error_factory=lambda n: AutoReconnect("primary stepped down"))
        assert await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep) == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        DuplicateKeyError("E11000 duplicate key"),
        ValueError("corrupt document"),
        RuntimeError("bug"),
    ])
    async def test_non_transient_errors_are_not_retried(self, error):
        sleep = SleepRecorder()
        operation = FlakyOperation(failures=10, error_factory=lambda n: error)
        with pytest.raises(type(error)):
            await retry_with_backoff(operation, RetryPolicy(), "op", sleep=sleep)
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_corrupt_document_validation_error_is_not_retried(self):
        calls = 0

        async def load_corrupt():
            nonlocal calls
            calls += 1
            return FinancialTransaction.model_validate({"id": "tx-1"})

        with pytest.raises(ValidationError):
            await retry_with_backoff(load_corrupt, RetryPolicy(), "op", sleep=SleepRecorder())
        assert calls == 1


class TestResilientDecorator:

    @pytest.mark.asyncio
    async def test_uses_instance_policy(self):
        class Store:
            retry_policy = RetryPolicy(max_attempts=4, base_delay=0.001)

            def __init__(self):
                self.calls = 0

            @resilient("load")
            async def load(self, key):
                self.calls += 1
                raise TransientStoreError(f"cannot load {key}")

        store = Store()
        with pytest.raises(TransientStoreError, match="cannot load k1"):
            await store.load("k1")
        assert store.calls == 4
