"""
RESILIENT OPERATION WRAPPER

Retry-with-backoff-and-timeout for persistence calls:
- Up to N attempts (default 3)
- Each attempt bounded by a per-attempt timeout (default 5 seconds)
- Exponential backoff between attempts (100ms -> 200ms -> 400ms)
- After the last attempt the last error is re-raised

Domain errors (not found, wrong type, already terminal ...) and other
non-transient failures (validation, duplicate key) are raised
immediately. Multi-step atomic units must NOT be wrapped: they rely on the
store's own transaction primitive instead.

Usage:
    policy = RetryPolicy.from_env()
    tx = await retry_with_backoff(lambda: store.get(tx_id), policy, "get_transaction")

    class Store:
        retry_policy = RetryPolicy()

        @resilient("load")
        async def load(self, key): ...
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
import asyncio
import functools
import logging
import os
import time

from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError

from escrow_core.errors import LedgerError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.1
DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    attempt_timeout: Optional[float] = DEFAULT_ATTEMPT_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows ``attempt`` (0-based)."""
        return self.base_delay * (2 ** attempt)

    @property
    def total_backoff(self) -> float:
        return sum(self.delay_for(a) for a in range(self.max_attempts - 1))

    @classmethod
    def from_env(cls) -> "RetryPolicy":
        return cls(
            max_attempts=int(os.environ.get("STORE_RETRY_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            base_delay=int(os.environ.get("STORE_RETRY_BASE_DELAY_MS", 100)) / 1000,
            attempt_timeout=float(
                os.environ.get("STORE_ATTEMPT_TIMEOUT_SECONDS", DEFAULT_ATTEMPT_TIMEOUT_SECONDS)
            ),
        )


def _is_retryable(error: BaseException) -> bool:
    """Only transient infrastructure failures are retried."""
    if isinstance(error, LedgerError):
        return error.retryable
    if isinstance(error, (ConnectionFailure, ExecutionTimeout, ConnectionError)):
        return True
    if isinstance(error, PyMongoError):
        return error.has_error_label("TransientTransactionError")
    return False


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    operation_name: str = "store operation",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with retries.

    ``operation`` is a zero-argument callable returning a fresh awaitable per
    attempt.
    """
    policy = policy or RetryPolicy()
    last_error: Optional[BaseException] = None
    started = time.monotonic()

    for attempt in range(policy.max_attempts):
        try:
            if policy.attempt_timeout:
                return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
            return await operation()
        except asyncio.TimeoutError as e:
            last_error = TransientStoreError(
                f"Operation timeout after {policy.attempt_timeout}s: {operation_name}",
                original_error=e
            )
        except Exception as e:
            if not _is_retryable(e):
                raise
            last_error = e

        if attempt < policy.max_attempts - 1:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"[RETRY] {operation_name} failed (attempt {attempt + 1}/{policy.max_attempts}): "
                f"{last_error}. Retrying in {delay * 1000:.0f}ms"
            )
            await sleep(delay)

    elapsed_ms = (time.monotonic() - started) * 1000
    logger.error(
        f"[RETRY] {operation_name} failed after {policy.max_attempts} attempts "
        f"({elapsed_ms:.0f}ms): {last_error}"
    )
    raise last_error


def resilient(operation_name: Optional[str] = None):
    """
    Decorator form of retry_with_backoff for async methods.

    The policy is taken from ``self.retry_policy`` when the instance has one.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = operation_name or func.__name__

        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> T:
            policy = getattr(self, "retry_policy", None)
            return await retry_with_backoff(
                lambda: func(self, *args, **kwargs),
                policy,
                name,
            )
        return wrapper
    return decorator
