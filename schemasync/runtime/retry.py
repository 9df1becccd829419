"""
Bounded exponential backoff for connectivity-class failures.

Delay before attempt n+1 (ms):

    min(base_delay_ms * multiplier ** (n - 1), max_delay_ms)

Which exceptions count as connectivity-class is policy: an exception is
retryable when its class, or any base class, is named in
RetryPolicy.retryable.

Invariants:
    - At most max_attempts calls are made
    - Non-retryable exceptions propagate on the first occurrence, unchanged
    - Exhausted retries raise ConnectivityError chained to the last failure
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from ..errors import ConnectivityError

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE = ("ConnectivityError", "ConnectionError", "TimeoutError")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for calls to the live database.

    Attributes:
        max_attempts: Total attempts, including the first
        base_delay_ms: Delay before the second attempt
        max_delay_ms: Upper bound for any single delay
        multiplier: Growth factor between delays
        retryable: Exception class names treated as transient
    """

    max_attempts: int = 5
    base_delay_ms: int = 100
    max_delay_ms: int = 5000
    multiplier: float = 2.0
    retryable: tuple[str, ...] = DEFAULT_RETRYABLE

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
            multiplier=settings.retry_multiplier,
            retryable=tuple(settings.retryable_errors),
        )

    def delay_ms(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.base_delay_ms * self.multiplier ** (attempt - 1), self.max_delay_ms)

    def is_retryable(self, error: BaseException) -> bool:
        return any(cls.__name__ in self.retryable for cls in type(error).__mro__)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await fn(), retrying connectivity-class failures with backoff.

    Args:
        fn: Zero-argument coroutine factory
        policy: Retry policy
        description: What is being attempted, for log messages
        sleep: Sleep function (seconds), replaceable in tests

    Raises:
        ConnectivityError: When every attempt failed with a retryable error
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            if not policy.is_retryable(e):
                raise
            if attempt >= policy.max_attempts:
                raise ConnectivityError(
                    f"{description} failed after {attempt} attempt(s): {e}",
                    attempts=attempt,
                ) from e
            delay = policy.delay_ms(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}), "
                f"retrying in {delay:.0f}ms: {e}"
            )
            await sleep(delay / 1000.0)
            attempt += 1
