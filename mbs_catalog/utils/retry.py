"""Generic async retry with exponential backoff."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy.

    Attempt ``n`` (1-based) that fails waits ``initial_backoff * coefficient ** (n - 1)``
    seconds, capped at ``max_backoff``, before attempt ``n + 1``.
    """

    max_attempts: int = 3
    initial_backoff: float = 2.0
    coefficient: float = 2.0
    max_backoff: float = 10.0

    def backoff(self, attempt: int) -> float:
        return min(self.initial_backoff * (self.coefficient ** (attempt - 1)), self.max_backoff)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[Exception], bool] = lambda e: True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation: str = "operation",
) -> T:
    """Call ``fn`` until it succeeds or the policy is exhausted.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt
        policy: Attempt bound and backoff schedule
        should_retry: Predicate deciding whether an exception is transient
        sleep: Awaitable sleep, injectable for tests
        operation: Name used in log messages

    Returns:
        The value returned by the first successful attempt

    Raises:
        The exception of the last attempt, or the first non-retryable one
    """
    last_error: Optional[Exception] = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if not should_retry(e):
                LOGGER.warning(
                    f"{operation} failed with non-retryable error: {e}",
                    extra={"attempt": attempt, "error_type": type(e).__name__},
                )
                raise
            if attempt >= policy.max_attempts:
                break
            delay = policy.backoff(attempt)
            LOGGER.warning(
                f"{operation} failed (attempt {attempt}/{policy.max_attempts}), retrying in {delay:.1f}s",
                extra={"attempt": attempt, "delay_seconds": delay, "error": str(e)},
            )
            await sleep(delay)

    LOGGER.error(
        f"{operation} failed after {policy.max_attempts} attempts",
        extra={"error": str(last_error)},
    )
    raise last_error
