"""
Retry utilities for rate-limited API calls.

Shopify signals throttling with HTTP 429. Throttled requests are retried at a
fixed interval with no attempt cap; the caller's own lifetime is the only
bound. Every other failure is re-raised on the first occurrence.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, TypeVar

from storesync.utils.logger import log

T = TypeVar("T")


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record an attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        """Mark the operation as successful."""
        self.success = True

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/storage."""
        return {
            "attempts": self.attempts,
            "retries": self.retries,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


async def retry_while_rate_limited(
    operation: Callable[[], Awaitable[T]],
    is_rate_limited: Callable[[Exception], bool],
    backoff_seconds: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    stats: Optional[RetryStats] = None,
    operation_name: str = "operation",
) -> T:
    """
    Run ``operation`` until it stops being rate limited.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        is_rate_limited: Predicate deciding whether an error is a throttle signal
        backoff_seconds: Fixed delay between throttled attempts
        sleep: Awaitable sleep, injectable for tests
        stats: Optional RetryStats to fill in
        operation_name: Label used in log lines

    Returns:
        The operation's result
    """
    stats = stats if stats is not None else RetryStats()

    while True:
        try:
            result = await operation()
        except Exception as e:
            if not is_rate_limited(e):
                stats.record_attempt(error=e)
                raise

            stats.record_attempt(error=e, delay=backoff_seconds)
            log.warning(
                f"{operation_name} rate limited (attempt {stats.attempts}), "
                f"retrying in {backoff_seconds:.1f}s"
            )
            await sleep(backoff_seconds)
            continue

        stats.record_attempt()
        stats.mark_success()

        if stats.retries:
            log.info(
                f"{operation_name} succeeded after {stats.retries} rate-limit retries "
                f"({stats.total_delay_seconds:.1f}s total delay)"
            )

        return result
