"""
Bounded retry with exponential backoff, and per-call deadlines.

RetryPolicy is a plain value object consumed by every component that calls an
external source (chain node, sanctions list, simulation backend), so retry
behavior is uniform and testable without a network.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from backend_riskengine.core.exceptions import SourceUnavailable, Timeout
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SEC = 0.5
DEFAULT_MAX_DELAY_SEC = 8.0
DEFAULT_MULTIPLIER = 2.0


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy for external calls.

    max_attempts: Total attempts including the first (>= 1).
    base_delay_sec: Delay before the second attempt.
    max_delay_sec: Cap for any single delay.
    multiplier: Backoff growth factor per attempt.
    retry_on: Exception types treated as transient.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_sec: float = DEFAULT_BASE_DELAY_SEC
    max_delay_sec: float = DEFAULT_MAX_DELAY_SEC
    multiplier: float = DEFAULT_MULTIPLIER
    retry_on: tuple[type[BaseException], ...] = (SourceUnavailable, Timeout)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_sec < 0 or self.max_delay_sec < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay_sec * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay_sec)

    def schedule(self) -> list[float]:
        """Delays between attempts; length is max_attempts - 1."""
        return [self.delay_for(a) for a in range(1, self.max_attempts)]

    def is_retryable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retry_on)


async def with_deadline(
    awaitable: Awaitable[T],
    deadline_sec: float | None,
    *,
    operation: str,
) -> T:
    """Await with a deadline; raise Timeout on expiry (the inner task is cancelled)."""
    if deadline_sec is None or deadline_sec <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline_sec)
    except asyncio.TimeoutError as e:
        raise Timeout(f"{operation} exceeded deadline of {deadline_sec}s", operation=operation) from e


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    deadline_sec: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **log_fields: Any,
) -> T:
    """
    Call ``fn`` until it succeeds or the policy is exhausted.

    Non-retryable exceptions propagate immediately. After the last attempt the
    last transient exception is re-raised; callers decide whether that becomes
    a degraded result or an error.
    """
    for attempt in range(1, policy.max_attempts):
        try:
            return await with_deadline(fn(), deadline_sec, operation=operation)
        except Exception as e:
            if not policy.is_retryable(e):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_attempt_failed",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                next_delay_sec=delay,
                error=str(e),
                **log_fields,
            )
            await sleep(delay)
    try:
        return await with_deadline(fn(), deadline_sec, operation=operation)
    except Exception as e:
        if policy.is_retryable(e):
            logger.error(
                "retry_give_up",
                operation=operation,
                attempts=policy.max_attempts,
                error=str(e),
                **log_fields,
            )
        raise
