"""Bounded retry with exponential backoff for outbound calls.

Used around the classifier, media storage and messaging gateway. This is a
transport-level budget only; it has nothing to do with the verification
attempt budget in ``bettask.verification.attempts``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
import structlog

from bettask.config import Settings
from bettask.errors import RetryExhaustedError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed attempt count, delay = base_delay * backoff_factor ** (attempt - 1), capped at max_delay."""

    max_attempts: int = 3
    base_delay: float = 0.3
    backoff_factor: float = 2.0
    max_delay: float = 10.0
    retry_status_codes: frozenset[int] = frozenset({429, 500, 502, 503, 504})
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * self.backoff_factor ** (attempt - 1), self.max_delay)

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in self.retry_status_codes
        return isinstance(exc, httpx.TransportError)

    async def run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn`` until it succeeds or the budget is spent.

        Non-retryable exceptions propagate immediately. When every attempt
        fails with a retryable error, RetryExhaustedError is raised.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                delay = self.delay_for(attempt)
                logger.warning(
                    "retry_scheduled",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=repr(exc),
                )
                await self.sleep(delay)

        logger.error(
            "retry_exhausted",
            operation=operation,
            attempts=self.max_attempts,
            error=repr(last_error),
            outcome="infrastructure_error",
        )
        raise RetryExhaustedError(operation, self.max_attempts, last_error) from last_error
