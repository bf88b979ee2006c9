"""Reusable retry/backoff policy for rate-limited external calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import httpx

if TYPE_CHECKING:
    from aegis.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff with bounded jitter.

    Attempt n (0-based) waits base_delay * factor**n, capped at max_delay, then
    scaled by a random factor in [1 - jitter, 1 + jitter].
    """

    max_attempts: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0
    jitter: float = 0.1
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")

    def delay(self, attempt: int) -> float:
        """Delay in seconds to wait after the given failed attempt (0-based)."""
        raw = min(self.max_delay, self.base_delay * (self.factor**attempt))
        if self.jitter:
            raw *= random.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, raw)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Callable[[Exception], bool],
        description: str = "operation",
    ) -> T:
        """
        Await operation() until it succeeds, the error is not retriable, or attempts run out.

        The last exception is re-raised unchanged.
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_attempt = attempt + 1 >= self.max_attempts
                if last_attempt or not should_retry(e):
                    raise
                wait = self.delay(attempt)
                logger.info(
                    "Retrying %s after error",
                    description,
                    extra={"attempt": attempt + 1, "delay_seconds": wait, "error": str(e)},
                )
                await self.sleep(wait)
        raise RuntimeError("unreachable")  # pragma: no cover


def is_retriable_http_error(error: Exception) -> bool:
    """Timeouts, transport failures, 429 and 5xx are worth retrying; other errors are not."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return isinstance(error, (httpx.TimeoutException, httpx.TransportError))


def backoff_from_settings(settings: "Settings") -> BackoffPolicy:
    """Build the default HTTP backoff policy from configuration."""
    return BackoffPolicy(
        max_attempts=settings.HTTP_RETRY_MAX_ATTEMPTS,
        base_delay=settings.HTTP_RETRY_BASE_DELAY_SEC,
    )
