"""
Retry policy — exponential backoff around a single remote call.

Only transient failures are retried:

    attempt 1 ──(TransientError)── sleep 1s ── attempt 2 ──(TransientError)── sleep 2s ── attempt 3
                                                                                            │
                                                                  still failing → re-raise the last error

A non-transient failure (the remote explicitly rejected the request) is raised
on the spot. Each protocol step gets its own policy run, so a flaky transfer
does not eat into the attach step's attempts.

This is for network calls only. Re-running a permanently failed *job* is a
business decision and lives in JobSynchronizer.retry().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from clients.errors import TransientError
from config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Transport-level httpx failures count as transient even if a client forgot to wrap them."""
    return isinstance(exc, (TransientError, httpx.TransportError))


class RetryPolicy:

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        factor: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.factor = factor
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            factor=settings.RETRY_BACKOFF_FACTOR,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return self.base_delay * (self.factor ** (attempt - 1))

    async def run(self, fn: Callable[[], Awaitable[T]], description: str = "call") -> T:
        """
        Await fn() until it succeeds, fails non-transiently, or attempts run out.

        Args:
            fn: zero-argument coroutine factory — called once per attempt
            description: used in log lines only
        """
        attempt = 1
        while True:
            try:
                return await fn()
            except Exception as e:
                if not is_transient(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.error(
                        f"{description} failed after {attempt} attempts: {e}"
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )
                await self._sleep(delay)
                attempt += 1
