"""Retry with exponential backoff, plus a circuit breaker for external APIs.

RetryPolicy wraps the three core LLM steps of a run (query generation,
relevance scoring, report compilation). Errors that retrying cannot fix
(FatalProviderError, ConfigurationError, an open circuit) propagate on the
first attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from relevx.config import settings
from relevx.errors import ConfigurationError, FatalProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Fail fast after `failure_threshold` consecutive errors.

    closed: calls pass. open: calls are refused until `reset_timeout` seconds
    after the last failure. half_open: calls pass again as probes; a success
    closes the breaker and another failure re-opens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.consecutive_failures = 0
        self.opened_at: float | None = None

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if self._clock() - self.opened_at < self.reset_timeout:
            return "open"
        return "half_open"

    def allow_request(self) -> bool:
        return self.state != "open"

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures < self.failure_threshold:
            return
        if self.opened_at is None:
            logger.warning("Circuit breaker opened after %d consecutive failures", self.consecutive_failures)
        self.opened_at = self._clock()


class CircuitBreakerOpenError(FatalProviderError):
    """The breaker is open; the call was not attempted."""


NON_RETRYABLE: tuple[type[BaseException], ...] = (FatalProviderError, ConfigurationError)


@dataclass
class RetryPolicy:
    """Bounded retries: delay = min(base_delay * 2**(attempt-1), max_delay)."""

    max_attempts: int = field(default_factory=lambda: settings.retry_max_attempts)
    base_delay: float = field(default_factory=lambda: settings.retry_base_delay)
    max_delay: float = field(default_factory=lambda: settings.retry_max_delay)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        coro_factory: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """Await `coro_factory()` until it succeeds or attempts run out.

        Args:
            coro_factory: Callable that returns a new awaitable each time.
            description: Label used in log messages.

        Returns:
            The result of the first successful attempt.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await coro_factory()
            except NON_RETRYABLE:
                raise
            except Exception as e:
                if attempt >= attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempts, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.1fs",
                    description, attempt, attempts, type(e).__name__, delay,
                )
                await self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
