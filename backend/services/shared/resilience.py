"""Retry-with-backoff policy and circuit breaker for external calls."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from backend.services.providers.exceptions import CircuitOpenError, ProviderError

logger = logging.getLogger("songsmith.shared.resilience")

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying: flagged provider errors and network faults."""
    if isinstance(exc, CircuitOpenError):
        return False
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    multiplier: float = 1.0
    min_wait: float = 1.0
    max_wait: float = 10.0

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_attempts=int(config.get("resilience.max_attempts", 3)),
            multiplier=float(config.get("resilience.backoff_multiplier", 1.0)),
            min_wait=float(config.get("resilience.backoff_min_seconds", 1.0)),
            max_wait=float(config.get("resilience.backoff_max_seconds", 10.0)),
        )

    def retrying(self, label: str) -> AsyncRetrying:
        def _log(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "%s failed (attempt %d/%d): %s — backing off",
                label, state.attempt_number, self.max_attempts, exc,
            )

        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.multiplier, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception(is_transient),
            before_sleep=_log,
        )

    async def run(self, label: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Call ``fn``, retrying transient failures with backoff."""
        async for attempt in self.retrying(label):
            with attempt:
                result = await fn()
        return result


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive transient failures.

    While open, calls fail fast with :class:`CircuitOpenError`.  After
    ``reset_seconds`` one trial call is let through (half-open); its outcome
    closes or re-opens the breaker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.failure_threshold = max(1, failure_threshold)
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._opened_at is None:
            return self.CLOSED
        if self._clock() - self._opened_at >= self.reset_seconds:
            return self.HALF_OPEN
        return self.OPEN

    def before_call(self) -> None:
        if self.state == self.OPEN:
            remaining = self.reset_seconds - (self._clock() - (self._opened_at or 0.0))
            raise CircuitOpenError(self.provider, max(0.0, remaining))

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self.state == self.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._opened_at is None or self.state == self.HALF_OPEN:
                logger.warning("Circuit for %s opened after %d failure(s)", self.provider, self._failures)
            self._opened_at = self._clock()

    async def call(self, policy: Optional[RetryPolicy], label: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker and, if given, the retry policy."""
        self.before_call()
        try:
            result = await (policy.run(label, fn) if policy is not None else fn())
        except Exception as exc:
            if is_transient(exc):
                self.record_failure()
            raise
        self.record_success()
        return result
