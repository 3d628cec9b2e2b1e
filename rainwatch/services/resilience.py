"""
Circuit Breaker for the LLM formatter.

When the provider keeps failing, stop calling it for a while and let the
deterministic fallback answer immediately. One trial call is let through
after the cool-off; its result decides whether the circuit closes again.
"""

import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """The breaker refused the call without contacting the provider."""
    pass


class CircuitBreaker:
    """
    ``failure_threshold`` failures inside ``window_seconds`` open the circuit
    for ``recovery_timeout`` seconds. ``monotonic`` is injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        recovery_timeout: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.recovery_timeout = recovery_timeout
        self._monotonic = monotonic

        self._recent_failures: deque[float] = deque()
        self._retry_at: float | None = None
        self._trial_running = False

    @property
    def state(self) -> CircuitState:
        if self._retry_at is None:
            return CircuitState.CLOSED
        if self._monotonic() < self._retry_at:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        self._admit()
        try:
            result = await fn(*args, **kwargs)
        except BaseException:
            # Cancellation by the caller's timeout is a failed call too
            self._record_failure()
            raise
        self._record_success()
        return result

    def _admit(self) -> None:
        state = self.state
        if state == CircuitState.OPEN:
            logger.warning("circuit_open_rejected", breaker=self.name)
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is open")
        if state == CircuitState.HALF_OPEN:
            if self._trial_running:
                raise CircuitOpenError(f"Circuit breaker '{self.name}' is testing")
            self._trial_running = True
            logger.info("circuit_trial_call", breaker=self.name)

    def _record_success(self) -> None:
        if self._retry_at is not None:
            logger.info("circuit_closed", breaker=self.name)
        self._retry_at = None
        self._recent_failures.clear()
        self._trial_running = False

    def _record_failure(self) -> None:
        now = self._monotonic()
        if self._trial_running:
            self._trial_running = False
            self._retry_at = now + self.recovery_timeout
            logger.warning("circuit_reopened", breaker=self.name)
            return

        while self._recent_failures and self._recent_failures[0] <= now - self.window_seconds:
            self._recent_failures.popleft()
        self._recent_failures.append(now)
        if len(self._recent_failures) >= self.failure_threshold:
            self._retry_at = now + self.recovery_timeout
            logger.warning(
                "circuit_opened",
                breaker=self.name,
                failures=len(self._recent_failures),
                threshold=self.failure_threshold,
            )
