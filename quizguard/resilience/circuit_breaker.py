"""Async circuit breaker for a single remote dependency.

Implements the standard three-state circuit breaker:

    CLOSED    →  (failure_threshold consecutive failures)  →  OPEN
    OPEN      →  (recovery_timeout elapsed, next call)     →  HALF_OPEN
    HALF_OPEN →  (probe succeeds)                          →  CLOSED
    HALF_OPEN →  (probe fails)                             →  OPEN

Each dependency gets its own ``CircuitBreaker`` instance via
``CircuitBreakerRegistry`` so that every call site for the same provider
shares one failure record.

The bookkeeping methods contain no ``await``: on a single event loop the
outcome of a call and the resulting state update happen in one synchronous
continuation, so two concurrent failures cannot both cross the threshold.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from quizguard.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of a breaker, as returned by ``get_state()``."""

    state: CircuitState
    failures: int
    last_failure_time: float | None


class CircuitBreaker:
    """Circuit breaker guarding one named dependency.

    Args:
        name:              Dependency name (for logging/errors).
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout:  Seconds the circuit stays OPEN before probing.
        monitoring_window: If set, a failure arriving more than this many
                           seconds after the previous one starts a new streak.
        clock:             Monotonic time source, in seconds.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        monitoring_window: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {failure_threshold}")
        if recovery_timeout <= 0:
            raise ValueError(f"recovery_timeout must be > 0, got {recovery_timeout}")
        if monitoring_window is not None and monitoring_window <= 0:
            raise ValueError(f"monitoring_window must be > 0, got {monitoring_window}")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.monitoring_window = monitoring_window
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.total_successes = 0

    # ── Public properties ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Return the current state, reporting HALF_OPEN once the cooldown elapsed."""
        if self._state == CircuitState.OPEN and self._cooldown_remaining() <= 0:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    # ── Core call wrapper ────────────────────────────────────────────

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open (the operation is not
                invoked) or a half-open probe is already in flight.

        Any exception raised by *operation* itself is recorded as a failure
        and re-raised unchanged.
        """
        self._before_call()
        try:
            result = await operation()
        except BaseException as exc:
            if isinstance(exc, Exception):
                self._record_failure()
            else:
                # Cancellation says nothing about the dependency's health
                self._probe_in_flight = False
            raise
        self._record_success()
        return result

    def get_state(self) -> BreakerSnapshot:
        """Return a read-only snapshot of the breaker."""
        return BreakerSnapshot(
            state=self.state,
            failures=self._failure_count,
            last_failure_time=self._last_failure_time,
        )

    def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._probe_in_flight = False

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot for health/metrics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "total_successes": self.total_successes,
        }

    # ── Bookkeeping (no await points) ────────────────────────────────

    def _cooldown_remaining(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        return self.recovery_timeout - (self._clock() - self._last_failure_time)

    def _before_call(self) -> None:
        """Admit or reject a call; raise ``CircuitOpenError`` if rejected."""
        if self._state == CircuitState.OPEN:
            remaining = self._cooldown_remaining()
            if remaining > 0:
                self.total_rejections += 1
                raise CircuitOpenError(self.name, remaining)
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit '%s' half-open, admitting probe call", self.name)

        if self._state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                self.total_rejections += 1
                raise CircuitOpenError(self.name, 0.0)
            self._probe_in_flight = True

        self.total_calls += 1

    def _record_success(self) -> None:
        self.total_successes += 1
        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit '%s' closed, probe succeeded", self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False

    def _record_failure(self) -> None:
        now = self._clock()
        self.total_failures += 1

        if self._state == CircuitState.HALF_OPEN:
            # Probe failed, reopen and restart the cooldown
            self._failure_count += 1
            self._last_failure_time = now
            self._state = CircuitState.OPEN
            self._probe_in_flight = False
            logger.warning(
                "Circuit '%s' re-opened, probe failed (%d consecutive failures)",
                self.name,
                self._failure_count,
            )
            return

        if (
            self.monitoring_window is not None
            and self._last_failure_time is not None
            and now - self._last_failure_time > self.monitoring_window
        ):
            self._failure_count = 0

        self._failure_count += 1
        self._last_failure_time = now

        if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit '%s' opened after %d consecutive failures, cooling down %.1fs",
                self.name,
                self._failure_count,
                self.recovery_timeout,
            )
