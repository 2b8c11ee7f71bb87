"""Tests for the per-dependency circuit breaker.

Covers:
- CircuitBreaker state transitions (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Fail-fast rejection while OPEN without invoking the operation
- Single half-open probe and cooldown restart on probe failure
- Failure streak expiry via monitoring_window
- get_state() / reset() / snapshot()
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from quizguard.core.errors import CircuitOpenError, ClassifiedError, ErrorCode, Severity
from quizguard.resilience.circuit_breaker import (
    BreakerSnapshot,
    CircuitBreaker,
    CircuitState,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _network_error() -> ClassifiedError:
    return ClassifiedError("boom", ErrorCode.NETWORK_ERROR, "Network failed")


def _failing_op() -> AsyncMock:
    return AsyncMock(side_effect=_network_error())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("openai", failure_threshold=2, recovery_timeout=1.0, clock=clock)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Construction
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCircuitBreakerConfig:
    def test_initial_state_is_closed(self):
        cb = CircuitBreaker("test-backend")
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.get_state() == BreakerSnapshot(CircuitState.CLOSED, 0, None)

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValueError, match="failure_threshold"):
            CircuitBreaker("test", failure_threshold=0)

    def test_rejects_non_positive_recovery(self):
        with pytest.raises(ValueError, match="recovery_timeout"):
            CircuitBreaker("test", recovery_timeout=0)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError, match="monitoring_window"):
            CircuitBreaker("test", monitoring_window=-1.0)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# State machine
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestCircuitBreakerStates:
    """Test the three-state circuit breaker transitions."""

    async def test_success_passes_result_through(self, breaker: CircuitBreaker):
        op = AsyncMock(return_value="success")
        assert await breaker.execute(op) == "success"
        assert breaker.get_state().state == CircuitState.CLOSED

    async def test_first_failure_stays_closed(self, breaker: CircuitBreaker):
        with pytest.raises(ClassifiedError):
            await breaker.execute(_failing_op())
        snap = breaker.get_state()
        assert snap.state == CircuitState.CLOSED
        assert snap.failures == 1

    async def test_opens_at_threshold(self, breaker: CircuitBreaker, clock: FakeClock):
        op = _failing_op()
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(op)
        snap = breaker.get_state()
        assert snap.state == CircuitState.OPEN
        assert snap.failures == 2
        assert snap.last_failure_time == clock.now

    async def test_open_rejects_without_invoking(self, breaker: CircuitBreaker):
        op = _failing_op()
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(op)
        assert op.await_count == 2

        with pytest.raises(CircuitOpenError, match="Circuit open for 'openai'") as exc_info:
            await breaker.execute(op)
        assert op.await_count == 2
        assert breaker.total_rejections == 1
        assert exc_info.value.code == ErrorCode.SERVICE_UNAVAILABLE
        assert exc_info.value.severity == Severity.HIGH
        assert exc_info.value.retry_after == pytest.approx(1.0)

    async def test_underlying_error_is_not_transformed(self, breaker: CircuitBreaker):
        error = _network_error()
        with pytest.raises(ClassifiedError) as exc_info:
            await breaker.execute(AsyncMock(side_effect=error))
        assert exc_info.value is error

    async def test_success_resets_failure_count(self, breaker: CircuitBreaker):
        with pytest.raises(ClassifiedError):
            await breaker.execute(_failing_op())
        await breaker.execute(AsyncMock(return_value="ok"))
        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    async def test_reports_half_open_after_recovery(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(_failing_op())
        clock.advance(1.0)
        assert breaker.get_state().state == CircuitState.HALF_OPEN
        # Observing does not transition
        assert breaker._state == CircuitState.OPEN

    async def test_probe_success_closes(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(_failing_op())
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock(return_value="ok"))

        clock.advance(1.5)
        assert await breaker.execute(AsyncMock(return_value="ok")) == "ok"
        snap = breaker.get_state()
        assert snap.state == CircuitState.CLOSED
        assert snap.failures == 0

    async def test_probe_failure_reopens_and_restarts_cooldown(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(_failing_op())

        clock.advance(1.5)
        probe = _failing_op()
        with pytest.raises(ClassifiedError):
            await breaker.execute(probe)
        assert probe.await_count == 1
        snap = breaker.get_state()
        assert snap.state == CircuitState.OPEN
        assert snap.failures == 3
        assert snap.last_failure_time == clock.now

        clock.advance(0.5)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(probe)
        assert probe.await_count == 1

        clock.advance(0.5)
        assert await breaker.execute(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_admits_single_probe(self, breaker: CircuitBreaker, clock: FakeClock):
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(_failing_op())
        clock.advance(1.5)

        release = asyncio.Event()

        async def slow_probe() -> str:
            await release.wait()
            return "recovered"

        probe_task = asyncio.create_task(breaker.execute(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        other = AsyncMock(return_value="ok")
        with pytest.raises(CircuitOpenError):
            await breaker.execute(other)
        other.assert_not_awaited()

        release.set()
        assert await probe_task == "recovered"
        assert breaker.state == CircuitState.CLOSED

    async def test_concurrent_failures_open_once(self, clock: FakeClock):
        cb = CircuitBreaker("firebase", failure_threshold=2, recovery_timeout=5.0, clock=clock)

        async def fail_later() -> None:
            await asyncio.sleep(0)
            raise _network_error()

        results = await asyncio.gather(*(cb.execute(fail_later) for _ in range(3)), return_exceptions=True)
        assert all(isinstance(r, ClassifiedError) for r in results)
        assert cb.state == CircuitState.OPEN
        assert cb.failure_count == 3

    async def test_cancellation_is_not_a_failure(self, breaker: CircuitBreaker):
        async def hang() -> None:
            await asyncio.Event().wait()

        task = asyncio.create_task(breaker.execute(hang))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert breaker.failure_count == 0


class TestMonitoringWindow:
    """Failure streaks expire when failures are far apart."""

    async def test_stale_failure_does_not_count(self, clock: FakeClock):
        cb = CircuitBreaker("elevenlabs", failure_threshold=2, recovery_timeout=1.0, monitoring_window=10.0, clock=clock)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        clock.advance(11.0)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 1

    async def test_failures_inside_window_accumulate(self, clock: FakeClock):
        cb = CircuitBreaker("elevenlabs", failure_threshold=2, recovery_timeout=1.0, monitoring_window=10.0, clock=clock)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        clock.advance(9.0)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        assert cb._state == CircuitState.OPEN

    async def test_no_window_never_expires(self, clock: FakeClock):
        cb = CircuitBreaker("elevenlabs", failure_threshold=2, recovery_timeout=1.0, clock=clock)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        clock.advance(10_000.0)
        with pytest.raises(ClassifiedError):
            await cb.execute(_failing_op())
        assert cb._state == CircuitState.OPEN


class TestResetAndMetrics:
    async def test_reset_from_open(self, breaker: CircuitBreaker):
        for _ in range(2):
            with pytest.raises(ClassifiedError):
                await breaker.execute(_failing_op())
        breaker.reset()
        assert breaker.get_state() == BreakerSnapshot(CircuitState.CLOSED, 0, None)

    async def test_reset_from_closed_is_idempotent(self, breaker: CircuitBreaker):
        breaker.reset()
        breaker.reset()
        assert breaker.get_state() == BreakerSnapshot(CircuitState.CLOSED, 0, None)

    async def test_get_state_does_not_mutate(self, breaker: CircuitBreaker):
        with pytest.raises(ClassifiedError):
            await breaker.execute(_failing_op())
        first = breaker.get_state()
        second = breaker.get_state()
        assert first == second
        with pytest.raises(AttributeError):
            first.failures = 0  # type: ignore[misc]

    def test_snapshot_structure(self):
        cb = CircuitBreaker("my-backend")
        snap = cb.snapshot()
        assert snap["name"] == "my-backend"
        assert snap["state"] == "closed"
        assert snap["failure_count"] == 0
        assert snap["last_failure_time"] is None
        assert snap["total_calls"] == 0

    async def test_metrics_track_correctly(self, breaker: CircuitBreaker):
        await breaker.execute(AsyncMock(return_value=1))
        with pytest.raises(ClassifiedError):
            await breaker.execute(_failing_op())
        assert breaker.total_calls == 2
        assert breaker.total_successes == 1
        assert breaker.total_failures == 1
