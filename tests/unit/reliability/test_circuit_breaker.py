"""Tests for CircuitBreaker state transitions."""

import pytest

from wayfarer.agent.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from wayfarer.core.errors import CircuitOpenError, ErrorCode


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


async def _ok() -> str:
    return "ok"


async def _boom() -> str:
    raise RuntimeError("boom")


def _breaker(clock: FakeClock, **kwargs: int) -> CircuitBreaker:
    params = {"failure_threshold": 2, "recovery_timeout_ms": 1000, "success_threshold": 2, **kwargs}
    return CircuitBreaker("test", clock=clock, **params)


class TestCircuitBreaker:
    """Tests for closed -> open -> half_open -> closed/open."""

    def test_starts_closed(self) -> None:
        """A fresh breaker admits calls."""
        breaker = CircuitBreaker("test")
        assert breaker.state is CircuitState.CLOSED
        assert breaker.can_execute()

    def test_opens_after_threshold(self) -> None:
        """Consecutive failures reaching the threshold open the circuit."""
        breaker = _breaker(FakeClock())
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN
        assert breaker.stats().times_opened == 1

    def test_success_resets_failure_count(self) -> None:
        """A success between failures restarts the count."""
        breaker = _breaker(FakeClock())
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking(self) -> None:
        """An open breaker raises CircuitOpenError and never calls fn."""
        clock = FakeClock()
        breaker = _breaker(clock)
        breaker.force_open()
        invoked = False

        async def fn() -> str:
            nonlocal invoked
            invoked = True
            return "x"

        clock.advance_ms(400)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(fn)
        assert not invoked
        assert exc_info.value.code is ErrorCode.LLM_PROVIDER_UNAVAILABLE
        assert 590 <= exc_info.value.retry_in_ms <= 600

    @pytest.mark.asyncio
    async def test_half_open_closes_after_successes(self) -> None:
        """After the recovery timeout, enough successes close the circuit."""
        clock = FakeClock()
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance_ms(1000)
        assert breaker.can_execute()

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state is CircuitState.HALF_OPEN
        await breaker.execute(_ok)
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self) -> None:
        """Any failure while half-open reopens the circuit."""
        clock = FakeClock()
        breaker = _breaker(clock)
        breaker.force_open()
        clock.advance_ms(1500)
        with pytest.raises(RuntimeError):
            await breaker.execute(_boom)
        assert breaker.state is CircuitState.OPEN
        assert not breaker.can_execute()

    def test_state_change_callback(self) -> None:
        """Transitions are reported; callback errors are contained."""
        changes: list[tuple[str, str]] = []

        def callback(name: str, old: CircuitState, new: CircuitState) -> None:
            changes.append((old.value, new.value))
            raise ValueError("listener bug")

        breaker = CircuitBreaker("test", failure_threshold=1, on_state_change=callback)
        breaker.record_failure()
        breaker.reset()
        assert changes == [("closed", "open"), ("open", "closed")]

    def test_stats_to_dict(self) -> None:
        """Stats serialize with the state value."""
        breaker = _breaker(FakeClock())
        breaker.record_success()
        data = breaker.to_dict()
        assert data["state"] == "closed"
        assert data["successful_calls"] == 1
        assert data["failure_threshold"] == 2


class TestCircuitBreakerRegistry:
    """Tests for per-provider breakers."""

    def test_one_breaker_per_name(self) -> None:
        """get() creates once and then returns the same breaker."""
        registry = CircuitBreakerRegistry(failure_threshold=1)
        assert registry.get("a") is registry.get("a")
        assert "a" in registry
        assert registry.get("a").failure_threshold == 1

    def test_reset_all(self) -> None:
        """reset_all closes every breaker."""
        registry = CircuitBreakerRegistry(failure_threshold=1)
        registry.get("a").record_failure()
        registry.get("b").record_failure()
        registry.reset_all()
        assert {s.state for s in registry.all_stats().values()} == {CircuitState.CLOSED}
