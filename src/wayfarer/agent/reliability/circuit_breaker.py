"""Per-provider circuit breaker.

States:
- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls are rejected without being invoked
- HALF_OPEN: trial calls pass; enough consecutive successes close the
  circuit, any failure reopens it

Legal transitions are closed -> open -> half_open -> {closed, open}.
``reset()`` and ``force_open()`` are the only manual overrides.

Example:
    >>> breaker = CircuitBreaker("anthropic", failure_threshold=2)
    >>> breaker.record_failure()
    >>> breaker.record_failure()
    >>> breaker.state
    <CircuitState.OPEN: 'open'>
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from wayfarer.config import CIRCUIT_BREAKER_CONFIG
from wayfarer.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    """Normal operation - failures are counted."""

    OPEN = "open"
    """Circuit tripped - calls rejected."""

    HALF_OPEN = "half_open"
    """Testing recovery - trial calls allowed."""


StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]
"""(breaker name, from state, to state)."""


@dataclass(frozen=True, slots=True)
class CircuitBreakerStats:
    name: str
    state: CircuitState
    total_calls: int
    successful_calls: int
    failed_calls: int
    consecutive_failures: int
    consecutive_successes: int
    last_failure_time: float | None
    last_state_change: float | None
    times_opened: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_failure_time": self.last_failure_time,
            "last_state_change": self.last_state_change,
            "times_opened": self.times_opened,
        }


@dataclass
class CircuitBreaker:
    """Failure-isolation state machine for one provider.

    Attributes:
        name: Provider name (used in errors and callbacks)
        failure_threshold: Consecutive failures before opening (default 5)
        recovery_timeout_ms: Time after the last failure before a trial (default 30s)
        success_threshold: Consecutive half-open successes before closing (default 3)
    """

    name: str = "default"

    failure_threshold: int = CIRCUIT_BREAKER_CONFIG.failure_threshold
    """Number of consecutive failures before opening circuit."""

    recovery_timeout_ms: int = CIRCUIT_BREAKER_CONFIG.recovery_timeout_ms
    """Milliseconds after the last failure before a half-open trial."""

    success_threshold: int = CIRCUIT_BREAKER_CONFIG.success_threshold
    """Consecutive successes in HALF_OPEN needed to close."""

    on_state_change: StateChangeCallback | None = None

    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    # Private state (not in __init__)
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _consecutive_successes: int = field(default=0, init=False)
    _total_calls: int = field(default=0, init=False)
    _successful_calls: int = field(default=0, init=False)
    _failed_calls: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _last_state_change: float | None = field(default=None, init=False)
    _times_opened: int = field(default=0, init=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    def _recovery_elapsed(self) -> bool:
        if self._last_failure_time is None:
            return True
        return (self.clock() - self._last_failure_time) * 1000 >= self.recovery_timeout_ms

    def _retry_in_ms(self) -> int:
        if self._last_failure_time is None:
            return 0
        waited = (self.clock() - self._last_failure_time) * 1000
        return max(0, int(self.recovery_timeout_ms - waited))

    def can_execute(self) -> bool:
        """Whether a call would be admitted right now (no state change)."""
        if self._state == CircuitState.OPEN:
            return self._recovery_elapsed()
        return True

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` through the breaker.

        Raises:
            CircuitOpenError: If open and the recovery window has not
                elapsed. ``fn`` is not invoked.
        """
        if self._state == CircuitState.OPEN:
            if not self._recovery_elapsed():
                raise CircuitOpenError(self.name, self._retry_in_ms())
            self._transition(CircuitState.HALF_OPEN)

        try:
            result = await fn()
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful call; closes a half-open circuit at threshold."""
        self._total_calls += 1
        self._successful_calls += 1
        self._consecutive_failures = 0
        self._consecutive_successes += 1
        if (
            self._state == CircuitState.HALF_OPEN
            and self._consecutive_successes >= self.success_threshold
        ):
            self._transition(CircuitState.CLOSED)

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed call; may open the circuit."""
        self._total_calls += 1
        self._failed_calls += 1
        self._consecutive_failures += 1
        self._consecutive_successes = 0
        self._last_failure_time = self.clock()
        if error is not None:
            logger.debug("Breaker %s recorded failure: %s", self.name, error)

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force CLOSED and clear consecutive counters."""
        self._transition(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Trip the breaker manually; the recovery window starts now."""
        self._last_failure_time = self.clock()
        self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = self.clock()
        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._consecutive_successes = 0
        elif new_state == CircuitState.OPEN:
            self._consecutive_successes = 0
            if old_state != CircuitState.OPEN:
                self._times_opened += 1

        if old_state == new_state:
            return
        logger.info("Circuit %s: %s -> %s", self.name, old_state.value, new_state.value)
        if self.on_state_change is not None:
            try:
                self.on_state_change(self.name, old_state, new_state)
            except Exception:
                logger.exception("State change callback failed for breaker %s", self.name)

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            total_calls=self._total_calls,
            successful_calls=self._successful_calls,
            failed_calls=self._failed_calls,
            consecutive_failures=self._consecutive_failures,
            consecutive_successes=self._consecutive_successes,
            last_failure_time=self._last_failure_time,
            last_state_change=self._last_state_change,
            times_opened=self._times_opened,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.stats().to_dict(),
            "failure_threshold": self.failure_threshold,
            "recovery_timeout_ms": self.recovery_timeout_ms,
            "success_threshold": self.success_threshold,
        }

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker(name={self.name!r}, state={self._state.value}, "
            f"failures={self._consecutive_failures}/{self.failure_threshold})"
        )


class CircuitBreakerRegistry:
    """One breaker per provider name, created on first use."""

    def __init__(
        self,
        failure_threshold: int = CIRCUIT_BREAKER_CONFIG.failure_threshold,
        recovery_timeout_ms: int = CIRCUIT_BREAKER_CONFIG.recovery_timeout_ms,
        success_threshold: int = CIRCUIT_BREAKER_CONFIG.success_threshold,
        on_state_change: StateChangeCallback | None = None,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout_ms = recovery_timeout_ms
        self.success_threshold = success_threshold
        self.on_state_change = on_state_change
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                failure_threshold=self.failure_threshold,
                recovery_timeout_ms=self.recovery_timeout_ms,
                success_threshold=self.success_threshold,
                on_state_change=self.on_state_change,
            )
            self._breakers[name] = breaker
        return breaker

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def all_stats(self) -> dict[str, CircuitBreakerStats]:
        return {name: b.stats() for name, b in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
