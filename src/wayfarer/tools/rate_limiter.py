"""Admission control for tool and provider calls.

Two strategies share one result type:

- SlidingWindowLimiter: per-key timestamp log with optional token weights
- TokenBucketLimiter: per-key bucket refilled continuously, applied lazily

CompositeLimiter chains several limiters and only records a consumption
once every sub-limiter has allowed the request, so a late rejection never
leaves a partial debit behind.

Keys are partitioned by user (see tool_rate_limit_key); a lock guards each
limiter's map so the same instance may be shared across runs.
"""

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Sliding window configuration."""

    max_requests: int
    window_ms: int
    max_tokens: int | None = None
    """Optional cap on the summed request weights inside the window."""

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be positive")


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_ms: int
    reason: str | None = None

    @property
    def retry_after_ms(self) -> int:
        """How long a rejected caller should wait (0 when allowed)."""
        return 0 if self.allowed else self.reset_in_ms


DEFAULT_TOOL_RATE_LIMIT = RateLimitConfig(max_requests=60, window_ms=60_000)


def tool_rate_limit_key(user_id: str, tool_name: str) -> str:
    return f"tool:{user_id}:{tool_name}"


class RateLimiter(Protocol):
    """What the Tool Executor and CompositeLimiter need from a limiter."""

    def check(self, key: str, tokens: int = 0) -> RateLimitResult: ...

    def try_request(self, key: str, tokens: int = 0) -> RateLimitResult: ...

    def reset(self, key: str) -> None: ...

    def clear(self) -> None: ...


# =============================================================================
# Sliding window
# =============================================================================


@dataclass(slots=True)
class _Window:
    stamps: deque[float] = field(default_factory=deque)
    weights: deque[int] = field(default_factory=deque)

    def prune(self, cutoff: float) -> None:
        while self.stamps and self.stamps[0] <= cutoff:
            self.stamps.popleft()
            self.weights.popleft()

    @property
    def weight(self) -> int:
        return sum(self.weights)


@dataclass(frozen=True, slots=True)
class WindowUsage:
    requests: int
    tokens: int
    remaining: int


class SlidingWindowLimiter:
    """Sliding-window limiter.

    Example:
        >>> limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=2, window_ms=1000))
        >>> [limiter.try_request("k").allowed for _ in range(3)]
        [True, True, False]
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _reset_in_ms(self, window: _Window, now: float) -> int:
        if not window.stamps:
            return self.config.window_ms
        return max(0, math.ceil((window.stamps[0] - now) * 1000 + self.config.window_ms))

    def _check_locked(self, key: str, tokens: int) -> RateLimitResult:
        now = self._clock()
        window = self._windows.setdefault(key, _Window())
        window.prune(now - self.config.window_ms / 1000)
        count = len(window.stamps)

        if count >= self.config.max_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_in_ms=self._reset_in_ms(window, now),
                reason=f"Rate limit exceeded: {count}/{self.config.max_requests} requests",
            )

        max_tokens = self.config.max_tokens
        if max_tokens is not None and window.weight + tokens > max_tokens:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_in_ms=self._reset_in_ms(window, now),
                reason=f"Token limit exceeded: {window.weight + tokens}/{max_tokens} tokens",
            )

        return RateLimitResult(
            allowed=True,
            remaining=self.config.max_requests - count - 1,
            reset_in_ms=self.config.window_ms,
        )

    def check(self, key: str, tokens: int = 0) -> RateLimitResult:
        """Test admission without recording anything."""
        with self._lock:
            return self._check_locked(key, tokens)

    def record(self, key: str, tokens: int = 0) -> None:
        with self._lock:
            window = self._windows.setdefault(key, _Window())
            window.stamps.append(self._clock())
            window.weights.append(tokens)

    def try_request(self, key: str, tokens: int = 0) -> RateLimitResult:
        """Check and, if allowed, record in one atomic step."""
        with self._lock:
            result = self._check_locked(key, tokens)
            if result.allowed:
                window = self._windows[key]
                window.stamps.append(self._clock())
                window.weights.append(tokens)
            else:
                logger.debug("Rate limited %s: %s", key, result.reason)
            return result

    def usage(self, key: str) -> WindowUsage:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return WindowUsage(0, 0, self.config.max_requests)
            window.prune(self._clock() - self.config.window_ms / 1000)
            count = len(window.stamps)
            return WindowUsage(count, window.weight, max(0, self.config.max_requests - count))

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def prune(self) -> int:
        """Drop keys with no requests left in the window."""
        cutoff = self._clock() - self.config.window_ms / 1000
        with self._lock:
            empty = []
            for key, window in self._windows.items():
                window.prune(cutoff)
                if not window.stamps:
                    empty.append(key)
            for key in empty:
                del self._windows[key]
            return len(empty)


# =============================================================================
# Token bucket
# =============================================================================


@dataclass(slots=True)
class _Bucket:
    tokens: float
    last_refill: float


class TokenBucketLimiter:
    """Token bucket limiter. New buckets start full."""

    def __init__(
        self,
        capacity: int,
        refill_amount: int,
        refill_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1 or refill_amount < 1 or refill_interval_ms <= 0:
            raise ValueError("capacity, refill_amount and refill_interval_ms must be positive")
        self.capacity = capacity
        self.refill_amount = refill_amount
        self.refill_interval_ms = refill_interval_ms
        self._rate_per_ms = refill_amount / refill_interval_ms
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def _refill(self, key: str) -> _Bucket:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(tokens=self.capacity, last_refill=now)
            self._buckets[key] = bucket
            return bucket
        elapsed_ms = (now - bucket.last_refill) * 1000
        accrued = math.floor(elapsed_ms * self._rate_per_ms)
        if accrued > 0:
            bucket.tokens = min(self.capacity, bucket.tokens + accrued)
            bucket.last_refill = now
        return bucket

    def _check_locked(self, key: str, amount: int) -> RateLimitResult:
        amount = max(1, amount)
        bucket = self._refill(key)
        if bucket.tokens >= amount:
            return RateLimitResult(True, math.floor(bucket.tokens - amount), 0)
        needed = amount - bucket.tokens
        return RateLimitResult(
            allowed=False,
            remaining=math.floor(bucket.tokens),
            reset_in_ms=math.ceil(needed / self._rate_per_ms),
            reason=f"Insufficient tokens: {math.floor(bucket.tokens)}/{amount} needed",
        )

    def check(self, key: str, amount: int = 1) -> RateLimitResult:
        with self._lock:
            return self._check_locked(key, amount)

    def consume(self, key: str, amount: int = 1) -> RateLimitResult:
        with self._lock:
            result = self._check_locked(key, amount)
            if result.allowed:
                self._buckets[key].tokens -= max(1, amount)
            return result

    def try_request(self, key: str, tokens: int = 1) -> RateLimitResult:
        return self.consume(key, tokens)

    def available(self, key: str) -> int:
        with self._lock:
            return math.floor(self._refill(key).tokens)

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


# =============================================================================
# Composite
# =============================================================================


KeyFn = Callable[[str], str]


class CompositeLimiter:
    """All-or-nothing chain of limiters."""

    def __init__(self, limiters: Sequence[RateLimiter | tuple[RateLimiter, KeyFn]] = ()):
        self._limiters: list[tuple[RateLimiter, KeyFn]] = []
        for item in limiters:
            if isinstance(item, tuple):
                self.add(*item)
            else:
                self.add(item)

    def add(self, limiter: RateLimiter, key_fn: KeyFn | None = None) -> "CompositeLimiter":
        self._limiters.append((limiter, key_fn or (lambda key: key)))
        return self

    def _check_all(self, key: str, tokens: int) -> RateLimitResult:
        remaining: list[int] = []
        for limiter, key_fn in self._limiters:
            result = limiter.check(key_fn(key), tokens)
            if not result.allowed:
                return result
            remaining.append(result.remaining)
        return RateLimitResult(True, min(remaining, default=0), 0)

    def check(self, key: str, tokens: int = 0) -> RateLimitResult:
        return self._check_all(key, tokens)

    def try_request(self, key: str, tokens: int = 0) -> RateLimitResult:
        """Check every limiter first, then record on every limiter."""
        result = self._check_all(key, tokens)
        if result.allowed:
            for limiter, key_fn in self._limiters:
                limiter.try_request(key_fn(key), tokens)
        return result

    def reset(self, key: str) -> None:
        for limiter, key_fn in self._limiters:
            limiter.reset(key_fn(key))

    def clear(self) -> None:
        for limiter, _ in self._limiters:
            limiter.clear()
