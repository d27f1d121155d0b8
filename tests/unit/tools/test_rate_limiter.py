"""Tests for sliding window, token bucket and composite limiters."""

import time

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from wayfarer.tools.rate_limiter import (
    CompositeLimiter,
    RateLimitConfig,
    SlidingWindowLimiter,
    TokenBucketLimiter,
    tool_rate_limit_key,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 50.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


# =============================================================================
# Sliding window
# =============================================================================


class TestSlidingWindowLimiter:
    """Tests for the sliding window strategy."""

    def test_fourth_request_in_window_rejected(self) -> None:
        """max 3 per 1000ms: three allowed, the fourth rejected."""
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=3, window_ms=1000))
        results = [limiter.try_request("k") for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining == 0
        assert 0 < results[3].retry_after_ms <= 1000

    def test_window_slides(self) -> None:
        """Requests become available again after the window."""
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=2, window_ms=100))
        limiter.try_request("k")
        limiter.try_request("k")
        assert not limiter.try_request("k").allowed
        time.sleep(0.12)
        assert limiter.try_request("k").allowed

    def test_check_does_not_record(self) -> None:
        """check() is side-effect free."""
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=1, window_ms=1000))
        assert limiter.check("k").allowed
        assert limiter.check("k").allowed
        assert limiter.try_request("k").allowed
        assert not limiter.check("k").allowed

    def test_keys_are_independent(self) -> None:
        """Each user/tool key has its own window."""
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=1, window_ms=1000))
        assert limiter.try_request(tool_rate_limit_key("u1", "search")).allowed
        assert limiter.try_request(tool_rate_limit_key("u2", "search")).allowed
        assert not limiter.try_request(tool_rate_limit_key("u1", "search")).allowed

    def test_token_weights(self) -> None:
        """Summed weights are capped by max_tokens."""
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=10, window_ms=1000, max_tokens=100))
        assert limiter.try_request("k", tokens=60).allowed
        rejected = limiter.try_request("k", tokens=50)
        assert not rejected.allowed
        assert "Token limit" in (rejected.reason or "")
        assert limiter.usage("k").tokens == 60

    def test_reset_and_prune(self) -> None:
        """reset() clears a key; prune() drops idle keys."""
        clock = FakeClock()
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests=1, window_ms=100), clock=clock)
        limiter.try_request("a")
        limiter.try_request("b")
        limiter.reset("a")
        assert limiter.try_request("a").allowed
        clock.advance_ms(150)
        assert limiter.prune() == 2

    def test_invalid_config(self) -> None:
        """Non-positive limits are rejected at construction."""
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=0, window_ms=1000)
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=1, window_ms=0)

    @settings(max_examples=50, deadline=None)
    @given(
        max_requests=st.integers(min_value=1, max_value=20),
        gaps_ms=st.lists(st.integers(min_value=0, max_value=400), min_size=1, max_size=60),
    )
    def test_never_exceeds_limit_in_any_window(self, max_requests: int, gaps_ms: list[int]) -> None:
        """Accepted requests in any trailing window never exceed the limit."""
        window_ms = 1000
        clock = FakeClock()
        limiter = SlidingWindowLimiter(RateLimitConfig(max_requests, window_ms), clock=clock)
        accepted: list[float] = []
        for gap in gaps_ms:
            clock.advance_ms(gap)
            if limiter.try_request("k").allowed:
                accepted.append(clock.now)
                in_window = [t for t in accepted if t > clock.now - window_ms / 1000]
                assert len(in_window) <= max_requests


# =============================================================================
# Token bucket
# =============================================================================


class TestTokenBucketLimiter:
    """Tests for the token bucket strategy."""

    def test_starts_full_and_drains(self) -> None:
        """A new bucket allows ``capacity`` requests."""
        clock = FakeClock()
        limiter = TokenBucketLimiter(capacity=3, refill_amount=1, refill_interval_ms=1000, clock=clock)
        assert [limiter.consume("k").allowed for _ in range(4)] == [True, True, True, False]

    def test_refills_over_time(self) -> None:
        """Tokens accrue at refill_amount per interval, capped at capacity."""
        clock = FakeClock()
        limiter = TokenBucketLimiter(capacity=2, refill_amount=1, refill_interval_ms=100, clock=clock)
        limiter.consume("k", 2)
        assert limiter.available("k") == 0
        clock.advance_ms(150)
        assert limiter.available("k") == 1
        clock.advance_ms(10_000)
        assert limiter.available("k") == 2

    def test_rejection_reports_wait(self) -> None:
        """A rejected request says how long until enough tokens accrue."""
        clock = FakeClock()
        limiter = TokenBucketLimiter(capacity=1, refill_amount=1, refill_interval_ms=256, clock=clock)
        limiter.consume("k")
        result = limiter.consume("k")
        assert not result.allowed
        assert result.reset_in_ms == 256


# =============================================================================
# Composite
# =============================================================================


class TestCompositeLimiter:
    """Tests for all-or-nothing chaining."""

    def test_rejection_leaves_no_partial_debit(self) -> None:
        """If the second limiter rejects, the first is not charged."""
        clock = FakeClock()
        generous = SlidingWindowLimiter(RateLimitConfig(max_requests=10, window_ms=1000), clock=clock)
        strict = TokenBucketLimiter(capacity=1, refill_amount=1, refill_interval_ms=60_000, clock=clock)
        composite = CompositeLimiter([generous, strict])

        assert composite.try_request("k").allowed
        assert not composite.try_request("k").allowed
        assert generous.usage("k").requests == 1

    def test_key_functions(self) -> None:
        """Sub-limiters can partition keys differently."""
        global_limit = SlidingWindowLimiter(RateLimitConfig(max_requests=2, window_ms=1000))
        composite = CompositeLimiter([(global_limit, lambda key: "global")])
        assert composite.try_request("u1").allowed
        assert composite.try_request("u2").allowed
        assert not composite.try_request("u3").allowed
