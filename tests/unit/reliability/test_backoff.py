"""Tests for exponential backoff."""

import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from wayfarer.agent.reliability.backoff import BackoffPolicy, compute_backoff, sleep_with_backoff


class TestComputeBackoff:
    """Tests for the delay schedule."""

    def test_doubles_until_cap(self) -> None:
        """Without jitter the schedule is deterministic."""
        policy = BackoffPolicy(initial_ms=100, max_ms=1000, jitter=0.0)
        assert [compute_backoff(policy, n) for n in range(6)] == [100, 200, 400, 800, 1000, 1000]

    @given(attempt=st.integers(min_value=0, max_value=30))
    def test_jitter_bounds(self, attempt: int) -> None:
        """Jittered delays stay within [base, base * (1 + jitter)]."""
        policy = BackoffPolicy(initial_ms=100, max_ms=5000, jitter=0.2)
        base = min(5000, 100 * 2**attempt)
        assert base <= compute_backoff(policy, attempt) <= base * 1.2

    def test_invalid_policy(self) -> None:
        """Inconsistent policies are rejected."""
        with pytest.raises(ValueError):
            BackoffPolicy(initial_ms=100, max_ms=10)
        with pytest.raises(ValueError):
            BackoffPolicy(jitter=1.5)


class TestSleepWithBackoff:
    """Tests for abortable sleeping."""

    @pytest.mark.asyncio
    async def test_completes(self) -> None:
        """A short sleep finishes normally."""
        assert await sleep_with_backoff(BackoffPolicy(initial_ms=10, max_ms=10, jitter=0.0), 0)

    @pytest.mark.asyncio
    async def test_abort_event(self) -> None:
        """Setting the abort event ends the sleep early."""
        abort = asyncio.Event()
        policy = BackoffPolicy(initial_ms=5000, max_ms=5000, jitter=0.0)
        task = asyncio.create_task(sleep_with_backoff(policy, 0, abort))
        await asyncio.sleep(0.01)
        abort.set()
        assert await asyncio.wait_for(task, timeout=1) is False
