"""Exponential backoff with jitter for provider and recovery retries.

Formula: delay = min(max_ms, initial_ms * factor**attempt), plus a random
jitter of up to ``jitter * delay``. Attempts are 0-indexed, so the first
retry waits roughly ``initial_ms``.

Example:
    >>> policy = BackoffPolicy(initial_ms=1000, max_ms=10_000, jitter=0.0)
    >>> [compute_backoff(policy, n) for n in range(5)]
    [1000, 2000, 4000, 8000, 10000]
"""

import asyncio
import random
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Configuration for exponential backoff with jitter."""

    initial_ms: int = 1_000
    """Delay before the first retry."""

    max_ms: int = 10_000
    """Cap applied before jitter."""

    factor: float = 2.0

    jitter: float = 0.2
    """Random extra delay as a ratio of the capped delay (0.0-1.0)."""

    def __post_init__(self) -> None:
        if self.initial_ms < 0:
            raise ValueError("initial_ms must not be negative")
        if self.max_ms < self.initial_ms:
            raise ValueError("max_ms must be >= initial_ms")
        if self.factor < 1.0:
            raise ValueError("factor must be >= 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0.0 and 1.0")


PROVIDER_RETRY_BACKOFF = BackoffPolicy(initial_ms=1_000, max_ms=10_000, jitter=0.2)
"""HTTP retries on 408/429/5xx: 1s -> 2s -> 4s (capped at 10s), +20% jitter."""

RECOVERY_BACKOFF = BackoffPolicy(initial_ms=1_000, max_ms=10_000, jitter=0.0)
"""Deterministic schedule used by ErrorRecovery."""


def compute_backoff(policy: BackoffPolicy, attempt: int) -> int:
    """Delay in milliseconds before retry number ``attempt`` (0-indexed)."""
    base = min(policy.max_ms, policy.initial_ms * (policy.factor ** max(attempt, 0)))
    return int(base + base * policy.jitter * random.random())


async def sleep_with_backoff(
    policy: BackoffPolicy,
    attempt: int,
    abort_event: asyncio.Event | None = None,
) -> bool:
    """Sleep for the computed delay.

    Returns:
        True if the sleep completed, False if ``abort_event`` fired first.
    """
    delay_s = compute_backoff(policy, attempt) / 1000
    if abort_event is None:
        await asyncio.sleep(delay_s)
        return True
    try:
        await asyncio.wait_for(abort_event.wait(), timeout=delay_s)
    except TimeoutError:
        return True
    return False
