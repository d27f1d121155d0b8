"""Structured agent event types.

These are the events published on the EventBus for logging and metrics
sinks. Live UI updates use ProgressEvent (see wayfarer.core.types).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wayfarer.core.types import new_id, now_ms


class EventType(Enum):
    """Event types published on the bus."""

    # Run lifecycle
    RUN_STARTED = "run.started"
    RUN_COMPLETED = "run.completed"
    RUN_FAILED = "run.failed"
    RUN_ABORTED = "run.aborted"

    # Planning
    PLAN_CREATED = "plan.created"
    PLAN_UPDATED = "plan.updated"

    # ReAct cycle
    THOUGHT = "react.thought"
    OBSERVATION = "react.observation"
    REFLECTION = "react.reflection"

    # Tools
    TOOL_CALL_INITIATED = "tool.call_initiated"
    TOOL_CALL_COMPLETED = "tool.call_completed"
    TOOL_CALL_FAILED = "tool.call_failed"
    TOOL_CACHE_HIT = "tool.cache_hit"
    TOOL_CACHE_MISS = "tool.cache_miss"

    # LLM
    LLM_REQUEST_STARTED = "llm.request_started"
    LLM_RESPONSE_RECEIVED = "llm.response_received"
    LLM_REQUEST_FAILED = "llm.request_failed"
    LLM_FALLBACK_TRIGGERED = "llm.fallback_triggered"
    CIRCUIT_BREAKER_CHANGED = "llm.circuit_breaker_changed"

    # Hooks
    HOOK_EXECUTED = "hook.executed"
    HOOK_BLOCKED = "hook.blocked"

    # Sessions
    SESSION_CREATED = "session.created"
    SESSION_RESTORED = "session.restored"
    SESSION_COMPACTED = "session.compacted"

    # Errors
    ERROR_OCCURRED = "error.occurred"
    ERROR_RECOVERED = "error.recovered"


@dataclass(frozen=True, slots=True)
class AgentEvent:
    """A single structured event.

    Example:
        >>> event = AgentEvent(EventType.TOOL_CALL_COMPLETED, data={"tool_name": "search"})
        >>> event.type.value
        'tool.call_completed'
    """

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    run_id: str = ""
    session_id: str = ""
    id: str = field(default_factory=lambda: new_id("evt"))
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp,
            "run_id": self.run_id,
            "session_id": self.session_id,
            "data": self.data,
        }


EventHandler = Callable[[AgentEvent], Awaitable[None] | None]
"""Handler signature: sync or async (event) -> None."""

EventFilter = Callable[[AgentEvent], bool]
"""Predicate selecting which events a filtered subscription receives."""
