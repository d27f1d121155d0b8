"""Structured event publishing for the agent core."""

from wayfarer.agent.events.bus import (
    EventBus,
    EventBusStats,
    Subscription,
    TypedEventEmitter,
)
from wayfarer.agent.events.types import (
    AgentEvent,
    EventFilter,
    EventHandler,
    EventType,
)

__all__ = [
    "AgentEvent",
    "EventBus",
    "EventBusStats",
    "EventFilter",
    "EventHandler",
    "EventType",
    "Subscription",
    "TypedEventEmitter",
]
