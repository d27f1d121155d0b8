"""Event bus for structured agent events.

One EventBus instance is created per process (or per run) and injected
into every component that publishes. There is no module-level singleton.

Features:
- Per-type, wildcard, filtered and one-shot subscriptions
- Sync and async handlers; async handlers are raced against a timeout
- Listener isolation (errors are logged and counted, never raised)
- Per-run typed emitters that stamp run/session ids
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from wayfarer.agent.events.types import AgentEvent, EventFilter, EventHandler, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscription:
    """Handle returned by every subscribe call."""

    id: str
    bus: EventBus = field(repr=False)
    event_types: frozenset[EventType] = frozenset()

    def unsubscribe(self) -> None:
        self.bus.remove_subscription(self.id)


@dataclass(slots=True)
class _Listener:
    id: str
    handler: EventHandler
    filter: EventFilter | None = None
    once: bool = False


@dataclass(slots=True)
class EventBusStats:
    total_emitted: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    active_subscriptions: int = 0
    handler_errors: int = 0


class EventBus:
    """Typed publish/subscribe hub.

    Usage:
        bus = EventBus()
        sub = bus.on(EventType.TOOL_CALL_COMPLETED, handler)
        await bus.emit(AgentEvent(EventType.TOOL_CALL_COMPLETED, {...}))
        sub.unsubscribe()
    """

    def __init__(self, handler_timeout_s: float = 30.0, max_handlers_per_type: int = 100):
        self.handler_timeout_s = handler_timeout_s
        self.max_handlers_per_type = max_handlers_per_type
        self._by_type: dict[EventType, list[_Listener]] = {}
        self._wildcard: list[_Listener] = []
        self._lock = threading.Lock()
        self._stats = EventBusStats()
        self._background: set[asyncio.Task[None]] = set()

    # =========================================================================
    # Subscribing
    # =========================================================================

    def on(self, event_type: EventType, handler: EventHandler) -> Subscription:
        """Subscribe to one event type."""
        return self._add(event_type, _Listener(uuid.uuid4().hex[:12], handler))

    def once(self, event_type: EventType, handler: EventHandler) -> Subscription:
        """Subscribe to the next occurrence of an event type only."""
        return self._add(event_type, _Listener(uuid.uuid4().hex[:12], handler, once=True))

    def on_many(self, event_types: Iterable[EventType], handler: EventHandler) -> Subscription:
        """Subscribe one handler to several event types under a single handle."""
        types = frozenset(event_types)
        sub_id = uuid.uuid4().hex[:12]
        with self._lock:
            for event_type in types:
                self._by_type.setdefault(event_type, []).append(_Listener(sub_id, handler))
                self._stats.active_subscriptions += 1
        return Subscription(sub_id, self, types)

    def on_all(self, handler: EventHandler) -> Subscription:
        """Subscribe to every event (wildcard)."""
        return self._add(None, _Listener(uuid.uuid4().hex[:12], handler))

    def on_filter(self, predicate: EventFilter, handler: EventHandler) -> Subscription:
        """Subscribe to every event for which ``predicate`` returns True."""
        return self._add(None, _Listener(uuid.uuid4().hex[:12], handler, filter=predicate))

    def _add(self, event_type: EventType | None, listener: _Listener) -> Subscription:
        with self._lock:
            if event_type is None:
                self._wildcard.append(listener)
            else:
                handlers = self._by_type.setdefault(event_type, [])
                if len(handlers) >= self.max_handlers_per_type:
                    logger.warning(
                        "Max handlers (%d) reached for event type %s",
                        self.max_handlers_per_type,
                        event_type.value,
                    )
                handlers.append(listener)
            self._stats.active_subscriptions += 1
        return Subscription(
            listener.id, self, frozenset({event_type}) if event_type else frozenset()
        )

    def remove_subscription(self, subscription_id: str) -> None:
        """Remove every listener registered under a subscription id."""
        with self._lock:
            removed = 0
            for event_type in list(self._by_type):
                kept = [lst for lst in self._by_type[event_type] if lst.id != subscription_id]
                removed += len(self._by_type[event_type]) - len(kept)
                if kept:
                    self._by_type[event_type] = kept
                else:
                    del self._by_type[event_type]
            kept_wild = [lst for lst in self._wildcard if lst.id != subscription_id]
            removed += len(self._wildcard) - len(kept_wild)
            self._wildcard = kept_wild
            self._stats.active_subscriptions -= removed

    # =========================================================================
    # Emitting
    # =========================================================================

    async def emit(self, event: AgentEvent) -> None:
        """Deliver an event to all matching handlers and wait for them.

        Each async handler is raced against ``handler_timeout_s``. Handler
        errors and timeouts are logged and counted, never raised.
        """
        matching = self._select(event)
        if matching:
            await asyncio.gather(*(self._run_handler(lst, event) for lst in matching))

    def _select(self, event: AgentEvent) -> list[_Listener]:
        """Count the event and return its listeners, consuming one-shots.

        A filter that raises counts as a handler error and skips its listener.
        """
        with self._lock:
            self._stats.total_emitted += 1
            key = event.type.value
            self._stats.by_type[key] = self._stats.by_type.get(key, 0) + 1

            candidates = [*self._by_type.get(event.type, ()), *self._wildcard]
            matching: list[_Listener] = []
            one_shot: list[str] = []
            for listener in candidates:
                if listener.filter is not None:
                    try:
                        if not listener.filter(event):
                            continue
                    except Exception:
                        self._stats.handler_errors += 1
                        logger.exception("Event filter failed for %s", key)
                        continue
                matching.append(listener)
                if listener.once:
                    one_shot.append(listener.id)

        for sub_id in one_shot:
            self.remove_subscription(sub_id)
        return matching

    def emit_sync(self, event: AgentEvent) -> None:
        """Fire-and-forget emission.

        Schedules delivery on the running loop. Without a running loop,
        only synchronous handlers are invoked inline.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._deliver_inline(event)
            return

        task = loop.create_task(self.emit(event))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self._stats.handler_errors += 1
            logger.error("Error in emit_sync: %s", task.exception())

    def _deliver_inline(self, event: AgentEvent) -> None:
        for listener in self._select(event):
            try:
                result = listener.handler(event)
                if asyncio.iscoroutine(result):
                    result.close()
                    logger.warning("Async handler skipped for %s (no running loop)", event.type.value)
            except Exception:
                self._stats.handler_errors += 1
                logger.exception("Handler failed for event %s", event.type.value)

    async def _run_handler(self, listener: _Listener, event: AgentEvent) -> None:
        try:
            result = listener.handler(event)
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await asyncio.wait_for(result, timeout=self.handler_timeout_s)
        except TimeoutError:
            self._stats.handler_errors += 1
            logger.warning(
                "Handler %s timed out after %.1fs for %s",
                listener.id,
                self.handler_timeout_s,
                event.type.value,
            )
        except Exception:
            self._stats.handler_errors += 1
            logger.exception("Handler %s failed for event %s", listener.id, event.type.value)

    async def drain(self) -> None:
        """Wait for outstanding emit_sync deliveries."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Management
    # =========================================================================

    def create_emitter(self, run_id: str, session_id: str) -> TypedEventEmitter:
        """Create an emitter that stamps events with run/session ids."""
        return TypedEventEmitter(self, run_id, session_id)

    def stats(self) -> EventBusStats:
        with self._lock:
            return EventBusStats(
                total_emitted=self._stats.total_emitted,
                by_type=dict(self._stats.by_type),
                active_subscriptions=self._stats.active_subscriptions,
                handler_errors=self._stats.handler_errors,
            )

    def clear(self) -> None:
        """Remove all subscriptions."""
        with self._lock:
            self._by_type.clear()
            self._wildcard.clear()
            self._stats.active_subscriptions = 0

    def clear_event_type(self, event_type: EventType) -> None:
        with self._lock:
            handlers = self._by_type.pop(event_type, [])
            self._stats.active_subscriptions -= len(handlers)


class TypedEventEmitter:
    """Builds and emits events for one run/session."""

    def __init__(self, bus: EventBus, run_id: str, session_id: str):
        self.bus = bus
        self.run_id = run_id
        self.session_id = session_id

    def _build(self, event_type: EventType, data: dict[str, Any]) -> AgentEvent:
        return AgentEvent(
            type=event_type,
            data=data,
            run_id=self.run_id,
            session_id=self.session_id,
        )

    async def emit(self, event_type: EventType, **data: Any) -> AgentEvent:
        event = self._build(event_type, data)
        await self.bus.emit(event)
        return event

    def emit_sync(self, event_type: EventType, **data: Any) -> AgentEvent:
        event = self._build(event_type, data)
        self.bus.emit_sync(event)
        return event
