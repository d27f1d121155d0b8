"""In-memory session management.

A session holds per-conversation state, a capped message buffer and free
metadata. Buffers are pruned when they reach the cap, and a background
sweep deletes sessions idle longer than ``max_age_ms``. The sweep is the
only background task in the core; it runs once ``start()`` is called
inside an event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import AgentEvent, EventType
from wayfarer.core.context import new_run_id, new_session_id
from wayfarer.core.errors import ErrorCode, session_error
from wayfarer.core.types import Message, SessionState, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SessionConfig:
    max_messages: int = 100
    max_age_ms: int = 3_600_000
    cleanup_interval_s: float = 60.0


@dataclass(slots=True)
class SessionData:
    state: SessionState
    messages: list[Message] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    last_activity: int = field(default_factory=now_ms)
    metadata: dict[str, Any] = field(default_factory=dict)

    def touch(self) -> None:
        now = now_ms()
        self.last_activity = now
        self.state.last_activity = now
        self.state.updated_at = now


class SessionManager:
    """Creates, looks up, prunes and expires sessions.

    Usage:
        manager = SessionManager(SessionConfig(max_messages=50), bus)
        manager.start()
        session = manager.create("user-1")
        manager.add_message(session.state.session_id, Message(role="user", content="hi"))
        await manager.dispose()
    """

    def __init__(self, config: SessionConfig | None = None, event_bus: EventBus | None = None):
        self.config = config or SessionConfig()
        self.event_bus = event_bus
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()
        self._sweep_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create(
        self,
        user_id: str,
        initial_messages: Iterable[Message] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SessionData:
        messages = list(initial_messages or ())
        state = SessionState(
            session_id=new_session_id(),
            user_id=user_id,
            run_id=new_run_id(),
            message_count=len(messages),
        )
        session = SessionData(state=state, messages=messages, metadata=dict(metadata or {}))
        with self._lock:
            self._sessions[state.session_id] = session
        logger.debug("Created session %s for %s", state.session_id, user_id)
        self._publish(EventType.SESSION_CREATED, session)
        return session

    def get(self, session_id: str) -> SessionData | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> SessionData:
        """Get a session or raise SESSION_NOT_FOUND."""
        session = self._sessions.get(session_id)
        if session is None:
            raise session_error(ErrorCode.SESSION_NOT_FOUND, session_id)
        return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Deleted session %s", session_id)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    # =========================================================================
    # Messages and state
    # =========================================================================

    def messages(self, session_id: str) -> list[Message]:
        session = self._sessions.get(session_id)
        return list(session.messages) if session else []

    def add_message(self, session_id: str, message: Message) -> bool:
        """Append a message, pruning first if the buffer is full."""
        session = self._sessions.get(session_id)
        if session is None:
            return False
        with self._lock:
            if len(session.messages) >= self.config.max_messages:
                session.messages = self._pruned(session.messages)
            session.messages.append(message)
            session.state.message_count = len(session.messages)
            session.touch()
        return True

    def _pruned(self, messages: list[Message]) -> list[Message]:
        """System messages plus the most recent others, 80% of the cap in total."""
        keep = int(self.config.max_messages * 0.8)
        system = [m for m in messages if m.role == "system"]
        others = [m for m in messages if m.role != "system"]
        room = max(keep - len(system), 0)
        kept = others[-room:] if room else []
        logger.debug("Pruned session buffer from %d to %d messages", len(messages), len(system) + len(kept))
        return [*system, *kept]

    def update_state(self, session_id: str, **updates: Any) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        with self._lock:
            session.state = replace(session.state, **updates)
            session.touch()
        return True

    def update_metadata(self, session_id: str, metadata: dict[str, Any]) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        with self._lock:
            session.metadata.update(metadata)
            session.touch()
        return True

    def activate(self, session_id: str) -> bool:
        return self.update_state(session_id, is_active=True)

    def deactivate(self, session_id: str) -> bool:
        return self.update_state(session_id, is_active=False)

    def is_active(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session.state.is_active if session else False

    # =========================================================================
    # Queries
    # =========================================================================

    def by_user(self, user_id: str) -> list[SessionData]:
        return [s for s in list(self._sessions.values()) if s.state.user_id == user_id]

    def active_count(self) -> int:
        return sum(1 for s in list(self._sessions.values()) if s.state.is_active)

    def total_count(self) -> int:
        return len(self._sessions)

    # =========================================================================
    # Expiry
    # =========================================================================

    def cleanup(self) -> int:
        """Delete sessions idle longer than max_age_ms. Returns how many."""
        cutoff = now_ms() - self.config.max_age_ms
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("Expired %d idle sessions", len(expired))
        return len(expired)

    def start(self) -> None:
        """Schedule the periodic sweep on the running loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.get_running_loop().create_task(self._sweep())

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_s)
            try:
                self.cleanup()
            except Exception:
                logger.exception("Session sweep failed")

    async def dispose(self) -> None:
        """Stop the sweep and drop every session."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        self.clear()

    def _publish(self, event_type: EventType, session: SessionData) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit_sync(AgentEvent(
            event_type,
            data={"user_id": session.state.user_id},
            run_id=session.state.run_id,
            session_id=session.state.session_id,
        ))

    def __len__(self) -> int:
        return len(self._sessions)
