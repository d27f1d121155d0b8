"""Tests for SessionManager."""

import asyncio

import pytest

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import AgentEvent, EventType
from wayfarer.core.errors import AgentError, ErrorCode
from wayfarer.core.types import Message
from wayfarer.session.manager import SessionConfig, SessionManager


class TestLifecycle:
    """Tests for create, lookup and delete."""

    def test_create(self) -> None:
        """New sessions get fresh ids and start active."""
        manager = SessionManager()
        session = manager.create("user-1", [Message(role="user", content="hi")], {"channel": "cli"})
        state = session.state
        assert state.session_id.startswith("sess_")
        assert state.run_id.startswith("run_")
        assert state.message_count == 1
        assert state.is_active
        assert session.metadata == {"channel": "cli"}
        assert manager.get(state.session_id) is session

    def test_require_unknown(self) -> None:
        """require() raises SESSION_NOT_FOUND."""
        with pytest.raises(AgentError) as exc_info:
            SessionManager().require("sess_missing")
        assert exc_info.value.code is ErrorCode.SESSION_NOT_FOUND
        assert "sess_missing" in exc_info.value.message

    def test_delete(self) -> None:
        """delete() reports whether anything was removed."""
        manager = SessionManager()
        sid = manager.create("user-1").state.session_id
        assert manager.delete(sid)
        assert not manager.delete(sid)
        assert len(manager) == 0

    def test_created_event(self, event_bus: EventBus) -> None:
        """Creating a session publishes SESSION_CREATED."""
        seen: list[AgentEvent] = []
        event_bus.on(EventType.SESSION_CREATED, seen.append)
        session = SessionManager(event_bus=event_bus).create("user-1")
        assert seen[0].session_id == session.state.session_id
        assert seen[0].data == {"user_id": "user-1"}


class TestMessages:
    """Tests for the capped message buffer."""

    def test_add_message(self) -> None:
        """Messages are appended and counted."""
        manager = SessionManager()
        sid = manager.create("user-1").state.session_id
        assert manager.add_message(sid, Message(role="user", content="one"))
        assert manager.add_message(sid, Message(role="assistant", content="two"))
        assert [m.content for m in manager.messages(sid)] == ["one", "two"]
        assert manager.get(sid).state.message_count == 2

    def test_unknown_session(self) -> None:
        """Writes to unknown sessions are refused."""
        manager = SessionManager()
        assert not manager.add_message("sess_missing", Message(role="user", content="x"))
        assert manager.messages("sess_missing") == []

    def test_prune_keeps_system_and_recent(self) -> None:
        """A full buffer shrinks to 80% of the cap, keeping system messages."""
        manager = SessionManager(SessionConfig(max_messages=5))
        initial = [Message(role="system", content="sys")] + [
            Message(role="user", content=f"m{i}") for i in range(4)
        ]
        sid = manager.create("user-1", initial).state.session_id

        manager.add_message(sid, Message(role="user", content="new"))

        assert [m.content for m in manager.messages(sid)] == ["sys", "m1", "m2", "m3", "new"]


class TestState:
    """Tests for state updates and queries."""

    def test_activation(self) -> None:
        """deactivate/activate flip the flag and the active count."""
        manager = SessionManager()
        first = manager.create("user-1").state.session_id
        manager.create("user-2")
        assert manager.deactivate(first)
        assert not manager.is_active(first)
        assert manager.active_count() == 1
        assert manager.activate(first)
        assert manager.active_count() == 2

    def test_metadata_and_queries(self) -> None:
        """Metadata merges; sessions are queryable by user."""
        manager = SessionManager()
        sid = manager.create("user-1", metadata={"a": 1}).state.session_id
        manager.create("user-1")
        manager.create("user-2")
        assert manager.update_metadata(sid, {"b": 2})
        assert manager.get(sid).metadata == {"a": 1, "b": 2}
        assert len(manager.by_user("user-1")) == 2
        assert manager.total_count() == 3
        assert not manager.update_state("sess_missing", is_active=False)


class TestExpiry:
    """Tests for idle-session cleanup."""

    def test_cleanup_removes_idle(self) -> None:
        """Sessions idle past max_age_ms are deleted."""
        manager = SessionManager(SessionConfig(max_age_ms=1_000))
        idle = manager.create("user-1")
        fresh = manager.create("user-2")
        idle.last_activity -= 10_000
        assert manager.cleanup() == 1
        assert manager.get(fresh.state.session_id) is not None
        assert manager.get(idle.state.session_id) is None

    @pytest.mark.asyncio
    async def test_background_sweep(self) -> None:
        """start() runs the sweep until dispose()."""
        manager = SessionManager(SessionConfig(max_age_ms=1_000, cleanup_interval_s=0.01))
        manager.create("user-1").last_activity -= 10_000
        manager.start()
        await asyncio.sleep(0.05)
        assert manager.total_count() == 0

        manager.create("user-2")
        await manager.dispose()
        assert manager.total_count() == 0
