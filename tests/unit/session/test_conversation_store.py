"""Tests for the in-memory conversation repository."""

import pytest

from wayfarer.core.types import Message
from wayfarer.session.store import ConversationRepository, InMemoryConversationRepository


@pytest.mark.asyncio
async def test_messages_scoped_by_user_and_session() -> None:
    """History is keyed by (user, session) and returned oldest first."""
    repo = InMemoryConversationRepository()
    for i in range(4):
        await repo.add_message("user-1", "sess_a", Message(role="user", content=f"a{i}"))
    await repo.add_message("user-1", "sess_b", Message(role="user", content="b0"))
    await repo.add_message("user-2", "sess_a", Message(role="user", content="other"))

    assert [m.content for m in await repo.get_messages("user-1", "sess_a")] == ["a0", "a1", "a2", "a3"]
    assert [m.content for m in await repo.get_messages("user-1", "sess_a", limit=2)] == ["a2", "a3"]
    assert await repo.get_messages("user-1", "sess_a", limit=0) == []
    assert await repo.get_messages("user-3", "sess_a") == []
    assert sorted(repo.sessions("user-1")) == ["sess_a", "sess_b"]


@pytest.mark.asyncio
async def test_settings_merge() -> None:
    """set_settings merges into existing settings."""
    repo = InMemoryConversationRepository()
    await repo.set_settings("user-1", {"thinking_level": "high"})
    await repo.set_settings("user-1", {"provider": "ollama"})
    assert await repo.get_settings("user-1") == {"thinking_level": "high", "provider": "ollama"}
    assert await repo.get_settings("user-2") == {}


@pytest.mark.asyncio
async def test_returned_settings_are_copies() -> None:
    """Mutating returned settings does not change the store."""
    repo = InMemoryConversationRepository()
    await repo.set_settings("user-1", {"a": 1})
    (await repo.get_settings("user-1"))["a"] = 2
    assert await repo.get_settings("user-1") == {"a": 1}


def test_satisfies_protocol() -> None:
    """The in-memory store is a structural ConversationRepository."""
    assert isinstance(InMemoryConversationRepository(), ConversationRepository)
