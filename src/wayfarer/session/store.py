"""Conversation persistence boundary.

The core never persists anything itself. Callers supply a repository;
the in-memory one backs tests, the CLI and single-process embedding.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Protocol, runtime_checkable

from wayfarer.core.types import Message


@runtime_checkable
class ConversationRepository(Protocol):
    """Storage collaborator for conversation history and user settings."""

    async def get_messages(self, user_id: str, session_id: str, limit: int | None = None) -> list[Message]:
        """Messages of a session, oldest first (the last ``limit`` if given)."""
        ...

    async def add_message(self, user_id: str, session_id: str, message: Message) -> None:
        ...

    async def get_settings(self, user_id: str) -> dict[str, Any]:
        ...

    async def set_settings(self, user_id: str, settings: dict[str, Any]) -> None:
        ...


class InMemoryConversationRepository:
    """Dict-backed ConversationRepository."""

    def __init__(self) -> None:
        self._messages: dict[tuple[str, str], list[Message]] = defaultdict(list)
        self._settings: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get_messages(self, user_id: str, session_id: str, limit: int | None = None) -> list[Message]:
        async with self._lock:
            messages = list(self._messages.get((user_id, session_id), ()))
        if limit is not None:
            return messages[-limit:] if limit > 0 else []
        return messages

    async def add_message(self, user_id: str, session_id: str, message: Message) -> None:
        async with self._lock:
            self._messages[(user_id, session_id)].append(message)

    async def get_settings(self, user_id: str) -> dict[str, Any]:
        async with self._lock:
            return dict(self._settings.get(user_id, {}))

    async def set_settings(self, user_id: str, settings: dict[str, Any]) -> None:
        async with self._lock:
            self._settings[user_id] = {**self._settings.get(user_id, {}), **settings}

    def sessions(self, user_id: str) -> list[str]:
        return [sid for (uid, sid) in self._messages if uid == user_id]
