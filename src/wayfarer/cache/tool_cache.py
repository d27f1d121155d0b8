"""Cache for read-only tool results.

Keys combine user, tool and a content hash of the parameters, so two users
never share an entry and parameter ordering does not matter. Entries
written through ``put`` are indexed by tool and by user, so invalidation
never has to parse a key.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from wayfarer.cache.keys import content_hash
from wayfarer.cache.ttl import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_TOOL_CACHE_SIZE = 500
DEFAULT_TOOL_CACHE_TTL_MS = 15_000


class ToolCache(TTLCache[Any]):
    """TTL cache of tool results keyed by (user, tool, params).

    Example:
        >>> cache = ToolCache(max_size=10)
        >>> key = cache.put("u1", "search", {"q": "x"}, ["hit"])
        >>> cache.get(key)
        ['hit']
    """

    def __init__(
        self,
        max_size: int = DEFAULT_TOOL_CACHE_SIZE,
        default_ttl_ms: int = DEFAULT_TOOL_CACHE_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(max_size, default_ttl_ms, clock)
        self._owners: dict[str, tuple[str, str]] = {}
        self._by_tool: dict[str, set[str]] = {}
        self._by_user: dict[str, set[str]] = {}

    @staticmethod
    def make_key(user_id: str, tool_name: str, params: dict[str, Any]) -> str:
        return f"{user_id}:{tool_name}:{content_hash(params)}"

    def put(
        self,
        user_id: str,
        tool_name: str,
        params: dict[str, Any],
        value: Any,
        ttl_ms: int | None = None,
    ) -> str:
        """Store a result and index it by tool and user. Returns the key."""
        key = self.make_key(user_id, tool_name, params)
        self.set(key, value, ttl_ms)
        with self._lock:
            if key in self._entries and key not in self._owners:
                self._owners[key] = (user_id, tool_name)
                self._by_tool.setdefault(tool_name, set()).add(key)
                self._by_user.setdefault(user_id, set()).add(key)
        return key

    def invalidate_tool(self, tool_name: str) -> int:
        """Drop every entry for ``tool_name`` across users."""
        with self._lock:
            keys = list(self._by_tool.get(tool_name, ()))
        removed = self.delete_many(keys)
        if removed:
            logger.debug("Invalidated %d cache entries for tool %s", removed, tool_name)
        return removed

    def invalidate_user(self, user_id: str) -> int:
        """Drop every entry cached for ``user_id``."""
        with self._lock:
            keys = list(self._by_user.get(user_id, ()))
        removed = self.delete_many(keys)
        if removed:
            logger.debug("Invalidated %d cache entries for user %s", removed, user_id)
        return removed

    def _forget(self, key: str) -> None:
        owner = self._owners.pop(key, None)
        if owner is None:
            return
        user_id, tool_name = owner
        for index, name in ((self._by_user, user_id), (self._by_tool, tool_name)):
            keys = index.get(name)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del index[name]
