"""Cache for whole LLM responses.

Only deterministic-enough calls should be routed through here; the key
covers the full message list, tool schemas, model and generation options.
CachingProvider puts the cache in front of any LlmProvider. It stores only
responses without tool calls, so a hit never replays a side effect.
"""

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, replace

from wayfarer.cache.keys import content_hash
from wayfarer.cache.ttl import CacheStats, TTLCache
from wayfarer.core.types import LlmResponse, Message, ToolDefinition
from wayfarer.models.protocol import CompletionOptions, LlmProvider

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_CACHE_SIZE = 1000
DEFAULT_RESPONSE_CACHE_TTL_MS = 3_600_000


def _response_tokens(response: LlmResponse) -> int:
    if response.usage is not None:
        return response.usage.output_tokens
    return math.ceil(len(response.content) / 4)


class ResponseCache(TTLCache[LlmResponse]):
    """TTL cache of LlmResponses that also counts tokens saved by hits."""

    def __init__(
        self,
        max_size: int = DEFAULT_RESPONSE_CACHE_SIZE,
        ttl_ms: int = DEFAULT_RESPONSE_CACHE_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(max_size, ttl_ms, clock)
        self._tokens_saved = 0
        self._saved_lock = threading.Lock()

    @staticmethod
    def make_key(
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] = (),
        model: str = "",
        options: CompletionOptions | None = None,
    ) -> str:
        return content_hash(
            [m.to_dict() for m in messages],
            [t.to_llm_schema() for t in tools],
            model,
            asdict(options) if options is not None else None,
        )

    def get(self, key: str) -> LlmResponse | None:
        response = super().get(key)
        if response is not None:
            with self._saved_lock:
                self._tokens_saved += _response_tokens(response)
        return response

    @property
    def tokens_saved(self) -> int:
        with self._saved_lock:
            return self._tokens_saved

    def clear(self) -> None:
        super().clear()
        with self._saved_lock:
            self._tokens_saved = 0

    def stats(self) -> CacheStats:
        stats = super().stats()
        stats.extra["tokens_saved"] = self.tokens_saved
        return stats


class CachingProvider:
    """LlmProvider that answers repeated identical requests from a ResponseCache.

    Hits come back with ``usage`` cleared, so token accounting only sees
    calls that reached a backend.
    """

    def __init__(self, inner: LlmProvider, cache: ResponseCache):
        self.inner = inner
        self.cache = cache
        self.last_provider: str | None = None

    @property
    def name(self) -> str:
        return self.inner.name

    @property
    def model(self) -> str:
        return self.inner.model

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        key = ResponseCache.make_key(messages, tools or (), self.inner.model, options)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Response cache hit for %s", self.inner.name)
            self.last_provider = None
            return replace(cached, usage=None)

        response = await self.inner.complete(messages, tools, options)
        self.last_provider = getattr(self.inner, "last_provider", None) or self.inner.name
        if not response.has_tool_calls:
            self.cache.set(key, response)
        return response

    async def aclose(self) -> None:
        await self.inner.aclose()
