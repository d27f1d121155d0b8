"""Tool-result and LLM-response caches."""

from wayfarer.cache.keys import canonical_json, content_hash
from wayfarer.cache.response_cache import CachingProvider, ResponseCache
from wayfarer.cache.tool_cache import ToolCache
from wayfarer.cache.ttl import CacheEntry, CacheStats, TTLCache

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CachingProvider",
    "ResponseCache",
    "TTLCache",
    "ToolCache",
    "canonical_json",
    "content_hash",
]
