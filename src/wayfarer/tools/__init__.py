"""Tool subsystem: registry, executor and admission control."""

from wayfarer.tools.executor import DEFAULT_TOOL_TIMEOUT_MS, ToolExecutor
from wayfarer.tools.rate_limiter import (
    DEFAULT_TOOL_RATE_LIMIT,
    CompositeLimiter,
    RateLimitConfig,
    RateLimiter,
    RateLimitResult,
    SlidingWindowLimiter,
    TokenBucketLimiter,
    tool_rate_limit_key,
)
from wayfarer.tools.registry import ToolRegistry, ToolUsage, is_write_tool

__all__ = [
    # Registry
    "ToolRegistry",
    "ToolUsage",
    "is_write_tool",
    # Executor
    "DEFAULT_TOOL_TIMEOUT_MS",
    "ToolExecutor",
    # Rate limiting
    "CompositeLimiter",
    "DEFAULT_TOOL_RATE_LIMIT",
    "RateLimitConfig",
    "RateLimitResult",
    "RateLimiter",
    "SlidingWindowLimiter",
    "TokenBucketLimiter",
    "tool_rate_limit_key",
]
