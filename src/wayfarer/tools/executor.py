"""Tool execution pipeline.

Every call passes the same stages, short-circuiting at the first
rejection:

1. Resolve the tool definition
2. Rate-limit check keyed by (user, tool)
3. Cache lookup for read-only tools
4. Rule evaluation, then PreToolUse hooks
5. Required-parameter validation on the hook-patched parameters
6. Tool body under a timeout; exceptions become failed results
7. PostToolUse hooks
8. Cache write for successful read-only calls
9. Usage counters and completed/failed events

Nothing raised by a tool body escapes ``execute``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from wayfarer.agent.events.types import EventType
from wayfarer.agent.hooks.manager import HookManager
from wayfarer.agent.hooks.rules import REQUIRED_PARAMS_RULE, RuleEngine
from wayfarer.cache.tool_cache import ToolCache
from wayfarer.core.errors import AgentError, ErrorCode
from wayfarer.core.types import ToolCall, ToolDefinition, ToolExecutionResult
from wayfarer.tools.rate_limiter import RateLimiter, tool_rate_limit_key
from wayfarer.tools.registry import ToolRegistry, is_write_tool

if TYPE_CHECKING:
    from wayfarer.core.context import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_MS = 30_000


def _failure(
    call: ToolCall,
    code: ErrorCode,
    message: str,
    *,
    duration_ms: int = 0,
    blocked: bool = False,
    metadata: dict[str, Any] | None = None,
) -> ToolExecutionResult:
    return ToolExecutionResult(
        tool_call_id=call.id,
        tool_name=call.name,
        success=False,
        error=message,
        error_code=code,
        duration_ms=duration_ms,
        blocked=blocked,
        metadata=metadata or {},
    )


@dataclass(slots=True)
class ToolExecutor:
    """Runs tool calls through rate limiting, caching, rules and hooks.

    Args:
        registry: Tools available to this executor
        cache: Read-only result cache (None disables caching)
        rate_limiter: Admission control per (user, tool)
        hooks: Pre/post interceptors
        rules: Declarative validators evaluated before hooks
        default_timeout_ms: Used when a tool declares no timeout
    """

    registry: ToolRegistry
    cache: ToolCache | None = None
    rate_limiter: RateLimiter | None = None
    hooks: HookManager | None = None
    rules: RuleEngine | None = None
    default_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS

    async def execute(
        self,
        call: ToolCall,
        context: ExecutionContext,
        *,
        use_cache: bool = True,
    ) -> ToolExecutionResult:
        """Execute one tool call. Never raises for tool-level failures."""
        await context.emitter.emit(
            EventType.TOOL_CALL_INITIATED,
            tool_call_id=call.id,
            tool_name=call.name,
            parameters=call.parameters,
        )
        result = await self._pipeline(call, context, use_cache)

        self.registry.increment_usage(result.tool_name, result.success)
        if result.success:
            await context.emitter.emit(
                EventType.TOOL_CALL_COMPLETED,
                tool_call_id=call.id,
                tool_name=result.tool_name,
                duration_ms=result.duration_ms,
                cached=result.cached,
            )
        else:
            await context.emitter.emit(
                EventType.TOOL_CALL_FAILED,
                tool_call_id=call.id,
                tool_name=result.tool_name,
                error=result.error,
                error_code=result.error_code.value if result.error_code else None,
                blocked=result.blocked,
            )
        return result

    async def execute_many(
        self,
        calls: Sequence[ToolCall],
        context: ExecutionContext,
        *,
        use_cache: bool = True,
    ) -> list[ToolExecutionResult]:
        """Execute calls one after another, in order."""
        results: list[ToolExecutionResult] = []
        for call in calls:
            results.append(await self.execute(call, context, use_cache=use_cache))
        return results

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _pipeline(
        self,
        call: ToolCall,
        context: ExecutionContext,
        use_cache: bool,
    ) -> ToolExecutionResult:
        # 1. Resolve
        tool = self.registry.get(call.name)
        if tool is None:
            return _failure(call, ErrorCode.TOOL_NOT_FOUND, f"Tool '{call.name}' not found")

        # 2. Rate limit
        if self.rate_limiter is not None:
            admission = self.rate_limiter.try_request(tool_rate_limit_key(context.user_id, call.name))
            if not admission.allowed:
                return _failure(
                    call,
                    ErrorCode.TOOL_RATE_LIMITED,
                    f"Rate limit exceeded for '{call.name}'; retry in {admission.retry_after_ms}ms",
                    metadata={"retry_after_ms": admission.retry_after_ms},
                )

        # 3. Cache lookup
        cache_key: str | None = None
        if use_cache and self.cache is not None and not is_write_tool(tool):
            cache_key = ToolCache.make_key(context.user_id, call.name, call.parameters)
            entry = self.cache.get_entry(cache_key)
            if entry is not None:
                context.increment("cache_hits")
                await context.emitter.emit(
                    EventType.TOOL_CACHE_HIT, tool_call_id=call.id, tool_name=call.name
                )
                return ToolExecutionResult(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    success=True,
                    result=entry.value,
                    cached=True,
                )
            context.increment("cache_misses")
            await context.emitter.emit(
                EventType.TOOL_CACHE_MISS, tool_call_id=call.id, tool_name=call.name
            )

        # 4a. Rules
        metadata: dict[str, Any] = {}
        if self.rules is not None:
            # Completeness waits for step 5 when hooks may still fill parameters.
            skip = (REQUIRED_PARAMS_RULE.id,) if self.hooks is not None else ()
            evaluation = await self.rules.evaluate(call, tool, context, skip=skip)
            if evaluation.has_errors:
                return _failure(
                    call,
                    ErrorCode.TOOL_VALIDATION_FAILED,
                    "; ".join(evaluation.errors),
                    blocked=True,
                    metadata={"rule_errors": evaluation.errors, "rule_warnings": evaluation.warnings},
                )
            if evaluation.warnings:
                metadata["rule_warnings"] = evaluation.warnings

        # 4b. Pre hooks
        parameters = dict(call.parameters)
        if self.hooks is not None:
            pre = await self.hooks.run_pre(call, context, tool)
            metadata.update(pre.metadata)
            if pre.blocked:
                return _failure(
                    call,
                    ErrorCode.HOOK_BLOCKED,
                    pre.reason or "Blocked by hook",
                    blocked=True,
                    metadata=metadata,
                )
            if pre.skip is not None:
                return ToolExecutionResult(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    success=True,
                    result=pre.skip_result,
                    metadata={**metadata, "skipped": True},
                )
            parameters = pre.parameters
            if pre.replacement is not None and pre.replacement.tool_name != tool.name:
                replacement = self.registry.get(pre.replacement.tool_name)
                if replacement is None:
                    return _failure(
                        call,
                        ErrorCode.TOOL_NOT_FOUND,
                        f"Replacement tool '{pre.replacement.tool_name}' not found",
                        metadata=metadata,
                    )
                metadata["replaced"] = tool.name
                tool = replacement
                cache_key = None

        effective = ToolCall(id=call.id, name=tool.name, parameters=parameters)

        # 5. Required parameters
        missing = [p for p in tool.parameters.required if parameters.get(p) is None]
        if missing:
            return _failure(
                effective,
                ErrorCode.TOOL_VALIDATION_FAILED,
                f"Missing required parameters: {', '.join(missing)}",
                metadata={**metadata, "missing_params": missing},
            )

        # 6. Execute
        result = await self._run_body(tool, effective, context)
        if metadata:
            result = replace(result, metadata={**metadata, **result.metadata})

        # 7. Post hooks
        if self.hooks is not None:
            post = await self.hooks.run_post(effective, result, context, tool)
            if post.blocked:
                return _failure(
                    effective,
                    ErrorCode.HOOK_BLOCKED,
                    post.reason or "Result blocked by hook",
                    duration_ms=result.duration_ms,
                    blocked=True,
                    metadata={**result.metadata, "side_effects_applied": True},
                )
            if post.result is not None:
                result = post.result

        # 8. Cache write
        if result.success and cache_key is not None and self.cache is not None:
            self.cache.put(context.user_id, call.name, call.parameters, result.result)

        return result

    async def _run_body(
        self,
        tool: ToolDefinition,
        call: ToolCall,
        context: ExecutionContext,
    ) -> ToolExecutionResult:
        timeout_ms = tool.timeout_ms or self.default_timeout_ms
        start = time.monotonic()
        try:
            value = await asyncio.wait_for(
                tool.execute(call.parameters, context.tool_context()),
                timeout=timeout_ms / 1000,
            )
        except TimeoutError:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Tool %s timed out after %dms", tool.name, timeout_ms)
            return _failure(
                call,
                ErrorCode.TOOL_TIMEOUT,
                f"Tool '{tool.name}' timed out after {timeout_ms}ms",
                duration_ms=duration_ms,
            )
        except AgentError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info("Tool %s failed: %s", tool.name, e)
            return _failure(call, e.code, e.message, duration_ms=duration_ms, metadata=e.context)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info("Tool %s raised %s: %s", tool.name, type(e).__name__, e)
            return _failure(
                call,
                ErrorCode.TOOL_EXECUTION_FAILED,
                str(e) or type(e).__name__,
                duration_ms=duration_ms,
            )

        return ToolExecutionResult(
            tool_call_id=call.id,
            tool_name=tool.name,
            success=True,
            result=value,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
