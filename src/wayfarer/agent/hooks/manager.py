"""Hook manager: ordered, timeout-guarded tool interceptors.

Hooks are kept per phase and run in ascending priority. Each hook is
filtered by its tool pattern and condition, then raced against its
timeout. A failing or slow hook is logged and skipped unless it was
registered with ``continue_on_error=False``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import AgentEvent, EventType
from wayfarer.agent.hooks.types import (
    Block,
    Continue,
    HookDefinition,
    HookExecution,
    HookInput,
    HookPhase,
    HookResult,
    Modify,
    PostHookOutcome,
    PreHookOutcome,
    ReplaceWith,
    SkipTool,
    StopReason,
)
from wayfarer.core.errors import ErrorCode, hook_error
from wayfarer.core.types import ToolCall, ToolDefinition, ToolExecutionResult

if TYPE_CHECKING:
    from wayfarer.cache.tool_cache import ToolCache
    from wayfarer.core.context import ExecutionContext

logger = logging.getLogger(__name__)

Unregister = Callable[[], None]

_MAX_LOG_ENTRIES = 1_000


class HookManager:
    """Registry and dispatcher for pre/post/stop hooks.

    Usage:
        hooks = HookManager(event_bus=bus)
        remove = hooks.register(HookDefinition(
            id="no-deletes",
            phase=HookPhase.PRE_TOOL_USE,
            handler=lambda inp: Block("deletes disabled"),
            tool_pattern=re.compile(r"delete"),
        ))
        outcome = await hooks.run_pre(call, ctx)
        remove()
    """

    def __init__(self, event_bus: EventBus | None = None):
        self.event_bus = event_bus
        self._hooks: dict[str, HookDefinition] = {}
        self._log: list[HookExecution] = []
        self._lock = threading.Lock()

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, hook: HookDefinition) -> Unregister:
        """Register a hook, replacing any hook with the same id.

        Returns:
            Callable that removes the hook.
        """
        with self._lock:
            if hook.id in self._hooks:
                logger.debug("Replacing hook %s", hook.id)
            self._hooks[hook.id] = hook
        logger.debug("Registered %s hook %s (priority %d)", hook.phase.value, hook.id, hook.priority)
        return lambda: self.unregister(hook.id)

    def unregister(self, hook_id: str) -> bool:
        with self._lock:
            return self._hooks.pop(hook_id, None) is not None

    def enable(self, hook_id: str) -> None:
        with self._lock:
            if hook := self._hooks.get(hook_id):
                hook.enabled = True

    def disable(self, hook_id: str) -> None:
        with self._lock:
            if hook := self._hooks.get(hook_id):
                hook.enabled = False

    def get(self, hook_id: str) -> HookDefinition | None:
        return self._hooks.get(hook_id)

    def hooks(self, phase: HookPhase | None = None) -> list[HookDefinition]:
        """Registered hooks (optionally for one phase), in execution order."""
        with self._lock:
            selected = [h for h in self._hooks.values() if phase is None or h.phase is phase]
        return sorted(selected, key=lambda h: h.priority)

    def _applicable(self, phase: HookPhase, hook_input: HookInput) -> list[HookDefinition]:
        tool_name = hook_input.tool_call.name if hook_input.tool_call else None
        selected: list[HookDefinition] = []
        for hook in self.hooks(phase):
            if not hook.enabled:
                continue
            if tool_name is not None and not hook.matches_tool(tool_name):
                continue
            if hook.condition is not None:
                try:
                    if not hook.condition(hook_input):
                        continue
                except Exception:
                    logger.exception("Condition for hook %s failed; skipping hook", hook.id)
                    continue
            selected.append(hook)
        return selected

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def run_pre(
        self,
        call: ToolCall,
        ctx: ExecutionContext | None = None,
        tool: ToolDefinition | None = None,
    ) -> PreHookOutcome:
        """Run PreToolUse hooks for a call.

        Parameter patches accumulate across hooks; each hook sees the call
        as modified by the hooks before it. The first Block or SkipTool
        ends the chain.
        """
        parameters = dict(call.parameters)
        metadata: dict[str, Any] = {}
        replacement: ReplaceWith | None = None

        applicable = self._applicable(
            HookPhase.PRE_TOOL_USE, self._input(HookPhase.PRE_TOOL_USE, ctx, call, tool)
        )
        for hook in applicable:
            current = ToolCall(
                id=call.id,
                name=replacement.tool_name if replacement else call.name,
                parameters=parameters,
            )
            result = await self._invoke(hook, self._input(HookPhase.PRE_TOOL_USE, ctx, current, tool))

            match result:
                case Block(reason=reason):
                    await self._emit_blocked(ctx, hook, current, reason)
                    return PreHookOutcome(
                        blocked=True,
                        reason=reason,
                        parameters=parameters,
                        replacement=replacement,
                        metadata=metadata,
                    )
                case SkipTool():
                    return PreHookOutcome(
                        parameters=parameters,
                        skip=result,
                        replacement=replacement,
                        metadata=metadata,
                    )
                case ReplaceWith(parameters=new_parameters):
                    replacement = result
                    parameters = dict(new_parameters)
                case Modify(patch=patch):
                    parameters = {**parameters, **patch.get("parameters", {})}
                    metadata.update(patch.get("metadata", {}))
                case _:
                    pass

        return PreHookOutcome(parameters=parameters, replacement=replacement, metadata=metadata)

    async def run_post(
        self,
        call: ToolCall,
        result: ToolExecutionResult,
        ctx: ExecutionContext | None = None,
        tool: ToolDefinition | None = None,
    ) -> PostHookOutcome:
        """Run PostToolUse hooks for a finished call.

        A Block here cannot undo the tool's side effects; it only keeps the
        result from being surfaced.
        """
        current = result
        for hook in self._applicable(
            HookPhase.POST_TOOL_USE, self._input(HookPhase.POST_TOOL_USE, ctx, call, tool, current)
        ):
            outcome = await self._invoke(
                hook, self._input(HookPhase.POST_TOOL_USE, ctx, call, tool, current)
            )
            match outcome:
                case Block(reason=reason):
                    await self._emit_blocked(ctx, hook, call, reason)
                    return PostHookOutcome(blocked=True, reason=reason, result=current)
                case Modify(patch=patch):
                    changes: dict[str, Any] = {}
                    if "result" in patch:
                        changes["result"] = patch["result"]
                    if "metadata" in patch:
                        changes["metadata"] = {**current.metadata, **patch["metadata"]}
                    if changes:
                        current = replace(current, **changes)
                case _:
                    pass
        return PostHookOutcome(result=current)

    async def run_stop(
        self,
        reason: StopReason,
        ctx: ExecutionContext | None = None,
        *,
        error: BaseException | None = None,
    ) -> None:
        """Run Stop hooks. Results are ignored; stop hooks only observe."""
        hook_input = HookInput(
            phase=HookPhase.STOP,
            context=ctx,
            stop_reason=reason,
            error=error,
            iteration=ctx.iteration if ctx else 0,
        )
        for hook in self._applicable(HookPhase.STOP, hook_input):
            await self._invoke(hook, hook_input)

    def _input(
        self,
        phase: HookPhase,
        ctx: ExecutionContext | None,
        call: ToolCall,
        tool: ToolDefinition | None,
        result: ToolExecutionResult | None = None,
    ) -> HookInput:
        return HookInput(
            phase=phase,
            context=ctx,
            tool_call=call,
            tool=tool,
            result=result,
            iteration=ctx.iteration if ctx else 0,
        )

    async def _invoke(self, hook: HookDefinition, hook_input: HookInput) -> HookResult:
        """Run one hook under its timeout and log the outcome.

        Raises:
            AgentError: HOOK_TIMEOUT / HOOK_ERROR when the hook fails and was
                registered with ``continue_on_error=False``.
        """
        start = time.monotonic()
        try:
            outcome = hook.handler(hook_input)
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=hook.timeout_ms / 1000)
        except TimeoutError as e:
            self._record(hook, "timeout", start, f"timed out after {hook.timeout_ms}ms")
            logger.warning("Hook %s timed out after %dms", hook.id, hook.timeout_ms)
            if not hook.continue_on_error:
                raise hook_error(
                    ErrorCode.HOOK_TIMEOUT, hook.id, f"Hook '{hook.id}' timed out"
                ) from e
            return Continue()
        except Exception as e:
            self._record(hook, "error", start, str(e))
            logger.exception("Hook %s failed", hook.id)
            if not hook.continue_on_error:
                raise hook_error(ErrorCode.HOOK_ERROR, hook.id, f"Hook '{hook.id}' failed: {e}") from e
            return Continue()

        if outcome is None:
            outcome = Continue()
        elif not isinstance(outcome, (Continue, Block, Modify, SkipTool, ReplaceWith)):
            logger.warning("Hook %s returned unsupported %r; treating as continue", hook.id, outcome)
            outcome = Continue()

        self._record(hook, type(outcome).__name__.lower(), start)
        ctx = hook_input.context
        if self.event_bus is not None:
            await self.event_bus.emit(AgentEvent(
                type=EventType.HOOK_EXECUTED,
                data={"hook_id": hook.id, "phase": hook.phase.value, "outcome": type(outcome).__name__},
                run_id=ctx.run_id if ctx else "",
                session_id=ctx.session_id if ctx else "",
            ))
        return outcome

    async def _emit_blocked(
        self,
        ctx: ExecutionContext | None,
        hook: HookDefinition,
        call: ToolCall,
        reason: str,
    ) -> None:
        logger.info("Hook %s blocked %s: %s", hook.id, call.name, reason)
        if self.event_bus is None:
            return
        await self.event_bus.emit(AgentEvent(
            type=EventType.HOOK_BLOCKED,
            data={
                "hook_id": hook.id,
                "phase": hook.phase.value,
                "tool_name": call.name,
                "reason": reason,
            },
            run_id=ctx.run_id if ctx else "",
            session_id=ctx.session_id if ctx else "",
        ))

    def _record(self, hook: HookDefinition, outcome: str, start: float, error: str | None = None) -> None:
        entry = HookExecution(
            hook_id=hook.id,
            phase=hook.phase,
            outcome=outcome,
            duration_ms=int((time.monotonic() - start) * 1000),
            error=error,
        )
        with self._lock:
            self._log.append(entry)
            if len(self._log) > _MAX_LOG_ENTRIES:
                del self._log[: len(self._log) - _MAX_LOG_ENTRIES]

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def execution_log(self) -> list[HookExecution]:
        with self._lock:
            return list(self._log)

    def clear_log(self) -> None:
        with self._lock:
            self._log.clear()

    def clear(self) -> None:
        """Remove all hooks and the execution log."""
        with self._lock:
            self._hooks.clear()
            self._log.clear()

    def __len__(self) -> int:
        return len(self._hooks)


# =============================================================================
# Built-in hooks
# =============================================================================


def logging_hook(priority: int = 0) -> HookDefinition:
    """Pre hook that logs every tool call at DEBUG."""

    def handler(hook_input: HookInput) -> HookResult:
        call = hook_input.tool_call
        if call is not None:
            logger.debug(
                "Tool call %s (iteration %d): %s", call.name, hook_input.iteration, call.parameters
            )
        return Continue()

    return HookDefinition(
        id="logging",
        phase=HookPhase.PRE_TOOL_USE,
        handler=handler,
        priority=priority,
        description="Logs tool calls",
    )


def validation_hook(
    validator: Callable[[ToolCall, ToolDefinition | None], str | None] | None = None,
    priority: int = 1,
) -> HookDefinition:
    """Pre hook that blocks calls rejected by ``validator``.

    The validator returns an error message to block, or None to pass.
    Without a validator, missing required parameters are recorded in the
    outcome metadata (the executor's own validation then rejects them).
    """

    def handler(hook_input: HookInput) -> HookResult:
        call, tool = hook_input.tool_call, hook_input.tool
        if call is None:
            return Continue()
        if validator is not None:
            problem = validator(call, tool)
            return Block(problem) if problem else Continue()
        if tool is None:
            return Continue()
        missing = [p for p in tool.parameters.required if call.parameters.get(p) is None]
        if missing:
            return Modify({"metadata": {"missing_params": missing}})
        return Continue()

    return HookDefinition(
        id="validation",
        phase=HookPhase.PRE_TOOL_USE,
        handler=handler,
        priority=priority,
        description="Validates tool parameters",
    )


def cache_check_hook(
    cache: ToolCache | None = None,
    min_duration_ms: int = 100,
    priority: int = 10,
) -> HookDefinition:
    """Post hook that marks slow successful results as cacheable.

    With a cache, a successful write call invalidates every cached read of
    the calling user. Without a context the whole cache is cleared.
    """
    from wayfarer.tools.registry import is_write_tool

    def handler(hook_input: HookInput) -> HookResult:
        result = hook_input.result
        if result is None or not result.success:
            return Continue()
        tool = hook_input.tool
        if cache is not None and tool is not None and is_write_tool(tool):
            if hook_input.context is not None:
                cache.invalidate_user(hook_input.context.user_id)
            else:
                cache.clear()
            return Continue()
        if result.duration_ms > min_duration_ms:
            return Modify({"metadata": {"cacheable": True}})
        return Continue()

    return HookDefinition(
        id="cache-check",
        phase=HookPhase.POST_TOOL_USE,
        handler=handler,
        priority=priority,
        description="Marks cacheable results",
    )
