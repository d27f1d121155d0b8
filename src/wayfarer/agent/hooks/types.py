"""Hook types: phases, definitions and tagged handler results.

A hook handler receives a HookInput and returns one of the result
variants below (or None, which means Continue). Results are matched
structurally by the HookManager; handlers never signal intent through
the shape of a dict.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from wayfarer.core.types import ToolCall, ToolDefinition, ToolExecutionResult, now_ms

if TYPE_CHECKING:
    from wayfarer.core.context import ExecutionContext


class HookPhase(Enum):
    """Points in the tool lifecycle where hooks run."""

    PRE_TOOL_USE = "pre_tool_use"
    POST_TOOL_USE = "post_tool_use"
    STOP = "stop"


class StopReason(Enum):
    """Why a run stopped, as seen by stop hooks."""

    COMPLETE = "complete"
    ERROR = "error"
    USER_CANCEL = "user_cancel"
    MAX_ITERATIONS = "max_iterations"
    TIMEOUT = "timeout"


# =============================================================================
# Handler results
# =============================================================================


@dataclass(frozen=True, slots=True)
class Continue:
    """Pass the call through unchanged."""


@dataclass(frozen=True, slots=True)
class Block:
    """Abort the call (pre) or suppress the result (post)."""

    reason: str


@dataclass(frozen=True, slots=True)
class Modify:
    """Patch the call or its result.

    Pre hooks: ``patch["parameters"]`` is merged into the call parameters.
    Post hooks: ``patch["result"]`` replaces the result value.
    ``patch["metadata"]`` is merged into the outcome metadata in both phases.
    """

    patch: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SkipTool:
    """Pre only: use ``result`` as the tool output without running the tool."""

    result: Any = None


@dataclass(frozen=True, slots=True)
class ReplaceWith:
    """Pre only: run a different tool (or the same tool) with new parameters."""

    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)


HookResult = Continue | Block | Modify | SkipTool | ReplaceWith


# =============================================================================
# Definitions
# =============================================================================


@dataclass(frozen=True, slots=True)
class HookInput:
    """Everything a hook handler may inspect."""

    phase: HookPhase
    context: ExecutionContext | None = None
    tool_call: ToolCall | None = None
    tool: ToolDefinition | None = None
    result: ToolExecutionResult | None = None
    stop_reason: StopReason | None = None
    error: BaseException | None = None
    iteration: int = 0


HookHandler = Callable[[HookInput], Awaitable[HookResult | None] | HookResult | None]
"""Handler signature: sync or async (input) -> result or None."""

HookCondition = Callable[[HookInput], bool]


@dataclass(slots=True)
class HookDefinition:
    """A registered interceptor.

    ``tool_pattern`` is either an exact tool name or a compiled regex that
    is searched against the tool name. Stop hooks ignore it.
    """

    id: str
    phase: HookPhase
    handler: HookHandler
    priority: int = 100
    enabled: bool = True
    tool_pattern: str | re.Pattern[str] | None = None
    condition: HookCondition | None = None
    timeout_ms: int = 5_000
    continue_on_error: bool = True
    description: str = ""

    def matches_tool(self, tool_name: str) -> bool:
        if self.tool_pattern is None:
            return True
        if isinstance(self.tool_pattern, str):
            return tool_name == self.tool_pattern
        return self.tool_pattern.search(tool_name) is not None


@dataclass(frozen=True, slots=True)
class HookExecution:
    """One entry of the hook execution log."""

    hook_id: str
    phase: HookPhase
    outcome: str
    duration_ms: int
    error: str | None = None
    timestamp: int = field(default_factory=now_ms)


# =============================================================================
# Aggregate outcomes
# =============================================================================


@dataclass(frozen=True, slots=True)
class PreHookOutcome:
    """Combined effect of all pre hooks on one call."""

    blocked: bool = False
    reason: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    skip: SkipTool | None = None
    replacement: ReplaceWith | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def skip_result(self) -> Any:
        return self.skip.result if self.skip else None


@dataclass(frozen=True, slots=True)
class PostHookOutcome:
    """Combined effect of all post hooks on one result."""

    blocked: bool = False
    reason: str | None = None
    result: ToolExecutionResult | None = None
