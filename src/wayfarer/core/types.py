"""Core data types shared across the agent execution core.

Value types (messages, tool calls, thoughts, observations) are frozen so
that history can be handed around without aliasing surprises. Run state
and telemetry are mutable and owned by the ExecutionContext.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from wayfarer.core.errors import ErrorCode


def new_id(prefix: str) -> str:
    """Generate a short unique identifier with a readable prefix."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def now_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class ThinkingLevel(Enum):
    """Configured reasoning depth."""

    OFF = "off"
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# =============================================================================
# Messages and tool calls
# =============================================================================

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A concrete tool invocation requested by the model."""

    id: str
    name: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "parameters": self.parameters}


@dataclass(frozen=True, slots=True)
class Message:
    """A single conversation message."""

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    """Tool calls made by the assistant in this turn."""

    tool_call_id: str | None = None
    """For role='tool': the call this message answers."""

    name: str | None = None
    """For role='tool': the tool that produced this result."""

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        if self.metadata:
            data["metadata"] = self.metadata
        return data


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts reported by a provider for one call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class LlmResponse:
    """Provider-independent model response."""

    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    thinking: str | None = None
    usage: TokenUsage | None = None
    stop_reason: str | None = None
    model: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


# =============================================================================
# Tools
# =============================================================================


@dataclass(frozen=True, slots=True)
class ToolParameterSchema:
    """JSON-schema-like parameter contract for a tool."""

    properties: dict[str, dict[str, Any]] = field(default_factory=dict)
    """Parameter name -> {"type": ..., "description": ...}."""

    required: tuple[str, ...] = ()

    def to_json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": self.properties,
            "required": list(self.required),
        }


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Run identity handed to a tool body."""

    user_id: str
    run_id: str
    session_id: str
    iteration: int = 0


ToolBody = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]
"""Tool implementation: async (parameters, context) -> result."""


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A tool's static contract plus its executable body."""

    name: str
    description: str
    execute: ToolBody
    parameters: ToolParameterSchema = field(default_factory=ToolParameterSchema)
    category: str | None = None

    is_write: bool | None = None
    """Explicit write classification. None means infer from the name."""

    timeout_ms: int | None = None
    requires_confirmation: bool = False

    def to_llm_schema(self) -> dict[str, Any]:
        """Neutral schema; providers convert to their wire shape."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.to_json_schema(),
        }


@dataclass(frozen=True, slots=True)
class ToolExecutionResult:
    """Outcome of one tool call."""

    tool_call_id: str
    tool_name: str
    success: bool
    result: Any = None
    error: str | None = None
    error_code: ErrorCode | None = None
    duration_ms: int = 0
    cached: bool = False
    blocked: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# ReAct records
# =============================================================================


class ThoughtAction(Enum):
    """What the agent decided to do next."""

    USE_TOOL = "use_tool"
    COMPLETE = "complete"
    ASK_USER = "ask_user"
    RETRY = "retry"


@dataclass(frozen=True, slots=True)
class Thought:
    """One reasoning step."""

    id: str
    iteration: int
    reasoning: str
    next_action: ThoughtAction
    tool_name: str | None = None
    tool_parameters: dict[str, Any] | None = None
    tool_call_id: str | None = None
    confidence: float = 0.5
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class Observation:
    """Result of acting on a Thought."""

    id: str
    thought_id: str
    tool_name: str | None
    success: bool
    result: Any = None
    error: str | None = None
    error_code: ErrorCode | None = None
    duration_ms: int = 0
    timestamp: int = field(default_factory=now_ms)


class ReflectionStep(Enum):
    CONTINUE = "continue"
    ADJUST_PLAN = "adjust_plan"
    COMPLETE = "complete"
    REQUEST_HELP = "request_help"


@dataclass(frozen=True, slots=True)
class Reflection:
    """Post-observation judgment."""

    id: str
    observation_id: str
    thoughts: str
    plan_changed: bool
    satisfied: bool
    should_continue: bool
    next_step: ReflectionStep


class PlanStepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class PlanStep:
    id: str
    description: str
    tool_name: str | None = None
    status: PlanStepStatus = PlanStepStatus.PENDING


@dataclass(slots=True)
class ExecutionPlan:
    id: str
    goal: str
    steps: list[PlanStep] = field(default_factory=list)

    @property
    def completed_ratio(self) -> float:
        """Fraction of steps completed (0.0 for an empty plan)."""
        if not self.steps:
            return 0.0
        done = sum(1 for s in self.steps if s.status == PlanStepStatus.COMPLETED)
        return done / len(self.steps)

    @property
    def pending_steps(self) -> list[PlanStep]:
        return [
            s for s in self.steps
            if s.status in (PlanStepStatus.PENDING, PlanStepStatus.IN_PROGRESS)
        ]


# =============================================================================
# Run state and telemetry
# =============================================================================


@dataclass(slots=True)
class AgentState:
    """Mutable state of one run. Owned by the ExecutionContext."""

    run_id: str
    session_id: str
    user_id: str
    messages: list[Message] = field(default_factory=list)
    thoughts: list[Thought] = field(default_factory=list)
    observations: list[Observation] = field(default_factory=list)
    plan: ExecutionPlan | None = None
    current_iteration: int = 0
    is_complete: bool = False
    completion_reason: str | None = None


@dataclass(slots=True)
class AgentTelemetry:
    """Per-run counters. Counters only ever increase within a run."""

    run_id: str
    start_ms: int = field(default_factory=now_ms)
    duration_ms: int = 0
    total_steps: int = 0
    successful_steps: int = 0
    failed_steps: int = 0
    token_estimate_in: int = 0
    token_estimate_out: int = 0
    llm_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "start_ms": self.start_ms,
            "duration_ms": self.duration_ms,
            "total_steps": self.total_steps,
            "successful_steps": self.successful_steps,
            "failed_steps": self.failed_steps,
            "token_estimate_in": self.token_estimate_in,
            "token_estimate_out": self.token_estimate_out,
            "llm_calls": self.llm_calls,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "errors": self.errors,
        }


TELEMETRY_COUNTERS = frozenset({
    "total_steps",
    "successful_steps",
    "failed_steps",
    "token_estimate_in",
    "token_estimate_out",
    "llm_calls",
    "cache_hits",
    "cache_misses",
    "errors",
})


@dataclass(slots=True)
class SessionState:
    session_id: str
    user_id: str
    run_id: str
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    message_count: int = 0
    last_activity: int = field(default_factory=now_ms)
    is_active: bool = True


# =============================================================================
# Outputs to collaborators
# =============================================================================


class ProgressEventType(Enum):
    PLAN = "plan"
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    STEP_FAILED = "step_failed"
    THINKING = "thinking"
    THOUGHT = "thought"
    OBSERVATION = "observation"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Live progress update for the transport layer."""

    type: ProgressEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data, "timestamp": self.timestamp}


ProgressCallback = Callable[[ProgressEvent], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class AgentAction:
    """An action taken during a run, summarized for persistence."""

    type: str
    entity: str
    description: str
    status: Literal["executed", "failed", "blocked"]
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Final result returned by the orchestrator."""

    success: bool
    message: str
    actions: tuple[AgentAction, ...] = ()
    telemetry: AgentTelemetry | None = None
    events: tuple[ProgressEvent, ...] = ()
    plan: ExecutionPlan | None = None
    completion_reason: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "actions": [
                {
                    "type": a.type,
                    "entity": a.entity,
                    "description": a.description,
                    "status": a.status,
                    "data": a.data,
                }
                for a in self.actions
            ],
            "telemetry": self.telemetry.to_dict() if self.telemetry else None,
            "events": [e.to_dict() for e in self.events],
            "completion_reason": self.completion_reason,
            "session_id": self.session_id,
        }
