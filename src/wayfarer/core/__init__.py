"""Core types and errors shared by every layer.

ExecutionContext lives in ``wayfarer.core.context`` and is imported from
there directly (it depends on the event bus).
"""

from wayfarer.core.errors import (
    AgentError,
    AllProvidersFailedError,
    CircuitOpenError,
    ErrorCode,
    ProviderError,
    format_error_for_user,
)
from wayfarer.core.providers import ProviderKind
from wayfarer.core.types import (
    AgentState,
    AgentTelemetry,
    ExecutionResult,
    LlmResponse,
    Message,
    Observation,
    ProgressEvent,
    ProgressEventType,
    ThinkingLevel,
    Thought,
    ThoughtAction,
    TokenUsage,
    ToolCall,
    ToolContext,
    ToolDefinition,
    ToolExecutionResult,
    ToolParameterSchema,
)

__all__ = [
    # Errors
    "AgentError",
    "AllProvidersFailedError",
    "CircuitOpenError",
    "ErrorCode",
    "ProviderError",
    "format_error_for_user",
    # Types
    "AgentState",
    "AgentTelemetry",
    "ExecutionResult",
    "LlmResponse",
    "Message",
    "Observation",
    "ProgressEvent",
    "ProgressEventType",
    "ProviderKind",
    "ThinkingLevel",
    "Thought",
    "ThoughtAction",
    "TokenUsage",
    "ToolCall",
    "ToolContext",
    "ToolDefinition",
    "ToolExecutionResult",
    "ToolParameterSchema",
]
