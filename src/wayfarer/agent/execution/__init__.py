"""ReAct execution: the loop and the helpers it runs with."""

from wayfarer.agent.execution.blocks import (
    BlockCoalescer,
    BlockConfig,
    BlockType,
    StreamBlock,
)
from wayfarer.agent.execution.completion import (
    COMPLETION_INDICATORS,
    PREMATURE_PATTERNS,
    CompletionCheck,
    CompletionConfig,
    CompletionPromise,
    CompletionStatus,
    PrematureDetector,
    pattern_detector,
    recovered_success_rate,
)
from wayfarer.agent.execution.react_loop import (
    CompletionReason,
    ReActConfig,
    ReActLoop,
    ReActResult,
    format_observation,
)
from wayfarer.agent.execution.thinking import (
    ThinkingEngine,
    ThinkingResult,
    parse_thinking_level,
)

__all__ = [
    # Progress blocks
    "BlockCoalescer",
    "BlockConfig",
    "BlockType",
    "StreamBlock",
    # Completion
    "COMPLETION_INDICATORS",
    "PREMATURE_PATTERNS",
    "CompletionCheck",
    "CompletionConfig",
    "CompletionPromise",
    "CompletionStatus",
    "PrematureDetector",
    "pattern_detector",
    "recovered_success_rate",
    # Loop
    "CompletionReason",
    "ReActConfig",
    "ReActLoop",
    "ReActResult",
    "format_observation",
    # Thinking
    "ThinkingEngine",
    "ThinkingResult",
    "parse_thinking_level",
]
