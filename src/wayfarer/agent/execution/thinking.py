"""Thinking engine: reasoning depth to prompt augmentation.

The configured ThinkingLevel decides how the system prompt is extended
and how much ``<thinking>`` content is expected back from the model.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass

from wayfarer.config import THINKING_PROMPT_TEXTS, ThinkingPrompt
from wayfarer.core.types import Message, ThinkingLevel, Thought

logger = logging.getLogger(__name__)

_THINKING_BLOCK = re.compile(r"<thinking>([\s\S]*?)</thinking>", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ThinkingResult:
    """Thinking content extracted from one model response."""

    content: str
    level: ThinkingLevel
    token_count: int
    truncated: bool


def parse_thinking_level(value: str | ThinkingLevel | None) -> ThinkingLevel:
    """Parse a level name leniently. Unknown or empty values mean LOW."""
    if isinstance(value, ThinkingLevel):
        return value
    if not value:
        return ThinkingLevel.LOW
    try:
        return ThinkingLevel(value.strip().lower())
    except ValueError:
        logger.debug("Unknown thinking level %r; using low", value)
        return ThinkingLevel.LOW


class ThinkingEngine:
    """Applies one thinking level to prompts and responses."""

    def __init__(self, level: ThinkingLevel = ThinkingLevel.LOW):
        self.level = level

    @property
    def prompt(self) -> ThinkingPrompt:
        return THINKING_PROMPT_TEXTS[self.level]

    @property
    def is_enabled(self) -> bool:
        return self.level is not ThinkingLevel.OFF

    @property
    def max_tokens(self) -> int:
        return self.prompt.max_tokens

    def enhance_system_prompt(self, base: str) -> str:
        """Append the level's thinking instructions to a system prompt."""
        if not self.is_enabled or not self.prompt.prefix:
            return base
        return f"{base}\n\n## Thinking Instructions\n{self.prompt.prefix}"

    def extract_thinking(self, content: str) -> ThinkingResult:
        """Pull the first ``<thinking>`` block out of a response."""
        if not self.is_enabled:
            return ThinkingResult("", ThinkingLevel.OFF, 0, False)
        match = _THINKING_BLOCK.search(content)
        if match is None:
            return ThinkingResult("", self.level, 0, False)
        thinking = match.group(1).strip()
        tokens = math.ceil(len(thinking) / 4)
        return ThinkingResult(thinking, self.level, tokens, tokens > self.max_tokens)

    def process(self, content: str) -> tuple[str, str]:
        """Split a response into (thinking, response-without-thinking)."""
        result = self.extract_thinking(content)
        if not result.content:
            return "", content
        return result.content, _THINKING_BLOCK.sub("", content, count=1).strip()

    def wrap(self, content: str) -> str:
        if not self.is_enabled or not self.prompt.include_in_response:
            return content
        return f"<thinking>\n{content}\n</thinking>"

    def estimate_tokens(self, messages: Sequence[Message]) -> int:
        """Thinking tokens across a message history."""
        if not self.is_enabled:
            return 0
        return sum(self.extract_thinking(m.content).token_count for m in messages)

    def summarize(self, thoughts: Sequence[Thought]) -> str:
        """Short digest of the last five thoughts."""
        if not thoughts:
            return ""
        lines = []
        for thought in thoughts[-5:]:
            action = f"using {thought.tool_name}" if thought.tool_name else thought.next_action.value
            lines.append(f"- {thought.reasoning[:100]}... ({action})")
        return "Recent thinking:\n" + "\n".join(lines)
