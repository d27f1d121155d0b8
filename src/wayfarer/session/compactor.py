"""Context compaction.

When the estimated token count of a history reaches the ceiling, the
messages between the leading system message and the most recent N are
folded into one ``[Context Summary]`` system message. The summary is a
local heuristic (topics, tool actions, file names) unless a summarizer
is supplied.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from wayfarer.agent.reliability.token_tracker import estimate_message_tokens
from wayfarer.config import COMPACTION_CONFIG
from wayfarer.core.types import Message, Observation, Thought, now_ms

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Context Summary]"
SUMMARY_TYPE = "compaction_summary"

Summarizer = Callable[[Sequence[Message]], Awaitable[str]]

_FILE_NAME = re.compile(r"[\"']([^\"']+\.[a-z]+)[\"']", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class CompactionConfig:
    max_tokens_before_compaction: int = COMPACTION_CONFIG.max_tokens_before_compaction
    target_tokens_after_compaction: int = COMPACTION_CONFIG.target_tokens_after_compaction
    preserve_recent_messages: int = COMPACTION_CONFIG.preserve_recent_messages


@dataclass(frozen=True, slots=True)
class CompactionResult:
    compacted: bool
    messages: tuple[Message, ...]
    original_count: int
    new_count: int
    tokens_before: int
    tokens_after: int
    summary: str | None = None
    folded_count: int = 0


@dataclass(frozen=True, slots=True)
class ReActHistoryCompaction:
    thoughts: tuple[Thought, ...]
    observations: tuple[Observation, ...]
    summary: str


def is_summary_message(message: Message) -> bool:
    return message.metadata.get("type") == SUMMARY_TYPE


class ContextCompactor:
    """Keeps message histories under a token ceiling.

    Example:
        >>> compactor = ContextCompactor(CompactionConfig(max_tokens_before_compaction=1000))
        >>> result = compactor.compact(messages)
        >>> result.folded_count
        42
    """

    def __init__(self, config: CompactionConfig | None = None):
        self.config = config or CompactionConfig()

    def estimate_tokens(self, messages: Sequence[Message]) -> int:
        return estimate_message_tokens(messages)

    def needs_compaction(self, messages: Sequence[Message]) -> bool:
        return self.estimate_tokens(messages) >= self.config.max_tokens_before_compaction

    def compact(self, messages: Sequence[Message], *, force: bool = False) -> CompactionResult:
        """Fold older messages into a heuristic summary.

        ``force`` compacts even below the token ceiling.
        """
        split = self._split(messages, force)
        if split is None:
            return self._unchanged(messages)
        head, folded, recent = split
        return self._build(messages, head, folded, recent, _heuristic_summary(folded))

    async def compact_async(
        self,
        messages: Sequence[Message],
        summarizer: Summarizer,
        *,
        force: bool = False,
    ) -> CompactionResult:
        """Like compact(), with the summary produced by ``summarizer``.

        If the summarizer raises, the heuristic summary is used instead.
        """
        split = self._split(messages, force)
        if split is None:
            return self._unchanged(messages)
        head, folded, recent = split
        try:
            summary = await summarizer(folded)
        except Exception:
            logger.exception("Summarizer failed; using heuristic summary")
            summary = _heuristic_summary(folded)
        return self._build(messages, head, folded, recent, summary)

    def compact_react_history(
        self,
        thoughts: Sequence[Thought],
        observations: Sequence[Observation],
        keep: int = 10,
    ) -> ReActHistoryCompaction:
        """Keep the last ``keep`` thoughts and their observations."""
        recent = tuple(thoughts[-keep:]) if keep > 0 else ()
        recent_ids = {t.id for t in recent}
        older = thoughts[: len(thoughts) - len(recent)]
        return ReActHistoryCompaction(
            thoughts=recent,
            observations=tuple(o for o in observations if o.thought_id in recent_ids),
            summary=_react_summary(older, observations),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _split(
        self, messages: Sequence[Message], force: bool
    ) -> tuple[list[Message], list[Message], list[Message]] | None:
        """(leading system message, folded, preserved) or None if nothing to do."""
        if not force and not self.needs_compaction(messages):
            return None

        head = [messages[0]] if messages and messages[0].role == "system" else []
        body = list(messages[len(head):])
        keep = min(max(self.config.preserve_recent_messages, 0), len(body))
        start = len(body) - keep
        # A tool result must stay next to the assistant turn that called it
        while 0 < start < len(body) and body[start].role == "tool":
            start -= 1

        folded, recent = body[:start], body[start:]
        if not folded:
            return None
        return head, folded, recent

    def _unchanged(self, messages: Sequence[Message]) -> CompactionResult:
        tokens = self.estimate_tokens(messages)
        return CompactionResult(
            compacted=False,
            messages=tuple(messages),
            original_count=len(messages),
            new_count=len(messages),
            tokens_before=tokens,
            tokens_after=tokens,
        )

    def _build(
        self,
        original: Sequence[Message],
        head: list[Message],
        folded: list[Message],
        recent: list[Message],
        summary: str,
    ) -> CompactionResult:
        summary_message = Message(
            role="system",
            content=f"{SUMMARY_PREFIX}\n{summary}",
            metadata={
                "type": SUMMARY_TYPE,
                "compacted_count": len(folded),
                "timestamp": now_ms(),
            },
        )
        compacted = (*head, summary_message, *recent)
        tokens_before = self.estimate_tokens(original)
        tokens_after = self.estimate_tokens(compacted)
        logger.info(
            "Compacted %d messages, %d -> %d tokens", len(folded), tokens_before, tokens_after
        )
        return CompactionResult(
            compacted=True,
            messages=compacted,
            original_count=len(original),
            new_count=len(compacted),
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            summary=summary,
            folded_count=len(folded),
        )


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _heuristic_summary(messages: Sequence[Message]) -> str:
    topics: list[str] = []
    actions: list[str] = []
    files: list[str] = []

    for msg in messages:
        if msg.role == "user":
            topics.extend([w for w in msg.content.split() if len(w) > 4][:3])
        for call in msg.tool_calls:
            actions.append(call.name)
            params = json.dumps(call.parameters, default=str)
            files.extend(_FILE_NAME.findall(params))

    parts: list[str] = []
    if topics:
        parts.append(f"Topics discussed: {', '.join(_unique(topics)[:5])}")
    if actions:
        names = _unique(actions)
        parts.append(f"Actions taken: {len(names)} tool calls ({', '.join(names[:5])})")
    if files:
        parts.append(f"Files involved: {', '.join(_unique(files)[:5])}")
    return "\n".join(parts) if parts else "Previous conversation context compacted."


def _react_summary(thoughts: Sequence[Thought], observations: Sequence[Observation]) -> str:
    if not thoughts:
        return ""
    succeeded = sum(1 for o in observations if o.success)
    parts = [
        f"Previous iterations: {len(thoughts)}",
        f"Actions: {succeeded} successful, {len(observations) - succeeded} failed",
    ]
    usage = Counter(t.tool_name for t in thoughts if t.tool_name)
    if usage:
        top = ", ".join(f"{name}({count})" for name, count in usage.most_common(5))
        parts.append(f"Tools used: {top}")
    return ". ".join(parts)
