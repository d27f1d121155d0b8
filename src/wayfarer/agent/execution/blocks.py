"""Block coalescing for progress output.

BlockCoalescer is itself a ProgressCallback. It folds bursts of
THINKING/THOUGHT text into a single thinking block and passes every other
progress event through as one complete block, so a transport sends fewer,
larger updates.

Pending text is emitted when an event of another kind arrives, when the
burst window has passed, when the text reaches ``max_block_size``, or at
COMPLETE.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wayfarer.core.types import ProgressEvent, ProgressEventType

logger = logging.getLogger(__name__)


class BlockType(Enum):
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    COMPLETE = "complete"


_BLOCK_TYPES: dict[ProgressEventType, BlockType] = {
    ProgressEventType.THINKING: BlockType.THINKING,
    ProgressEventType.THOUGHT: BlockType.THINKING,
    ProgressEventType.STEP_START: BlockType.TOOL_USE,
    ProgressEventType.STEP_COMPLETE: BlockType.TOOL_RESULT,
    ProgressEventType.STEP_FAILED: BlockType.TOOL_RESULT,
    ProgressEventType.ERROR: BlockType.ERROR,
    ProgressEventType.COMPLETE: BlockType.COMPLETE,
}

# Events whose text is appended to an open block instead of sent alone
_TEXT_FIELDS: dict[ProgressEventType, str] = {
    ProgressEventType.THINKING: "content",
    ProgressEventType.THOUGHT: "reasoning",
}


@dataclass(frozen=True, slots=True)
class StreamBlock:
    """One unit of output for a transport."""

    id: str
    type: BlockType
    content: str
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


BlockHandler = Callable[[StreamBlock], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class BlockConfig:
    coalesce_window_ms: int = 50
    """Text events further apart than this start a new block."""

    max_block_size: int = 4096
    """Characters after which an open block is emitted."""


@dataclass(slots=True)
class _OpenBlock:
    type: BlockType
    started_at: int
    last_at: int
    parts: list[str] = field(default_factory=list)
    size: int = 0


class BlockCoalescer:
    """ProgressCallback that forwards coalesced StreamBlocks to a handler.

    Usage:
        blocks = BlockCoalescer(send_to_client)
        await agent.process_message("Plan my week", on_progress=blocks)
    """

    def __init__(self, handler: BlockHandler, config: BlockConfig | None = None):
        self.handler = handler
        self.config = config or BlockConfig()
        self._open: _OpenBlock | None = None
        self._count = 0

    @property
    def block_count(self) -> int:
        return self._count

    async def __call__(self, event: ProgressEvent) -> None:
        field_name = _TEXT_FIELDS.get(event.type)
        if field_name is None:
            await self.flush()
            await self._send(
                _BLOCK_TYPES.get(event.type, BlockType.TEXT),
                json.dumps(event.data, default=str),
                event.timestamp,
                {"event_type": event.type.value},
            )
            return

        text = str(event.data.get(field_name) or "")
        if not text:
            return
        block_type = _BLOCK_TYPES[event.type]
        current = self._open
        if current is not None and (
            current.type is not block_type
            or event.timestamp - current.last_at > self.config.coalesce_window_ms
        ):
            await self.flush()
            current = None
        if current is None:
            current = self._open = _OpenBlock(block_type, event.timestamp, event.timestamp)
        current.parts.append(text)
        current.size += len(text)
        current.last_at = event.timestamp
        if current.size >= self.config.max_block_size:
            await self.flush()

    async def flush(self) -> None:
        """Emit the open text block, if any."""
        current, self._open = self._open, None
        if current is None:
            return
        await self._send(
            current.type, "\n".join(current.parts), current.started_at, {"parts": len(current.parts)}
        )

    def reset(self) -> None:
        """Drop any open block and restart numbering."""
        self._open = None
        self._count = 0

    async def _send(
        self, block_type: BlockType, content: str, timestamp: int, metadata: dict[str, Any]
    ) -> None:
        self._count += 1
        block = StreamBlock(f"block-{self._count}", block_type, content, timestamp, metadata)
        try:
            outcome = self.handler(block)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Block handler failed for %s", block.id)
