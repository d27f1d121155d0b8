"""Tests for coalescing progress events into stream blocks."""

import json

import pytest

from wayfarer.agent.execution.blocks import BlockCoalescer, BlockConfig, BlockType, StreamBlock
from wayfarer.agent.orchestrator import Agent
from wayfarer.config import AgentConfig
from wayfarer.core.types import LlmResponse, ProgressEvent, ProgressEventType, ToolCall
from wayfarer.models.mock import MockProvider


def _event(event_type: ProgressEventType, at: int, **data: object) -> ProgressEvent:
    return ProgressEvent(event_type, dict(data), timestamp=at)


@pytest.fixture
def blocks() -> list[StreamBlock]:
    return []


class TestCoalescing:
    """Tests for folding text bursts into blocks."""

    @pytest.mark.asyncio
    async def test_burst_of_thinking_is_one_block(self, blocks: list[StreamBlock]) -> None:
        """Thinking and thought text close together share a block."""
        coalescer = BlockCoalescer(blocks.append)
        await coalescer(_event(ProgressEventType.THINKING, 1_000, content="Need the forecast."))
        await coalescer(_event(ProgressEventType.THOUGHT, 1_010, reasoning="Call the weather tool."))
        assert blocks == []

        await coalescer(_event(ProgressEventType.STEP_START, 1_020, tool_name="lookup_weather"))

        assert [b.type for b in blocks] == [BlockType.THINKING, BlockType.TOOL_USE]
        assert blocks[0].content == "Need the forecast.\nCall the weather tool."
        assert blocks[0].metadata == {"parts": 2}
        assert blocks[0].timestamp == 1_000
        assert json.loads(blocks[1].content) == {"tool_name": "lookup_weather"}
        assert [b.id for b in blocks] == ["block-1", "block-2"]

    @pytest.mark.asyncio
    async def test_gap_starts_new_block(self, blocks: list[StreamBlock]) -> None:
        """Text further apart than the window is not merged."""
        coalescer = BlockCoalescer(blocks.append, BlockConfig(coalesce_window_ms=50))
        await coalescer(_event(ProgressEventType.THINKING, 1_000, content="first"))
        await coalescer(_event(ProgressEventType.THINKING, 2_000, content="second"))
        await coalescer.flush()
        assert [b.content for b in blocks] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_max_block_size_flushes(self, blocks: list[StreamBlock]) -> None:
        """An open block is sent once it reaches the size cap."""
        coalescer = BlockCoalescer(blocks.append, BlockConfig(max_block_size=10))
        await coalescer(_event(ProgressEventType.THINKING, 1_000, content="0123456789"))
        assert [b.content for b in blocks] == ["0123456789"]

    @pytest.mark.asyncio
    async def test_empty_text_ignored(self, blocks: list[StreamBlock]) -> None:
        """Events without text neither open nor extend a block."""
        coalescer = BlockCoalescer(blocks.append)
        await coalescer(_event(ProgressEventType.THOUGHT, 1_000, reasoning=""))
        await coalescer.flush()
        assert blocks == []
        assert coalescer.block_count == 0

    @pytest.mark.asyncio
    async def test_event_types_mapped(self, blocks: list[StreamBlock]) -> None:
        """Non-text events map to their block types; unknown ones become text."""
        coalescer = BlockCoalescer(blocks.append)
        for event_type in (
            ProgressEventType.STEP_COMPLETE,
            ProgressEventType.STEP_FAILED,
            ProgressEventType.ERROR,
            ProgressEventType.OBSERVATION,
            ProgressEventType.COMPLETE,
        ):
            await coalescer(_event(event_type, 1_000))
        assert [b.type for b in blocks] == [
            BlockType.TOOL_RESULT,
            BlockType.TOOL_RESULT,
            BlockType.ERROR,
            BlockType.TEXT,
            BlockType.COMPLETE,
        ]
        assert blocks[3].metadata == {"event_type": "observation"}


class TestHandlers:
    """Tests for handler delivery."""

    @pytest.mark.asyncio
    async def test_async_handler_awaited(self) -> None:
        """Async handlers are awaited in order."""
        seen: list[str] = []

        async def handler(block: StreamBlock) -> None:
            seen.append(block.type.value)

        coalescer = BlockCoalescer(handler)
        await coalescer(_event(ProgressEventType.ERROR, 1_000, error="boom"))
        await coalescer(_event(ProgressEventType.COMPLETE, 1_001))
        assert seen == ["error", "complete"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """A raising handler never breaks the progress stream."""

        def handler(block: StreamBlock) -> None:
            raise RuntimeError("socket closed")

        coalescer = BlockCoalescer(handler)
        await coalescer(_event(ProgressEventType.COMPLETE, 1_000))
        assert coalescer.block_count == 1
        assert "Block handler failed for block-1" in caplog.text

    @pytest.mark.asyncio
    async def test_reset(self, blocks: list[StreamBlock]) -> None:
        """reset() drops the open block and restarts ids."""
        coalescer = BlockCoalescer(blocks.append)
        await coalescer(_event(ProgressEventType.COMPLETE, 1_000))
        await coalescer(_event(ProgressEventType.THINKING, 1_001, content="pending"))
        coalescer.reset()
        await coalescer(_event(ProgressEventType.COMPLETE, 1_002))
        assert [b.id for b in blocks] == ["block-1", "block-1"]
        assert all(b.type is BlockType.COMPLETE for b in blocks)


@pytest.mark.asyncio
async def test_agent_run_streams_blocks(agent_config: AgentConfig, make_tool) -> None:
    """A full run delivers tool blocks and ends with a complete block."""
    provider = MockProvider([
        LlmResponse(tool_calls=(ToolCall("c1", "lookup_weather", {"city": "Oslo"}),)),
        LlmResponse(content="Task complete."),
        LlmResponse(content="It is 21 degrees in Oslo."),
    ])
    agent = Agent("user-1", agent_config, tools=[make_tool("lookup_weather", {"temp": 21})], provider=provider)
    blocks: list[StreamBlock] = []

    await agent.process_message("Weather in Oslo?", on_progress=BlockCoalescer(blocks.append))

    types = [b.type for b in blocks]
    assert BlockType.TOOL_USE in types
    assert BlockType.TOOL_RESULT in types
    assert types[-1] is BlockType.COMPLETE
    assert json.loads(blocks[-1].content)["success"] is True
    await agent.dispose()
