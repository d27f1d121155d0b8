"""Pytest fixtures for Wayfarer tests."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from wayfarer.agent.events.bus import EventBus
from wayfarer.config import AgentConfig, create_agent_config, reset_config
from wayfarer.core.context import ExecutionContext
from wayfarer.core.types import ToolContext, ToolDefinition, ToolParameterSchema
from wayfarer.tools.registry import ToolRegistry

ToolFactory = Callable[..., ToolDefinition]


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep tests independent of the developer's config files and env."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("WAYFARER_LOG_LEVEL", "WAYFARER_DEBUG", "WAYFARER_PROVIDER", "WAYFARER_MAX_STEPS"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def agent_config() -> AgentConfig:
    """Config for a keyless local provider with fast retries."""
    return create_agent_config(
        provider="ollama",
        retry_base_ms=1,
        retry_max_delay_ms=5,
        max_steps=10,
    )


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def context(agent_config: AgentConfig, event_bus: EventBus) -> ExecutionContext:
    return ExecutionContext("run_test", "sess_test", "user-1", agent_config, event_bus)


@pytest.fixture
def make_tool() -> ToolFactory:
    """Build a ToolDefinition around a plain result or a callable."""

    def factory(
        name: str,
        result: Any = "ok",
        *,
        required: tuple[str, ...] = (),
        properties: dict[str, dict[str, Any]] | None = None,
        is_write: bool | None = None,
        timeout_ms: int | None = None,
    ) -> ToolDefinition:
        async def execute(params: dict[str, Any], ctx: ToolContext) -> Any:
            if isinstance(result, BaseException):
                raise result
            if callable(result):
                value = result(params, ctx)
                if hasattr(value, "__await__"):
                    value = await value
                return value
            return result

        props = properties or {p: {"type": "string"} for p in required}
        return ToolDefinition(
            name=name,
            description=f"{name} tool",
            execute=execute,
            parameters=ToolParameterSchema(properties=props, required=required),
            is_write=is_write,
            timeout_ms=timeout_ms,
        )

    return factory


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()
