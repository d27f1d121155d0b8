"""Plugin contract.

A plugin contributes tools and hooks to a running agent. It receives a
PluginInitContext whose register_* callables are the only way in; the
loader tracks what each plugin registered so it can be undone.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from wayfarer.agent.hooks.types import HookDefinition
from wayfarer.core.types import ToolDefinition

if TYPE_CHECKING:
    from wayfarer.core.context import ExecutionContext


@dataclass(frozen=True, slots=True)
class PluginMetadata:
    id: str
    name: str
    version: str
    description: str = ""
    author: str | None = None
    dependencies: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PluginConfig:
    enabled: bool = True
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PluginInitContext:
    """What a plugin sees while initializing."""

    execution_context: ExecutionContext | None
    config: PluginConfig
    register_tool: Callable[[ToolDefinition], None]
    register_hook: Callable[[HookDefinition], None]
    logger: logging.Logger


@runtime_checkable
class Plugin(Protocol):
    """Minimal plugin shape. ``dispose`` and ``on_config_change`` are optional."""

    metadata: PluginMetadata

    async def initialize(self, context: PluginInitContext) -> None:
        ...


class BasePlugin:
    """Registers whatever get_tools() and get_hooks() return.

    Usage:
        class WeatherPlugin(BasePlugin):
            metadata = PluginMetadata("weather", "Weather", "1.0.0")

            def get_tools(self):
                return [forecast_tool]
    """

    metadata: PluginMetadata

    def __init__(self) -> None:
        self.context: PluginInitContext | None = None

    def get_tools(self) -> Sequence[ToolDefinition]:
        return ()

    def get_hooks(self) -> Sequence[HookDefinition]:
        return ()

    @property
    def config(self) -> PluginConfig | None:
        return self.context.config if self.context else None

    @property
    def logger(self) -> logging.Logger:
        if self.context is not None:
            return self.context.logger
        return logging.getLogger(f"wayfarer.plugins.{self.metadata.id}")

    async def initialize(self, context: PluginInitContext) -> None:
        self.context = context
        for tool in self.get_tools():
            context.register_tool(tool)
        for hook in self.get_hooks():
            context.register_hook(hook)

    async def dispose(self) -> None:
        self.context = None


class SimplePlugin(BasePlugin):
    """A plugin assembled from a fixed list of tools and hooks."""

    def __init__(
        self,
        metadata: PluginMetadata,
        tools: Sequence[ToolDefinition] = (),
        hooks: Sequence[HookDefinition] = (),
    ):
        super().__init__()
        self.metadata = metadata
        self._tools = tuple(tools)
        self._hooks = tuple(hooks)

    def get_tools(self) -> Sequence[ToolDefinition]:
        return self._tools

    def get_hooks(self) -> Sequence[HookDefinition]:
        return self._hooks
