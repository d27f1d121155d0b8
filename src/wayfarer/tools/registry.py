"""Tool registry: name -> ToolDefinition plus usage counters."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import Any

from wayfarer.core.errors import ErrorCode, tool_error
from wayfarer.core.types import ToolDefinition, now_ms

logger = logging.getLogger(__name__)

_WRITE_NAME_PATTERN = re.compile(
    r"create|add|new|insert|write|update|edit|modify|delete|remove|clear|reset",
    re.IGNORECASE,
)


def is_write_tool(tool: ToolDefinition) -> bool:
    """Whether a tool changes state (and so must never be cached).

    An explicit ``is_write`` flag wins; otherwise the name decides.
    """
    if tool.is_write is not None:
        return tool.is_write
    return _WRITE_NAME_PATTERN.search(tool.name) is not None


@dataclass(slots=True)
class ToolUsage:
    """Call counters for one tool."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    last_used: int | None = None

    @property
    def success_rate(self) -> float:
        return self.successes / self.calls if self.calls else 0.0


class ToolRegistry:
    """Thread-safe registry of callable tools.

    Usage:
        registry = ToolRegistry()
        registry.register(ToolDefinition(name="search", description="...", execute=search))
        tool = registry.get("search")
    """

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        self._usage: dict[str, ToolUsage] = {}
        self._lock = threading.Lock()
        self.register_many(tools)

    def register(self, tool: ToolDefinition) -> None:
        """Add a tool.

        Raises:
            AgentError: TOOL_VALIDATION_FAILED if the name is already taken.
        """
        with self._lock:
            if tool.name in self._tools:
                raise tool_error(
                    ErrorCode.TOOL_VALIDATION_FAILED, tool.name, "already registered"
                )
            self._tools[tool.name] = tool
            self._usage[tool.name] = ToolUsage()
        logger.debug("Registered tool %s", tool.name)

    def register_many(self, tools: Iterable[ToolDefinition]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> bool:
        with self._lock:
            self._usage.pop(name, None)
            return self._tools.pop(name, None) is not None

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def all(self) -> list[ToolDefinition]:
        with self._lock:
            return list(self._tools.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def by_category(self, category: str) -> list[ToolDefinition]:
        return [t for t in self.all() if t.category == category]

    def definitions_for_llm(self) -> list[dict[str, Any]]:
        return [t.to_llm_schema() for t in self.all()]

    def usage(self, name: str) -> ToolUsage | None:
        with self._lock:
            usage = self._usage.get(name)
            return replace(usage) if usage else None

    def increment_usage(self, name: str, success: bool) -> None:
        with self._lock:
            usage = self._usage.get(name)
            if usage is None:
                return
            usage.calls += 1
            if success:
                usage.successes += 1
            else:
                usage.failures += 1
            usage.last_used = now_ms()

    def clear(self) -> None:
        with self._lock:
            self._tools.clear()
            self._usage.clear()

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
