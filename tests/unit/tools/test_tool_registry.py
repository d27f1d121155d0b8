"""Tests for ToolRegistry and write-tool detection."""

import pytest

from wayfarer.core.errors import AgentError, ErrorCode
from wayfarer.core.types import ToolDefinition
from wayfarer.tools.registry import ToolRegistry, is_write_tool


class TestRegistration:
    """Tests for register/unregister and lookups."""

    def test_register_and_get(self, registry: ToolRegistry, make_tool) -> None:
        """Registered tools are retrievable by name."""
        registry.register(make_tool("search"))
        assert registry.has("search")
        assert "search" in registry
        assert registry.get("search").name == "search"
        assert registry.get("missing") is None

    def test_duplicate_name_rejected(self, registry: ToolRegistry, make_tool) -> None:
        """Names are unique."""
        registry.register(make_tool("search"))
        with pytest.raises(AgentError) as exc_info:
            registry.register(make_tool("search"))
        assert exc_info.value.code is ErrorCode.TOOL_VALIDATION_FAILED

    def test_unregister(self, registry: ToolRegistry, make_tool) -> None:
        """unregister reports whether anything was removed."""
        registry.register(make_tool("search"))
        assert registry.unregister("search") is True
        assert registry.unregister("search") is False
        assert len(registry) == 0

    def test_definitions_for_llm(self, make_tool) -> None:
        """LLM schemas carry name, description and parameters."""
        registry = ToolRegistry([make_tool("search", required=("query",))])
        (schema,) = registry.definitions_for_llm()
        assert schema["name"] == "search"
        assert schema["parameters"]["required"] == ["query"]

    def test_usage_counters(self, registry: ToolRegistry, make_tool) -> None:
        """Usage tracks calls, successes and failures."""
        registry.register(make_tool("search"))
        registry.increment_usage("search", True)
        registry.increment_usage("search", False)
        usage = registry.usage("search")
        assert (usage.calls, usage.successes, usage.failures) == (2, 1, 1)
        assert usage.success_rate == 0.5
        assert usage.last_used is not None


class TestIsWriteTool:
    """Tests for the write-tool heuristic."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("search", False),
            ("get_weather", False),
            ("create_task", True),
            ("deleteItem", True),
            ("update_profile", True),
            ("list_files", False),
        ],
    )
    def test_name_heuristic(self, make_tool, name: str, expected: bool) -> None:
        """Mutating verbs in the name mark a write tool."""
        assert is_write_tool(make_tool(name)) is expected

    def test_explicit_flag_wins(self, make_tool) -> None:
        """is_write overrides the name."""
        tool: ToolDefinition = make_tool("create_summary", is_write=False)
        assert is_write_tool(tool) is False
        assert is_write_tool(make_tool("fetch", is_write=True)) is True
