"""Tests for plugin registration, ordering and disposal."""

import pytest

from wayfarer.agent.hooks.manager import HookManager
from wayfarer.agent.hooks.types import HookDefinition, HookPhase
from wayfarer.core.errors import AgentError, ErrorCode
from wayfarer.plugins.interface import (
    BasePlugin,
    Plugin,
    PluginConfig,
    PluginInitContext,
    PluginMetadata,
    SimplePlugin,
)
from wayfarer.plugins.loader import PluginLoader
from wayfarer.tools.registry import ToolRegistry


def _meta(plugin_id: str, *deps: str) -> PluginMetadata:
    return PluginMetadata(plugin_id, plugin_id.title(), "1.0.0", dependencies=deps)


class RecordingPlugin(BasePlugin):
    """Records lifecycle calls into a shared journal."""

    def __init__(self, plugin_id: str, journal: list[str], *deps: str, fail: bool = False):
        super().__init__()
        self.metadata = _meta(plugin_id, *deps)
        self.journal = journal
        self.fail = fail
        self.config_changes: list[PluginConfig] = []

    async def initialize(self, context: PluginInitContext) -> None:
        await super().initialize(context)
        if self.fail:
            raise RuntimeError("cannot reach backend")
        self.journal.append(f"init:{self.metadata.id}")

    async def dispose(self) -> None:
        self.journal.append(f"dispose:{self.metadata.id}")
        await super().dispose()

    def on_config_change(self, config: PluginConfig) -> None:
        self.config_changes.append(config)


@pytest.fixture
def hooks() -> HookManager:
    return HookManager()


@pytest.fixture
def loader(registry: ToolRegistry, hooks: HookManager) -> PluginLoader:
    return PluginLoader(registry, hooks)


# =============================================================================
# Ordering
# =============================================================================


class TestOrdering:
    """Tests for dependency ordering."""

    def test_dependencies_first(self, loader: PluginLoader) -> None:
        """Plugins start after everything they depend on."""
        journal: list[str] = []
        loader.register(RecordingPlugin("reports", journal, "db", "auth"))
        loader.register(RecordingPlugin("auth", journal, "db"))
        loader.register(RecordingPlugin("db", journal))
        assert loader.initialization_order() == ["db", "auth", "reports"]

    def test_missing_dependency(self, loader: PluginLoader) -> None:
        """A dependency that is not registered is a config error."""
        loader.register(RecordingPlugin("reports", [], "db"))
        with pytest.raises(AgentError) as exc_info:
            loader.initialization_order()
        assert exc_info.value.code is ErrorCode.CONFIG_INVALID

    def test_disabled_dependency(self, loader: PluginLoader) -> None:
        """Depending on a disabled plugin is also a config error."""
        loader.register(RecordingPlugin("db", []), PluginConfig(enabled=False))
        loader.register(RecordingPlugin("reports", [], "db"))
        with pytest.raises(AgentError):
            loader.initialization_order()

    def test_cycle(self, loader: PluginLoader) -> None:
        """Cycles are reported with their path."""
        loader.register(RecordingPlugin("a", [], "b"))
        loader.register(RecordingPlugin("b", [], "a"))
        with pytest.raises(AgentError) as exc_info:
            loader.initialization_order()
        assert "dependency cycle: a -> b -> a" in exc_info.value.message

    def test_duplicate_registration(self, loader: PluginLoader) -> None:
        """Registering the same id twice fails."""
        loader.register(RecordingPlugin("db", []))
        with pytest.raises(AgentError):
            loader.register(RecordingPlugin("db", []))


# =============================================================================
# Initialization and disposal
# =============================================================================


class TestLifecycle:
    """Tests for initialize_all and dispose_all."""

    @pytest.mark.asyncio
    async def test_contributions_registered(
        self, loader: PluginLoader, registry: ToolRegistry, hooks: HookManager, make_tool
    ) -> None:
        """Tools and hooks from a plugin land in the registry and manager."""
        hook = HookDefinition("audit", HookPhase.PRE_TOOL_USE, lambda inp: None)
        loader.register(SimplePlugin(_meta("weather"), [make_tool("forecast")], [hook]))

        assert await loader.initialize_all() == ["weather"]
        assert registry.has("forecast")
        assert len(hooks) == 1
        assert loader.is_initialized("weather")

    @pytest.mark.asyncio
    async def test_failed_plugin_undone_and_dependents_skipped(
        self, loader: PluginLoader, registry: ToolRegistry, make_tool
    ) -> None:
        """A failing plugin's registrations are removed and dependents skipped."""
        journal: list[str] = []

        class Flaky(RecordingPlugin):
            def get_tools(self):
                return [make_tool("flaky_tool")]

        loader.register(Flaky("db", journal, fail=True))
        loader.register(RecordingPlugin("reports", journal, "db"))
        loader.register(RecordingPlugin("auth", journal))

        assert await loader.initialize_all() == ["auth"]
        assert not registry.has("flaky_tool")
        assert journal == ["init:auth"]

    @pytest.mark.asyncio
    async def test_dispose_in_reverse_order(
        self, loader: PluginLoader, registry: ToolRegistry, make_tool
    ) -> None:
        """Disposal runs last-initialized first and removes contributions."""
        journal: list[str] = []

        class WithTool(RecordingPlugin):
            def get_tools(self):
                return [make_tool(f"{self.metadata.id}_tool")]

        loader.register(WithTool("db", journal))
        loader.register(WithTool("auth", journal, "db"))
        await loader.initialize_all()
        await loader.dispose_all()

        assert journal == ["init:db", "init:auth", "dispose:auth", "dispose:db"]
        assert len(registry) == 0
        assert not loader.is_initialized("db")

    @pytest.mark.asyncio
    async def test_initialize_plugin_requires_dependencies(self, loader: PluginLoader) -> None:
        """Initializing one plugin before its dependency raises."""
        loader.register(RecordingPlugin("db", []))
        loader.register(RecordingPlugin("reports", [], "db"))
        with pytest.raises(AgentError):
            await loader.initialize_plugin("reports")
        assert not await loader.initialize_plugin("unknown")

    @pytest.mark.asyncio
    async def test_unregister_disposes(self, loader: PluginLoader) -> None:
        """Unregistering an initialized plugin disposes it first."""
        journal: list[str] = []
        loader.register(RecordingPlugin("db", journal))
        await loader.initialize_all()
        assert await loader.unregister("db")
        assert not await loader.unregister("db")
        assert journal == ["init:db", "dispose:db"]
        assert loader.count == 0


# =============================================================================
# Configuration
# =============================================================================


class TestConfiguration:
    """Tests for enable/disable and config updates."""

    @pytest.mark.asyncio
    async def test_disabled_plugins_not_initialized(self, loader: PluginLoader) -> None:
        """Disabled plugins are skipped."""
        loader.register(RecordingPlugin("db", []))
        loader.disable("db")
        assert not loader.is_enabled("db")
        assert await loader.initialize_all() == []
        loader.enable("db")
        assert await loader.initialize_all() == ["db"]

    @pytest.mark.asyncio
    async def test_update_config_notifies(self, loader: PluginLoader) -> None:
        """Option updates merge and reach on_config_change."""
        plugin = RecordingPlugin("db", [])
        loader.register(plugin, PluginConfig(options={"pool": 2}))
        assert await loader.update_config("db", options={"timeout": 5})
        assert plugin.config_changes[-1].options == {"pool": 2, "timeout": 5}
        assert not await loader.update_config("missing", enabled=False)

    def test_queries(self, loader: PluginLoader) -> None:
        """Registered plugins are listed with their metadata."""
        plugin = RecordingPlugin("db", [])
        loader.register(plugin)
        assert loader.get("db") is plugin
        assert isinstance(plugin, Plugin)
        assert [m.id for m in loader.metadata()] == ["db"]
