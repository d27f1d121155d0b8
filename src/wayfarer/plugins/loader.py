"""Dependency-ordered plugin initialization and disposal.

initialize_all() sorts enabled plugins so every plugin starts after its
dependencies. A dependency that is not registered (or disabled) and a
dependency cycle are configuration errors and raise before anything is
initialized. A plugin whose initialize() raises is logged, its partial
registrations are undone, and every plugin depending on it is skipped.
Disposal runs in reverse initialization order.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from wayfarer.agent.hooks.manager import HookManager
from wayfarer.agent.hooks.types import HookDefinition
from wayfarer.core.errors import ErrorCode, config_error
from wayfarer.core.types import ToolDefinition
from wayfarer.plugins.interface import Plugin, PluginConfig, PluginInitContext, PluginMetadata
from wayfarer.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from wayfarer.core.context import ExecutionContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LoadedPlugin:
    plugin: Plugin
    config: PluginConfig
    initialized: bool = False
    tool_names: list[str] = field(default_factory=list)
    hook_removers: list[Callable[[], bool]] = field(default_factory=list)


class PluginLoader:
    """Owns registered plugins and what they contributed.

    Args:
        registry: Tool registry plugins add tools to
        hooks: Hook manager plugins add hooks to
    """

    def __init__(self, registry: ToolRegistry, hooks: HookManager):
        self.registry = registry
        self.hooks = hooks
        self._plugins: dict[str, _LoadedPlugin] = {}
        self._init_order: list[str] = []

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, plugin: Plugin, config: PluginConfig | None = None) -> None:
        plugin_id = plugin.metadata.id
        if plugin_id in self._plugins:
            raise config_error(ErrorCode.CONFIG_INVALID, plugin_id, "plugin already registered")
        self._plugins[plugin_id] = _LoadedPlugin(plugin, config or PluginConfig())
        logger.debug("Registered plugin %s v%s", plugin.metadata.name, plugin.metadata.version)

    async def unregister(self, plugin_id: str) -> bool:
        entry = self._plugins.get(plugin_id)
        if entry is None:
            return False
        if entry.initialized:
            await self._dispose(plugin_id, entry)
        del self._plugins[plugin_id]
        return True

    # =========================================================================
    # Initialization
    # =========================================================================

    def initialization_order(self) -> list[str]:
        """Enabled plugin ids, dependencies first.

        Raises:
            AgentError: CONFIG_INVALID for a missing dependency or a cycle.
        """
        enabled = {pid: e for pid, e in self._plugins.items() if e.config.enabled}
        for pid, entry in enabled.items():
            for dep in entry.plugin.metadata.dependencies:
                if dep not in enabled:
                    raise config_error(
                        ErrorCode.CONFIG_INVALID,
                        pid,
                        f"depends on '{dep}', which is not registered or is disabled",
                    )

        order: list[str] = []
        visiting: set[str] = set()
        done: set[str] = set()

        def visit(pid: str, path: list[str]) -> None:
            if pid in done:
                return
            if pid in visiting:
                cycle = " -> ".join([*path[path.index(pid):], pid])
                raise config_error(ErrorCode.CONFIG_INVALID, pid, f"dependency cycle: {cycle}")
            visiting.add(pid)
            for dep in enabled[pid].plugin.metadata.dependencies:
                visit(dep, [*path, pid])
            visiting.discard(pid)
            done.add(pid)
            order.append(pid)

        for pid in enabled:
            visit(pid, [])
        return order

    async def initialize_all(self, context: ExecutionContext | None = None) -> list[str]:
        """Initialize every enabled plugin. Returns the ids that initialized."""
        initialized: list[str] = []
        for pid in self.initialization_order():
            entry = self._plugins[pid]
            if entry.initialized:
                initialized.append(pid)
                continue
            blocked = [d for d in entry.plugin.metadata.dependencies if not self._plugins[d].initialized]
            if blocked:
                logger.warning("Skipping plugin %s: dependencies failed (%s)", pid, ", ".join(blocked))
                continue
            try:
                await self.initialize_plugin(pid, context)
            except Exception:
                logger.exception("Plugin %s failed to initialize", pid)
                continue
            initialized.append(pid)
        return initialized

    async def initialize_plugin(self, plugin_id: str, context: ExecutionContext | None = None) -> bool:
        """Initialize one plugin whose dependencies are already initialized.

        Returns False for unknown or disabled plugins.

        Raises:
            AgentError: CONFIG_INVALID if a dependency is not initialized.
            Exception: Whatever the plugin's initialize() raised, after its
                partial registrations have been undone.
        """
        entry = self._plugins.get(plugin_id)
        if entry is None or not entry.config.enabled:
            return False
        if entry.initialized:
            return True

        for dep in entry.plugin.metadata.dependencies:
            dep_entry = self._plugins.get(dep)
            if dep_entry is None or not dep_entry.initialized:
                raise config_error(
                    ErrorCode.CONFIG_INVALID, plugin_id, f"depends on '{dep}', which is not initialized"
                )

        def register_tool(tool: ToolDefinition) -> None:
            self.registry.register(tool)
            entry.tool_names.append(tool.name)

        def register_hook(hook: HookDefinition) -> None:
            entry.hook_removers.append(self.hooks.register(hook))

        init_context = PluginInitContext(
            execution_context=context,
            config=entry.config,
            register_tool=register_tool,
            register_hook=register_hook,
            logger=logging.getLogger(f"wayfarer.plugins.{plugin_id}"),
        )
        try:
            await entry.plugin.initialize(init_context)
        except Exception:
            self._undo_registrations(entry)
            raise

        entry.initialized = True
        self._init_order.append(plugin_id)
        logger.info(
            "Initialized plugin %s (%d tools, %d hooks)",
            entry.plugin.metadata.name,
            len(entry.tool_names),
            len(entry.hook_removers),
        )
        return True

    # =========================================================================
    # Disposal
    # =========================================================================

    async def dispose_all(self) -> None:
        """Dispose initialized plugins, last initialized first."""
        for pid in reversed(list(self._init_order)):
            entry = self._plugins.get(pid)
            if entry is not None and entry.initialized:
                await self._dispose(pid, entry)

    async def _dispose(self, plugin_id: str, entry: _LoadedPlugin) -> None:
        dispose = getattr(entry.plugin, "dispose", None)
        if dispose is not None:
            try:
                outcome = dispose()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Error disposing plugin %s", plugin_id)
        self._undo_registrations(entry)
        entry.initialized = False
        if plugin_id in self._init_order:
            self._init_order.remove(plugin_id)

    def _undo_registrations(self, entry: _LoadedPlugin) -> None:
        for name in entry.tool_names:
            self.registry.unregister(name)
        for remove in entry.hook_removers:
            remove()
        entry.tool_names.clear()
        entry.hook_removers.clear()

    # =========================================================================
    # Configuration
    # =========================================================================

    def enable(self, plugin_id: str) -> bool:
        return self._set_config(plugin_id, enabled=True)

    def disable(self, plugin_id: str) -> bool:
        return self._set_config(plugin_id, enabled=False)

    def is_enabled(self, plugin_id: str) -> bool:
        entry = self._plugins.get(plugin_id)
        return entry.config.enabled if entry else False

    def is_initialized(self, plugin_id: str) -> bool:
        entry = self._plugins.get(plugin_id)
        return entry.initialized if entry else False

    async def update_config(
        self,
        plugin_id: str,
        *,
        enabled: bool | None = None,
        options: dict[str, Any] | None = None,
    ) -> bool:
        """Change a plugin's config and notify it via on_config_change()."""
        entry = self._plugins.get(plugin_id)
        if entry is None:
            return False
        changes: dict[str, Any] = {}
        if enabled is not None:
            changes["enabled"] = enabled
        if options is not None:
            changes["options"] = {**entry.config.options, **options}
        self._set_config(plugin_id, **changes)

        notify = getattr(entry.plugin, "on_config_change", None)
        if notify is not None:
            try:
                outcome = notify(entry.config)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Plugin %s rejected config change", plugin_id)
        return True

    def _set_config(self, plugin_id: str, **changes: Any) -> bool:
        entry = self._plugins.get(plugin_id)
        if entry is None:
            return False
        entry.config = replace(entry.config, **changes)
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, plugin_id: str) -> Plugin | None:
        entry = self._plugins.get(plugin_id)
        return entry.plugin if entry else None

    @property
    def plugins(self) -> list[Plugin]:
        return [e.plugin for e in self._plugins.values()]

    def metadata(self) -> list[PluginMetadata]:
        return [e.plugin.metadata for e in self._plugins.values()]

    @property
    def count(self) -> int:
        return len(self._plugins)
