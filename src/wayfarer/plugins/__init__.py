"""Plugins contribute tools and hooks to an agent."""

from wayfarer.plugins.interface import (
    BasePlugin,
    Plugin,
    PluginConfig,
    PluginInitContext,
    PluginMetadata,
    SimplePlugin,
)
from wayfarer.plugins.loader import PluginLoader

__all__ = [
    "BasePlugin",
    "Plugin",
    "PluginConfig",
    "PluginInitContext",
    "PluginLoader",
    "PluginMetadata",
    "SimplePlugin",
]
