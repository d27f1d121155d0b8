"""Wayfarer - autonomous agent execution core.

Turns a user request into a bounded sequence of LLM calls and tool
invocations, with provider fallback, circuit breaking, rule and hook
gating, caching and context compaction.

Example:
    >>> from wayfarer import Agent, create_agent_config
    >>> agent = Agent("user-1", create_agent_config(provider="ollama"), tools=[...])
    >>> result = await agent.process_message("Summarize my week")
"""

__version__ = "0.1.0"

from wayfarer.agent.orchestrator import Agent, build_actions
from wayfarer.config import AgentConfig, create_agent_config, load_config, validate_agent_config
from wayfarer.core.errors import AgentError, ErrorCode, ProviderError
from wayfarer.core.providers import ProviderKind
from wayfarer.core.types import (
    ExecutionResult,
    Message,
    ProgressEvent,
    ThinkingLevel,
    ToolContext,
    ToolDefinition,
    ToolParameterSchema,
)
from wayfarer.plugins import BasePlugin, PluginMetadata, SimplePlugin

__all__ = [
    "__version__",
    # Agent
    "Agent",
    "build_actions",
    # Config
    "AgentConfig",
    "create_agent_config",
    "load_config",
    "validate_agent_config",
    # Errors
    "AgentError",
    "ErrorCode",
    "ProviderError",
    # Types
    "ExecutionResult",
    "Message",
    "ProgressEvent",
    "ProviderKind",
    "ThinkingLevel",
    "ToolContext",
    "ToolDefinition",
    "ToolParameterSchema",
    # Plugins
    "BasePlugin",
    "PluginMetadata",
    "SimplePlugin",
]
