"""LLM provider clients.

- protocol: LlmProvider protocol, ProviderKind, option and settings types
- anthropic: Anthropic Messages API
- openai_compat: OpenAI-style chat completions (OpenAI, OpenRouter, Ollama, Z.ai)
- mock: scripted provider for tests
- factory: create_provider(config)
"""

from wayfarer.models.protocol import (
    PROVIDER_API_KEY_ENV,
    PROVIDER_DEFAULT_MODELS,
    PROVIDER_ENDPOINTS,
    CompletionOptions,
    LlmProvider,
    ProviderKind,
    ProviderSettings,
)
from wayfarer.models.base import HttpProvider
from wayfarer.models.anthropic import AnthropicProvider
from wayfarer.models.openai_compat import OpenAICompatibleProvider
from wayfarer.models.mock import MockProvider
from wayfarer.models.factory import create_provider, settings_for

__all__ = [
    # Protocol
    "CompletionOptions",
    "LlmProvider",
    "ProviderKind",
    "ProviderSettings",
    "PROVIDER_API_KEY_ENV",
    "PROVIDER_DEFAULT_MODELS",
    "PROVIDER_ENDPOINTS",
    # Clients
    "AnthropicProvider",
    "HttpProvider",
    "MockProvider",
    "OpenAICompatibleProvider",
    # Factory
    "create_provider",
    "settings_for",
]
