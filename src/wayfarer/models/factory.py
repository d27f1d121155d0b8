"""Provider construction.

The concrete client is chosen once, here, by matching on ProviderKind.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from wayfarer.models.anthropic import AnthropicProvider
from wayfarer.models.openai_compat import OpenAICompatibleProvider
from wayfarer.models.protocol import PROVIDER_DEFAULT_MODELS, LlmProvider, ProviderKind, ProviderSettings

if TYPE_CHECKING:
    from wayfarer.config import AgentConfig


def settings_for(config: AgentConfig, kind: ProviderKind | None = None) -> ProviderSettings:
    """Provider settings derived from an AgentConfig.

    The configured model and base_url apply to the primary provider only;
    fallback providers use their own defaults.
    """
    kind = kind or config.provider
    primary = kind is config.provider
    return ProviderSettings(
        model=config.model_name if primary else PROVIDER_DEFAULT_MODELS[kind],
        api_key=config.key_for(kind),
        base_url=config.base_url if primary else None,
        max_tokens=config.max_tokens,
        temperature=config.temperature / 100,
        top_p=config.top_p / 100,
        timeout_ms=config.llm_timeout_ms,
        max_retries=config.retry_max,
        retry_base_ms=config.retry_base_ms,
        retry_max_ms=config.retry_max_delay_ms,
    )


def create_provider(
    config: AgentConfig,
    kind: ProviderKind | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LlmProvider:
    """Build the client for ``kind`` (default: the configured provider).

    Raises:
        ProviderError: CONFIG_MISSING_API_KEY when a key is required but absent.
    """
    kind = kind or config.provider
    settings = settings_for(config, kind)
    match kind:
        case ProviderKind.ANTHROPIC:
            return AnthropicProvider(settings, transport=transport)
        case ProviderKind.OPENAI | ProviderKind.OPENROUTER | ProviderKind.OLLAMA | ProviderKind.ZAI:
            return OpenAICompatibleProvider(kind, settings, transport=transport)
