"""Closed set of supported LLM backends and their static tables."""

from enum import Enum


class ProviderKind(Enum):
    """Supported LLM backends."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"
    ZAI = "zai"

    @property
    def requires_api_key(self) -> bool:
        return self is not ProviderKind.OLLAMA


PROVIDER_DEFAULT_MODELS: dict[ProviderKind, str] = {
    ProviderKind.ANTHROPIC: "claude-3-5-sonnet-20241022",
    ProviderKind.OPENAI: "gpt-4o",
    ProviderKind.OPENROUTER: "anthropic/claude-3.5-sonnet",
    ProviderKind.OLLAMA: "llama3.1",
    ProviderKind.ZAI: "claude-3-5-sonnet-20241022",
}

PROVIDER_ENDPOINTS: dict[ProviderKind, str] = {
    ProviderKind.ANTHROPIC: "https://api.anthropic.com/v1/messages",
    ProviderKind.OPENAI: "https://api.openai.com/v1/chat/completions",
    ProviderKind.OPENROUTER: "https://openrouter.ai/api/v1/chat/completions",
    ProviderKind.OLLAMA: "http://localhost:11434/v1/chat/completions",
    ProviderKind.ZAI: "https://api.z.ai/api/coding/paas/v4/chat/completions",
}
"""Full endpoint URLs. A configured base_url replaces the whole URL."""

PROVIDER_API_KEY_ENV: dict[ProviderKind, str] = {
    ProviderKind.ANTHROPIC: "ANTHROPIC_API_KEY",
    ProviderKind.OPENAI: "OPENAI_API_KEY",
    ProviderKind.OPENROUTER: "OPENROUTER_API_KEY",
    ProviderKind.OLLAMA: "OLLAMA_API_KEY",
    ProviderKind.ZAI: "ZAI_API_KEY",
}
