"""Provider protocol and shared option types.

Every backend client satisfies LlmProvider. The concrete client is chosen
once, from the closed ProviderKind enum, when the agent is built.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from wayfarer.core.providers import (
    PROVIDER_API_KEY_ENV,
    PROVIDER_DEFAULT_MODELS,
    PROVIDER_ENDPOINTS,
    ProviderKind,
)
from wayfarer.core.types import LlmResponse, Message, ToolDefinition

__all__ = [
    "PROVIDER_API_KEY_ENV",
    "PROVIDER_DEFAULT_MODELS",
    "PROVIDER_ENDPOINTS",
    "CompletionOptions",
    "LlmProvider",
    "ProviderKind",
    "ProviderSettings",
]


@dataclass(frozen=True, slots=True)
class CompletionOptions:
    """Per-call generation options (temperature/top_p on a 0-1 scale)."""

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    thinking_budget: int | None = None
    stop: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    """Connection and retry settings for one provider client."""

    model: str
    api_key: str | None = None
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    top_p: float | None = None
    timeout_ms: int = 60_000
    max_retries: int = 3
    retry_base_ms: int = 1_000
    retry_max_ms: int = 10_000

    def default_options(self) -> CompletionOptions:
        return CompletionOptions(
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
        )


@runtime_checkable
class LlmProvider(Protocol):
    """Protocol for LLM backend clients."""

    @property
    def name(self) -> str:
        """Stable identifier used for breakers, fallback and cost tracking."""
        ...

    @property
    def model(self) -> str:
        ...

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        """Run one chat completion."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
