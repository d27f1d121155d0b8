"""Anthropic Messages API client.

Wire shape: system messages are lifted into the top-level ``system``
field, tool results travel as user messages holding ``tool_result``
blocks, and the response ``content`` array is split into text, tool_use
and thinking parts.
"""

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from wayfarer.core.errors import ErrorCode, ProviderError
from wayfarer.core.types import LlmResponse, Message, TokenUsage, ToolCall, ToolDefinition
from wayfarer.models.base import HttpProvider
from wayfarer.models.protocol import PROVIDER_ENDPOINTS, CompletionOptions, ProviderKind, ProviderSettings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HttpProvider):
    """Anthropic provider over raw HTTP.

    Usage:
        provider = AnthropicProvider(ProviderSettings(model="claude-3-5-sonnet-20241022", api_key=key))
        response = await provider.complete([Message("user", "Hello")])
    """

    kind = ProviderKind.ANTHROPIC

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not settings.api_key:
            raise ProviderError(
                "API key is required for Anthropic",
                ErrorCode.CONFIG_MISSING_API_KEY,
                provider=self.kind.value,
                recoverable=False,
            )
        super().__init__(settings, transport=transport)
        self.endpoint = settings.base_url or PROVIDER_ENDPOINTS[self.kind]

    def _convert_messages(self, messages: Sequence[Message]) -> tuple[list[dict[str, Any]], str | None]:
        """Convert to Anthropic format.

        Returns:
            Tuple of (messages list, joined system prompt or None)
        """
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                if msg.content:
                    system_parts.append(msg.content)
            elif msg.role == "assistant":
                blocks: list[dict[str, Any]] = []
                if msg.content.strip():
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.parameters,
                    })
                if blocks:
                    converted.append({"role": "assistant", "content": blocks})
            elif msg.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.tool_call_id,
                            "content": msg.content,
                        }
                    ],
                })
            else:
                converted.append({"role": "user", "content": msg.content})

        return converted, "\n\n".join(system_parts) or None

    def _convert_tools(self, tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters.to_json_schema(),
            }
            for t in tools
        ]

    def build_request(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> dict[str, Any]:
        opts = self._options(options)
        converted, system = self._convert_messages(messages)
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": opts.max_tokens,
            "messages": converted,
        }
        if system:
            body["system"] = system
        if opts.temperature is not None:
            body["temperature"] = opts.temperature
        if opts.top_p is not None:
            body["top_p"] = opts.top_p
        if opts.stop:
            body["stop_sequences"] = list(opts.stop)
        if tools:
            body["tools"] = self._convert_tools(tools)
        if opts.thinking_budget:
            body["thinking"] = {"type": "enabled", "budget_tokens": opts.thinking_budget}
        return body

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        body = self.build_request(messages, tools, options)
        headers = {
            "content-type": "application/json",
            "x-api-key": self.settings.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        data = await self._post_json(self.endpoint, body, headers)
        return parse_anthropic_response(data)


def parse_anthropic_response(data: dict[str, Any]) -> LlmResponse:
    parts = data.get("content") if isinstance(data.get("content"), list) else []
    text = [p.get("text", "") for p in parts if p.get("type") == "text"]
    thinking = next((p.get("thinking") for p in parts if p.get("type") == "thinking"), None)
    tool_calls = tuple(
        ToolCall(id=p["id"], name=p["name"], parameters=p.get("input") or {})
        for p in parts
        if p.get("type") == "tool_use"
    )
    usage = data.get("usage")
    return LlmResponse(
        content="".join(text),
        tool_calls=tool_calls,
        thinking=thinking,
        usage=(
            TokenUsage(usage.get("input_tokens", 0), usage.get("output_tokens", 0))
            if usage
            else None
        ),
        stop_reason=data.get("stop_reason"),
        model=data.get("model"),
    )
