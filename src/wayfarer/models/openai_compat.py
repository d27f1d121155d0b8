"""OpenAI-compatible chat completions client.

Serves OpenAI, OpenRouter, Ollama and Z.ai: one wire format, per-kind
endpoint and headers.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from wayfarer.core.errors import ErrorCode, ProviderError
from wayfarer.core.types import LlmResponse, Message, TokenUsage, ToolCall, ToolDefinition
from wayfarer.models.base import HttpProvider
from wayfarer.models.protocol import PROVIDER_ENDPOINTS, CompletionOptions, ProviderKind, ProviderSettings

logger = logging.getLogger(__name__)

OPENROUTER_HEADERS = {"HTTP-Referer": "https://github.com/wayfarer-agent", "X-Title": "Wayfarer"}


class OpenAICompatibleProvider(HttpProvider):
    """Chat-completions provider for every non-Anthropic backend.

    Ollama runs without a key; every other kind requires one.
    """

    def __init__(
        self,
        kind: ProviderKind,
        settings: ProviderSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if kind is ProviderKind.ANTHROPIC:
            raise ValueError("Use AnthropicProvider for the Anthropic wire format")
        if kind.requires_api_key and not settings.api_key:
            raise ProviderError(
                f"API key is required for {kind.value}",
                ErrorCode.CONFIG_MISSING_API_KEY,
                provider=kind.value,
                recoverable=False,
            )
        self.kind = kind
        super().__init__(settings, transport=transport)
        self.endpoint = settings.base_url or PROVIDER_ENDPOINTS[kind]

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.settings.api_key:
            headers["authorization"] = f"Bearer {self.settings.api_key}"
        if self.kind is ProviderKind.OPENROUTER:
            headers.update(OPENROUTER_HEADERS)
        return headers

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.parameters),
                            },
                        }
                        for tc in msg.tool_calls
                    ],
                })
            elif msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            else:
                converted.append({"role": msg.role, "content": msg.content})
        return converted

    def _convert_tools(self, tools: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters.to_json_schema(),
                },
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
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(messages),
        }
        if opts.max_tokens:
            body["max_tokens"] = opts.max_tokens
        if opts.temperature is not None:
            body["temperature"] = opts.temperature
        if opts.top_p is not None:
            body["top_p"] = opts.top_p
        if opts.stop:
            body["stop"] = list(opts.stop)
        if tools:
            body["tools"] = self._convert_tools(tools)
            body["tool_choice"] = "auto"
        return body

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        body = self.build_request(messages, tools, options)
        data = await self._post_json(self.endpoint, body, self._headers())
        return parse_chat_completion(data, self.name)


def _decode_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw": raw}
    return decoded if isinstance(decoded, dict) else {"_raw": raw}


def parse_chat_completion(data: dict[str, Any], provider: str = "") -> LlmResponse:
    choices = data.get("choices") or []
    if not choices:
        raise ProviderError(
            "Response contained no choices",
            ErrorCode.LLM_REQUEST_FAILED,
            provider=provider,
        )
    choice = choices[0]
    message = choice.get("message") or {}
    tool_calls = tuple(
        ToolCall(
            id=tc.get("id") or f"call_{index}",
            name=tc["function"]["name"],
            parameters=_decode_arguments(tc["function"].get("arguments")),
        )
        for index, tc in enumerate(message.get("tool_calls") or [])
    )
    usage = data.get("usage")
    return LlmResponse(
        content=message.get("content") or "",
        tool_calls=tool_calls,
        thinking=message.get("reasoning") or message.get("reasoning_content"),
        usage=(
            TokenUsage(usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0))
            if usage
            else None
        ),
        stop_reason=choice.get("finish_reason"),
        model=data.get("model"),
    )
