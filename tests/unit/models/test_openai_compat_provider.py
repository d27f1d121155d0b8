"""Tests for the OpenAI-compatible client (httpx.MockTransport, no network)."""

import json
from typing import Any

import httpx
import pytest

from wayfarer.core.errors import ErrorCode, ProviderError
from wayfarer.core.types import Message, ToolCall, ToolDefinition
from wayfarer.models.openai_compat import (
    OPENROUTER_HEADERS,
    OpenAICompatibleProvider,
    parse_chat_completion,
)
from wayfarer.models.protocol import ProviderKind, ProviderSettings


def _settings(api_key: str | None = "sk-test", **kwargs: Any) -> ProviderSettings:
    return ProviderSettings(
        model="gpt-test", api_key=api_key, max_retries=1, retry_base_ms=1, retry_max_ms=2, **kwargs
    )


def _completion(message: dict[str, Any], usage: dict[str, int] | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": "gpt-test",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
    }
    if usage:
        body["usage"] = usage
    return body


async def _noop(params: dict[str, Any], ctx: Any) -> None:
    return None


class TestConstruction:
    """Tests for per-kind setup."""

    def test_ollama_needs_no_key(self) -> None:
        """Ollama runs keyless against the local endpoint."""
        provider = OpenAICompatibleProvider(ProviderKind.OLLAMA, _settings(api_key=None))
        assert provider.endpoint == "http://localhost:11434/v1/chat/completions"
        assert "authorization" not in provider._headers()
        assert provider.name == "ollama"

    @pytest.mark.parametrize("kind", [ProviderKind.OPENAI, ProviderKind.OPENROUTER, ProviderKind.ZAI])
    def test_hosted_kinds_need_key(self, kind: ProviderKind) -> None:
        """Hosted backends refuse to start without a key."""
        with pytest.raises(ProviderError) as exc_info:
            OpenAICompatibleProvider(kind, _settings(api_key=None))
        assert exc_info.value.code is ErrorCode.CONFIG_MISSING_API_KEY

    def test_rejects_anthropic(self) -> None:
        """Anthropic has its own wire format."""
        with pytest.raises(ValueError):
            OpenAICompatibleProvider(ProviderKind.ANTHROPIC, _settings())

    def test_base_url_replaces_endpoint(self) -> None:
        """A configured base_url is used verbatim."""
        provider = OpenAICompatibleProvider(
            ProviderKind.OPENAI, _settings(base_url="http://proxy.local/v1/chat/completions")
        )
        assert provider.endpoint == "http://proxy.local/v1/chat/completions"

    def test_openrouter_headers(self) -> None:
        """OpenRouter requests carry attribution headers."""
        headers = OpenAICompatibleProvider(ProviderKind.OPENROUTER, _settings())._headers()
        assert headers["authorization"] == "Bearer sk-test"
        for key, value in OPENROUTER_HEADERS.items():
            assert headers[key] == value


class TestRequestShape:
    """Tests for message and tool conversion."""

    def test_tool_round_trip_messages(self) -> None:
        """Assistant tool calls and tool results use the function format."""
        provider = OpenAICompatibleProvider(ProviderKind.OPENAI, _settings())
        tool = ToolDefinition(name="search", description="Search", execute=_noop)
        body = provider.build_request(
            [
                Message(role="system", content="sys"),
                Message(role="assistant", tool_calls=(ToolCall("c1", "search", {"q": "x"}),)),
                Message(role="tool", content="result", tool_call_id="c1"),
            ],
            [tool],
        )
        assert body["messages"][0] == {"role": "system", "content": "sys"}
        call = body["messages"][1]["tool_calls"][0]
        assert call["function"]["name"] == "search"
        assert json.loads(call["function"]["arguments"]) == {"q": "x"}
        assert body["messages"][2] == {"role": "tool", "tool_call_id": "c1", "content": "result"}
        assert body["tools"][0]["type"] == "function"
        assert body["tool_choice"] == "auto"


class TestComplete:
    """Tests for the HTTP round trip and response parsing."""

    @pytest.mark.asyncio
    async def test_parses_tool_calls_and_usage(self) -> None:
        """JSON-string arguments are decoded; usage is mapped."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_completion(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {"id": "call_9", "type": "function",
                         "function": {"name": "search", "arguments": "{\"q\": \"rain\"}"}},
                    ],
                },
                usage={"prompt_tokens": 20, "completion_tokens": 5},
            ))

        provider = OpenAICompatibleProvider(
            ProviderKind.OPENAI, _settings(), transport=httpx.MockTransport(handler)
        )
        response = await provider.complete([Message(role="user", content="Rain?")])
        await provider.aclose()

        assert response.content == ""
        assert response.tool_calls == (ToolCall("call_9", "search", {"q": "rain"}),)
        assert (response.usage.input_tokens, response.usage.output_tokens) == (20, 5)
        assert captured[0].headers["authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_server_error_retried_then_raised(self) -> None:
        """5xx responses are retried, then mapped."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, json={"error": "maintenance"})

        provider = OpenAICompatibleProvider(
            ProviderKind.OLLAMA, _settings(api_key=None), transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.complete([Message(role="user", content="hi")])
        assert exc_info.value.code is ErrorCode.LLM_PROVIDER_UNAVAILABLE
        assert "maintenance" in exc_info.value.message
        assert calls == 2

    @pytest.mark.asyncio
    async def test_context_too_long(self) -> None:
        """400 with a context-length message maps to LLM_CONTEXT_TOO_LONG."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "This model's maximum context length is 8192"}})

        provider = OpenAICompatibleProvider(
            ProviderKind.OPENAI, _settings(), transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.complete([Message(role="user", content="hi")])
        assert exc_info.value.code is ErrorCode.LLM_CONTEXT_TOO_LONG


class TestParseChatCompletion:
    """Tests for tolerant response parsing."""

    def test_no_choices(self) -> None:
        """An empty choices list is a request failure."""
        with pytest.raises(ProviderError):
            parse_chat_completion({"choices": []}, "openai")

    def test_bad_arguments_kept_raw(self) -> None:
        """Undecodable arguments are preserved under _raw."""
        response = parse_chat_completion(_completion({
            "content": "",
            "tool_calls": [{"function": {"name": "search", "arguments": "{not json"}}],
        }))
        assert response.tool_calls[0].id == "call_0"
        assert response.tool_calls[0].parameters == {"_raw": "{not json"}

    def test_reasoning_becomes_thinking(self) -> None:
        """Reasoning fields surface as thinking text."""
        response = parse_chat_completion(_completion({"content": "hi", "reasoning_content": "hmm"}))
        assert response.thinking == "hmm"
        assert response.stop_reason == "stop"
