"""Scripted provider for tests and dry runs."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from wayfarer.core.types import LlmResponse, Message, TokenUsage, ToolDefinition
from wayfarer.models.protocol import CompletionOptions

ScriptItem = LlmResponse | BaseException | Callable[[Sequence[Message]], LlmResponse]


@dataclass(slots=True)
class MockCall:
    messages: tuple[Message, ...]
    tools: tuple[ToolDefinition, ...]
    options: CompletionOptions | None


@dataclass
class MockProvider:
    """Returns scripted responses in order.

    Each script item is an LlmResponse, an exception to raise, or a callable
    receiving the messages. Once the script is exhausted ``default`` is
    returned.
    """

    script: list[ScriptItem] = field(default_factory=list)
    provider_name: str = "mock"
    model_name: str = "mock-model"
    default: LlmResponse = field(default_factory=lambda: LlmResponse(content="Task complete."))
    calls: list[MockCall] = field(default_factory=list, init=False)
    closed: bool = field(default=False, init=False)

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def model(self) -> str:
        return self.model_name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        self.calls.append(MockCall(tuple(messages), tuple(tools or ()), options))
        item: ScriptItem = self.script.pop(0) if self.script else self.default
        if isinstance(item, BaseException):
            raise item
        if callable(item) and not isinstance(item, LlmResponse):
            item = item(messages)
        if item.usage is None:
            prompt_chars = sum(len(m.content) for m in messages)
            item = LlmResponse(
                content=item.content,
                tool_calls=item.tool_calls,
                thinking=item.thinking,
                usage=TokenUsage(prompt_chars // 4, len(item.content) // 4),
                stop_reason=item.stop_reason,
                model=self.model_name,
            )
        return item

    async def aclose(self) -> None:
        self.closed = True
