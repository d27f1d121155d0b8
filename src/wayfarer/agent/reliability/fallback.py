"""Provider fallback chain.

Providers are kept sorted by ascending priority number, each guarded by
its own CircuitBreaker from the shared registry. A call walks the chain,
skipping providers whose breaker rejects, and records a FallbackEvent
every time it moves on. When fallback is disabled only the primary
provider is called and its exception propagates unchanged.

When every attempted provider failed on credentials (auth failure or a
missing key) the chain error keeps that code, so callers can ask the
user instead of treating it as an outage. The event log is bounded.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from wayfarer.agent.events import EventBus, EventType
from wayfarer.agent.events.types import AgentEvent
from wayfarer.agent.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState
from wayfarer.core.errors import AllProvidersFailedError, ErrorCode, ProviderError, error_code_of
from wayfarer.core.types import LlmResponse, Message, ToolDefinition, now_ms
from wayfarer.models.protocol import CompletionOptions, LlmProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CREDENTIAL_CODES = frozenset({ErrorCode.LLM_AUTH_FAILED, ErrorCode.CONFIG_MISSING_API_KEY})


@dataclass(frozen=True, slots=True)
class FallbackConfig:
    enabled: bool = True
    max_providers_to_try: int = 3
    max_events: int = 1_000


@dataclass(slots=True)
class ProviderEntry:
    provider: LlmProvider
    priority: int
    name: str
    enabled: bool = True
    last_error: str | None = None
    last_success: int | None = None


@dataclass(frozen=True, slots=True)
class FallbackEvent:
    from_provider: str
    to_provider: str
    reason: str
    timestamp: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class FallbackResult(Generic[T]):
    """Value plus the provider that produced it."""

    value: T
    provider: str
    attempts: int
    events: tuple[FallbackEvent, ...] = ()


class FallbackManager:
    """Cascades calls across providers by priority.

    Example:
        >>> manager = FallbackManager(FallbackConfig(), CircuitBreakerRegistry())
        >>> manager.register(primary, priority=0)
        >>> manager.register(backup, priority=10)
        >>> result = await manager.execute_with_fallback(lambda p: p.complete(messages))
        >>> result.provider
        'anthropic'
    """

    def __init__(
        self,
        config: FallbackConfig | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        event_bus: EventBus | None = None,
    ):
        self.config = config or FallbackConfig()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.event_bus = event_bus
        self._entries: dict[str, ProviderEntry] = {}
        self._events: deque[FallbackEvent] = deque(maxlen=self.config.max_events)
        if event_bus is not None and self.breakers.on_state_change is None:
            self.breakers.on_state_change = self._publish_state_change

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, provider: LlmProvider, priority: int = 100, name: str | None = None) -> None:
        entry_name = name or provider.name
        self._entries[entry_name] = ProviderEntry(provider, priority, entry_name)
        self.breakers.get(entry_name)
        logger.debug("Registered provider %s (priority %d)", entry_name, priority)

    def unregister(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def enable(self, name: str) -> None:
        if name in self._entries:
            self._entries[name].enabled = True

    def disable(self, name: str) -> None:
        if name in self._entries:
            self._entries[name].enabled = False

    def get(self, name: str) -> ProviderEntry | None:
        return self._entries.get(name)

    @property
    def providers(self) -> list[ProviderEntry]:
        """All entries, highest priority (lowest number) first."""
        return sorted(self._entries.values(), key=lambda e: e.priority)

    @property
    def primary(self) -> ProviderEntry | None:
        entries = self.providers
        return entries[0] if entries else None

    def available_providers(self) -> list[ProviderEntry]:
        return [
            e for e in self.providers
            if e.enabled and self.breakers.get(e.name).can_execute()
        ]

    @property
    def events(self) -> list[FallbackEvent]:
        return list(self._events)

    # =========================================================================
    # Execution
    # =========================================================================

    def _chain(self, preferred: str | None) -> list[ProviderEntry]:
        chain = [e for e in self.providers if e.enabled]
        if preferred is not None:
            chain.sort(key=lambda e: e.name != preferred)
        return chain[: self.config.max_providers_to_try]

    async def execute_with_fallback(
        self,
        fn: Callable[[LlmProvider], Awaitable[T]],
        preferred: str | None = None,
    ) -> FallbackResult[T]:
        """Run ``fn`` against providers until one succeeds.

        Raises:
            AllProvidersFailedError: Every attempted provider failed or was
                rejected by its breaker.
            Exception: With fallback disabled, whatever the primary raised.
        """
        if not self.config.enabled:
            entry = self.get(preferred) if preferred else self.primary
            if entry is None:
                raise AllProvidersFailedError([])
            value = await fn(entry.provider)
            entry.last_success = now_ms()
            return FallbackResult(value, entry.name, 1)

        chain = self._chain(preferred)
        failures: list[tuple[str, str]] = []
        codes: set[ErrorCode] = set()
        run_events: list[FallbackEvent] = []
        attempts = 0

        for index, entry in enumerate(chain):
            breaker = self.breakers.get(entry.name)
            if not breaker.can_execute():
                failures.append((entry.name, f"circuit {breaker.state.value}"))
                continue

            attempts += 1
            try:
                value = await breaker.execute(lambda e=entry: fn(e.provider))
            except Exception as e:
                message = e.message if isinstance(e, ProviderError) else str(e) or type(e).__name__
                entry.last_error = message
                failures.append((entry.name, message))
                codes.add(error_code_of(e))
                logger.warning("Provider %s failed: %s", entry.name, message)
                next_entry = chain[index + 1] if index + 1 < len(chain) else None
                if next_entry is not None:
                    run_events.append(await self._record(entry.name, next_entry.name, message))
                continue

            entry.last_success = now_ms()
            entry.last_error = None
            return FallbackResult(value, entry.name, attempts, tuple(run_events))

        if attempts == len(failures) and len(codes) == 1 and codes <= _CREDENTIAL_CODES:
            raise AllProvidersFailedError(failures, codes.pop())
        raise AllProvidersFailedError(failures)

    async def _record(self, from_name: str, to_name: str, reason: str) -> FallbackEvent:
        event = FallbackEvent(from_name, to_name, reason)
        self._events.append(event)
        if self.event_bus is not None:
            await self.event_bus.emit(
                AgentEvent(
                    EventType.LLM_FALLBACK_TRIGGERED,
                    {"from_provider": from_name, "to_provider": to_name, "reason": reason},
                )
            )
        return event

    def _publish_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit_sync(
            AgentEvent(
                EventType.CIRCUIT_BREAKER_CHANGED,
                {"provider": name, "from_state": old.value, "to_state": new.value},
            )
        )

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> dict[str, dict[str, Any]]:
        report = {}
        for entry in self.providers:
            breaker = self.breakers.get(entry.name)
            report[entry.name] = {
                "available": entry.enabled and breaker.can_execute(),
                "priority": entry.priority,
                "circuit_state": breaker.state.value,
                "last_error": entry.last_error,
                "last_success": entry.last_success,
            }
        return report

    def reset(self) -> None:
        self.breakers.reset_all()
        self._events.clear()
        for entry in self._entries.values():
            entry.last_error = None


class FallbackProvider:
    """Exposes a FallbackManager as a single LlmProvider."""

    def __init__(self, manager: FallbackManager, preferred: str | None = None):
        if not manager.providers:
            raise ProviderError("No providers registered", ErrorCode.CONFIG_INVALID)
        self.manager = manager
        self.preferred = preferred
        self.last_provider: str | None = None

    @property
    def name(self) -> str:
        return "fallback"

    @property
    def model(self) -> str:
        entry = (self.preferred and self.manager.get(self.preferred)) or self.manager.primary
        return entry.provider.model if entry else ""

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition] | None = None,
        options: CompletionOptions | None = None,
    ) -> LlmResponse:
        result = await self.manager.execute_with_fallback(
            lambda provider: provider.complete(messages, tools, options),
            preferred=self.preferred,
        )
        self.last_provider = result.provider
        return result.value

    async def aclose(self) -> None:
        for entry in self.manager.providers:
            await entry.provider.aclose()
