"""Tests for the provider fallback chain."""

import pytest

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import AgentEvent, EventType
from wayfarer.agent.reliability.circuit_breaker import CircuitBreakerRegistry, CircuitState
from wayfarer.agent.reliability.fallback import FallbackConfig, FallbackManager, FallbackProvider
from wayfarer.core.errors import AllProvidersFailedError, ErrorCode, ProviderError, llm_error
from wayfarer.core.types import LlmResponse, Message
from wayfarer.models.mock import MockProvider

MESSAGES = [Message(role="user", content="hi")]


def _unavailable(name: str) -> ProviderError:
    return llm_error(ErrorCode.LLM_PROVIDER_UNAVAILABLE, f"{name} down", provider=name)


def _manager(
    primary: MockProvider,
    backup: MockProvider,
    *,
    enabled: bool = True,
    bus: EventBus | None = None,
    failure_threshold: int = 5,
) -> FallbackManager:
    manager = FallbackManager(
        FallbackConfig(enabled=enabled),
        CircuitBreakerRegistry(failure_threshold=failure_threshold),
        bus,
    )
    manager.register(backup, priority=10)
    manager.register(primary, priority=0)
    return manager


class TestFallbackManager:
    """Tests for ordering, cascading and breaker integration."""

    def test_priority_order(self) -> None:
        """Lower priority numbers come first regardless of registration order."""
        manager = _manager(MockProvider(provider_name="primary"), MockProvider(provider_name="backup"))
        assert [e.name for e in manager.providers] == ["primary", "backup"]
        assert manager.primary.name == "primary"

    @pytest.mark.asyncio
    async def test_primary_success(self) -> None:
        """A healthy primary answers without touching the backup."""
        primary = MockProvider(provider_name="primary")
        backup = MockProvider(provider_name="backup")
        result = await _manager(primary, backup).execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert result.provider == "primary"
        assert result.attempts == 1
        assert backup.call_count == 0

    @pytest.mark.asyncio
    async def test_cascades_to_backup(self, event_bus: EventBus) -> None:
        """A failing primary hands over to the backup and records the switch."""
        triggered: list[AgentEvent] = []
        event_bus.on(EventType.LLM_FALLBACK_TRIGGERED, triggered.append)
        primary = MockProvider([_unavailable("primary")], provider_name="primary")
        backup = MockProvider([LlmResponse(content="from backup")], provider_name="backup")
        manager = _manager(primary, backup, bus=event_bus)

        result = await manager.execute_with_fallback(lambda p: p.complete(MESSAGES))

        assert result.value.content == "from backup"
        assert result.provider == "backup"
        assert result.attempts == 2
        assert [(e.from_provider, e.to_provider) for e in result.events] == [("primary", "backup")]
        assert triggered[0].data["reason"] == "primary down"
        assert manager.get("primary").last_error == "primary down"

    @pytest.mark.asyncio
    async def test_all_fail(self) -> None:
        """When every provider fails the error lists each failure."""
        primary = MockProvider([_unavailable("primary")], provider_name="primary")
        backup = MockProvider([RuntimeError("socket closed")], provider_name="backup")
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await _manager(primary, backup).execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert exc_info.value.failures == [("primary", "primary down"), ("backup", "socket closed")]
        assert exc_info.value.recoverable is False

    @pytest.mark.asyncio
    async def test_all_rejected_credentials_keep_code(self) -> None:
        """When every provider rejects its key the chain error stays an auth failure."""
        primary = MockProvider([llm_error(ErrorCode.LLM_AUTH_FAILED, "bad key")], provider_name="primary")
        backup = MockProvider([llm_error(ErrorCode.LLM_AUTH_FAILED, "bad key")], provider_name="backup")
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await _manager(primary, backup).execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert exc_info.value.code is ErrorCode.LLM_AUTH_FAILED

    @pytest.mark.asyncio
    async def test_mixed_failures_are_unavailable(self) -> None:
        """An auth failure next to an outage is reported as an outage."""
        primary = MockProvider([llm_error(ErrorCode.LLM_AUTH_FAILED, "bad key")], provider_name="primary")
        backup = MockProvider([_unavailable("backup")], provider_name="backup")
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await _manager(primary, backup).execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert exc_info.value.code is ErrorCode.LLM_PROVIDER_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_event_log_is_bounded(self) -> None:
        """Only the most recent fallback events are kept."""
        primary = MockProvider([_unavailable("primary")] * 3, provider_name="primary")
        backup = MockProvider(provider_name="backup")
        manager = FallbackManager(FallbackConfig(max_events=2), CircuitBreakerRegistry(failure_threshold=10))
        manager.register(primary, priority=0)
        manager.register(backup, priority=10)

        for _ in range(3):
            await manager.execute_with_fallback(lambda p: p.complete(MESSAGES))

        assert len(manager.events) == 2

    @pytest.mark.asyncio
    async def test_disabled_propagates_primary_error(self) -> None:
        """With fallback off the primary's own exception surfaces."""
        primary = MockProvider([_unavailable("primary")], provider_name="primary")
        backup = MockProvider(provider_name="backup")
        with pytest.raises(ProviderError) as exc_info:
            await _manager(primary, backup, enabled=False).execute_with_fallback(
                lambda p: p.complete(MESSAGES)
            )
        assert not isinstance(exc_info.value, AllProvidersFailedError)
        assert backup.call_count == 0

    @pytest.mark.asyncio
    async def test_open_breaker_skips_provider(self) -> None:
        """A provider with an open circuit is not invoked."""
        primary = MockProvider([_unavailable("primary")], provider_name="primary")
        backup = MockProvider(provider_name="backup")
        manager = _manager(primary, backup, failure_threshold=1)

        await manager.execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert manager.breakers.get("primary").state is CircuitState.OPEN

        result = await manager.execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert result.provider == "backup"
        assert primary.call_count == 1
        assert manager.health()["primary"]["available"] is False

    @pytest.mark.asyncio
    async def test_preferred_provider_first(self) -> None:
        """A preferred name moves to the front of the chain."""
        primary = MockProvider(provider_name="primary")
        backup = MockProvider(provider_name="backup")
        result = await _manager(primary, backup).execute_with_fallback(
            lambda p: p.complete(MESSAGES), preferred="backup"
        )
        assert result.provider == "backup"

    @pytest.mark.asyncio
    async def test_disabled_entry_skipped(self) -> None:
        """Disabled entries are left out of the chain."""
        primary = MockProvider(provider_name="primary")
        backup = MockProvider(provider_name="backup")
        manager = _manager(primary, backup)
        manager.disable("primary")
        result = await manager.execute_with_fallback(lambda p: p.complete(MESSAGES))
        assert result.provider == "backup"


class TestFallbackProvider:
    """Tests for the single-provider facade."""

    def test_requires_providers(self) -> None:
        """An empty manager cannot back a provider."""
        with pytest.raises(ProviderError) as exc_info:
            FallbackProvider(FallbackManager())
        assert exc_info.value.code is ErrorCode.CONFIG_INVALID

    @pytest.mark.asyncio
    async def test_complete_and_close(self) -> None:
        """complete() routes through the chain; aclose() closes every provider."""
        primary = MockProvider([_unavailable("primary")], provider_name="primary")
        backup = MockProvider([LlmResponse(content="hello")], provider_name="backup")
        provider = FallbackProvider(_manager(primary, backup))

        response = await provider.complete(MESSAGES)
        assert response.content == "hello"
        assert provider.last_provider == "backup"
        assert provider.name == "fallback"
        assert provider.model == "mock-model"

        await provider.aclose()
        assert primary.closed and backup.closed
