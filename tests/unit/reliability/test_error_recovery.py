"""Tests for error recovery strategies."""

import pytest

from wayfarer.agent.reliability.recovery import (
    ErrorRecovery,
    RecoveryAction,
    RecoveryConfig,
    RecoveryStrategy,
)
from wayfarer.core.errors import AgentError, ErrorCode, llm_error


def _fast() -> ErrorRecovery:
    return ErrorRecovery(RecoveryConfig(base_delay_ms=1, max_delay_ms=5))


class TestStrategySelection:
    """Tests for the code -> action table."""

    @pytest.mark.parametrize(
        ("code", "action", "attempts"),
        [
            (ErrorCode.LLM_RATE_LIMITED, RecoveryAction.RETRY, 3),
            (ErrorCode.LLM_TIMEOUT, RecoveryAction.RETRY, 2),
            (ErrorCode.TOOL_TIMEOUT, RecoveryAction.RETRY, 2),
            (ErrorCode.LLM_PROVIDER_UNAVAILABLE, RecoveryAction.FALLBACK, 2),
            (ErrorCode.LLM_CONTEXT_TOO_LONG, RecoveryAction.COMPACT, 1),
            (ErrorCode.TOOL_NOT_FOUND, RecoveryAction.SKIP, 1),
            (ErrorCode.LLM_AUTH_FAILED, RecoveryAction.ASK_USER, 0),
            (ErrorCode.EXECUTION_MAX_ITERATIONS, RecoveryAction.ABORT, 0),
        ],
    )
    def test_fixed_strategies(self, code: ErrorCode, action: RecoveryAction, attempts: int) -> None:
        """Known codes map to fixed strategies."""
        strategy = ErrorRecovery().strategy_for_code(code)
        assert strategy.action is action
        assert strategy.max_attempts == attempts

    def test_recoverable_default_retries(self) -> None:
        """Other recoverable codes retry with the configured attempts."""
        strategy = ErrorRecovery().strategy_for_code(ErrorCode.TOOL_EXECUTION_FAILED)
        assert strategy.action is RecoveryAction.RETRY
        assert strategy.max_attempts == 3

    def test_unrecoverable_default_aborts(self) -> None:
        """Unrecoverable codes abort and stop the run."""
        strategy = ErrorRecovery().strategy_for_code(ErrorCode.SESSION_INVALID)
        assert strategy.action is RecoveryAction.ABORT
        assert strategy.stops_run

    def test_error_flag_overrides_code(self) -> None:
        """An AgentError's own recoverable flag is honored."""
        error = AgentError("weird", ErrorCode.UNKNOWN, recoverable=True)
        assert ErrorRecovery().strategy_for(error).action is RecoveryAction.RETRY

    def test_foreign_timeout(self) -> None:
        """Plain TimeoutError maps through execution.timeout."""
        assert ErrorRecovery().strategy_for(TimeoutError()).action is RecoveryAction.ABORT


class TestRecover:
    """Tests for applying strategies."""

    def test_backoff_delay(self) -> None:
        """Delays double per attempt up to the cap."""
        recovery = ErrorRecovery(RecoveryConfig(base_delay_ms=100, max_delay_ms=350))
        assert [recovery.backoff_delay(n) for n in range(4)] == [100, 200, 350, 350]

    @pytest.mark.asyncio
    async def test_retry_until_exhausted(self) -> None:
        """Retries succeed until max_attempts, then report failure."""
        recovery = _fast()
        recovery.register_handler(RecoveryAction.RETRY, _always(True))
        error = llm_error(ErrorCode.LLM_TIMEOUT, "slow")
        assert (await recovery.recover(error, 0)).recovered
        assert (await recovery.recover(error, 1)).recovered
        exhausted = await recovery.recover(error, 2)
        assert not exhausted.recovered
        assert exhausted.attempts == 3
        assert len(recovery.history) == 3

    @pytest.mark.asyncio
    async def test_default_retry_sleeps(self) -> None:
        """The built-in retry handler sleeps and reports success."""
        recovery = _fast()
        result = await recovery.recover(AgentError("flaky", ErrorCode.TOOL_EXECUTION_FAILED))
        assert result.recovered
        assert result.action is RecoveryAction.RETRY

    @pytest.mark.asyncio
    async def test_fallback_respects_config(self) -> None:
        """Without a handler, fallback succeeds only when enabled."""
        error = llm_error(ErrorCode.LLM_PROVIDER_UNAVAILABLE, "down")
        assert (await ErrorRecovery(RecoveryConfig(enable_fallback=True)).recover(error)).recovered
        assert not (await ErrorRecovery(RecoveryConfig(enable_fallback=False)).recover(error)).recovered

    @pytest.mark.asyncio
    async def test_ask_user_never_recovers(self) -> None:
        """Auth failures need a human."""
        result = await _fast().recover(llm_error(ErrorCode.LLM_AUTH_FAILED, "bad key"))
        assert not result.recovered
        assert result.action is RecoveryAction.ASK_USER
        assert "API key" in result.message

    @pytest.mark.asyncio
    async def test_handler_exception_means_not_recovered(self) -> None:
        """A crashing handler is logged and counts as failure."""

        async def broken(error: BaseException, strategy: RecoveryStrategy, attempt: int) -> bool:
            raise RuntimeError("handler bug")

        recovery = ErrorRecovery(handlers={RecoveryAction.COMPACT: broken})
        result = await recovery.recover(llm_error(ErrorCode.LLM_CONTEXT_TOO_LONG, "long"))
        assert not result.recovered

    @pytest.mark.asyncio
    async def test_history_is_bounded(self) -> None:
        """Only the most recent results are kept."""
        recovery = ErrorRecovery(RecoveryConfig(max_history=3))
        for _ in range(5):
            await recovery.recover(llm_error(ErrorCode.TOOL_NOT_FOUND, "missing"))
        assert len(recovery.history) == 3
        recovery.clear_history()
        assert recovery.history == []


def _always(value: bool):
    async def handler(error: BaseException, strategy: RecoveryStrategy, attempt: int) -> bool:
        return value

    return handler
