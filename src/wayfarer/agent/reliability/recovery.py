"""Error recovery policy.

Maps an error code to one recovery action and runs the matching handler:

    rate limited            -> retry    5000ms x3
    LLM / tool timeout      -> retry    2000ms x2
    provider unavailable    -> fallback 1000ms x2
    context too long        -> compact     0ms x1
    tool not found          -> skip
    auth failed / no key    -> ask_user       x0
    max iterations          -> abort
    anything else           -> retry if recoverable, else abort

Retry delays grow exponentially per attempt, capped at max_delay_ms.
Only the last ``max_history`` results are kept.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from wayfarer.core.errors import AgentError, ErrorCode, error_code_of
from wayfarer.core.types import now_ms

logger = logging.getLogger(__name__)


class RecoveryAction(Enum):
    RETRY = "retry"
    FALLBACK = "fallback"
    COMPACT = "compact"
    SKIP = "skip"
    ABORT = "abort"
    ASK_USER = "ask_user"


@dataclass(frozen=True, slots=True)
class RecoveryStrategy:
    action: RecoveryAction
    delay_ms: int = 0
    max_attempts: int = 0
    message: str = ""

    @property
    def stops_run(self) -> bool:
        return self.action in (RecoveryAction.ABORT, RecoveryAction.ASK_USER)


@dataclass(frozen=True, slots=True)
class RecoveryConfig:
    max_retry_attempts: int = 3
    base_delay_ms: int = 1_000
    max_delay_ms: int = 10_000
    enable_fallback: bool = True
    enable_compaction: bool = True
    max_history: int = 1_000


@dataclass(frozen=True, slots=True)
class RecoveryResult:
    recovered: bool
    action: RecoveryAction
    attempts: int
    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    timestamp: int = field(default_factory=now_ms)


RecoveryHandler = Callable[[BaseException, RecoveryStrategy, int], Awaitable[bool]]
"""async (error, strategy, attempt) -> recovered."""


_FIXED_STRATEGIES: dict[ErrorCode, RecoveryStrategy] = {
    ErrorCode.LLM_RATE_LIMITED: RecoveryStrategy(
        RecoveryAction.RETRY, 5_000, 3, "Rate limit hit, waiting before retry"
    ),
    ErrorCode.LLM_TIMEOUT: RecoveryStrategy(
        RecoveryAction.RETRY, 2_000, 2, "Request timed out, retrying"
    ),
    ErrorCode.TOOL_TIMEOUT: RecoveryStrategy(
        RecoveryAction.RETRY, 2_000, 2, "Tool timed out, retrying"
    ),
    ErrorCode.LLM_PROVIDER_UNAVAILABLE: RecoveryStrategy(
        RecoveryAction.FALLBACK, 1_000, 2, "Provider unavailable, trying fallback"
    ),
    ErrorCode.LLM_CONTEXT_TOO_LONG: RecoveryStrategy(
        RecoveryAction.COMPACT, 0, 1, "Context too long, compacting"
    ),
    ErrorCode.TOOL_NOT_FOUND: RecoveryStrategy(
        RecoveryAction.SKIP, 0, 1, "Tool not found, skipping"
    ),
    ErrorCode.LLM_AUTH_FAILED: RecoveryStrategy(
        RecoveryAction.ASK_USER, 0, 0, "Authentication failed. Please check your API key."
    ),
    ErrorCode.CONFIG_MISSING_API_KEY: RecoveryStrategy(
        RecoveryAction.ASK_USER, 0, 0, "No API key configured for the provider."
    ),
    ErrorCode.EXECUTION_MAX_ITERATIONS: RecoveryStrategy(
        RecoveryAction.ABORT, 0, 0, "Maximum iterations reached."
    ),
}


class ErrorRecovery:
    """Chooses and applies recovery strategies.

    Example:
        >>> recovery = ErrorRecovery()
        >>> recovery.strategy_for_code(ErrorCode.TOOL_NOT_FOUND).action
        <RecoveryAction.SKIP: 'skip'>
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        handlers: dict[RecoveryAction, RecoveryHandler] | None = None,
    ):
        self.config = config or RecoveryConfig()
        self._handlers: dict[RecoveryAction, RecoveryHandler] = {
            RecoveryAction.RETRY: self._sleep_before_retry,
        }
        if handlers:
            self._handlers.update(handlers)
        self._history: deque[RecoveryResult] = deque(maxlen=self.config.max_history)

    def strategy_for_code(self, code: ErrorCode, recoverable: bool | None = None) -> RecoveryStrategy:
        if code in _FIXED_STRATEGIES:
            return _FIXED_STRATEGIES[code]
        if code.is_recoverable if recoverable is None else recoverable:
            return RecoveryStrategy(
                RecoveryAction.RETRY,
                self.config.base_delay_ms,
                self.config.max_retry_attempts,
                "Recoverable error, retrying",
            )
        return RecoveryStrategy(RecoveryAction.ABORT, 0, 0, "Unrecoverable error occurred.")

    def strategy_for(self, error: BaseException) -> RecoveryStrategy:
        recoverable = error.recoverable if isinstance(error, AgentError) else None
        return self.strategy_for_code(error_code_of(error), recoverable)

    def register_handler(self, action: RecoveryAction, handler: RecoveryHandler) -> None:
        self._handlers[action] = handler

    def backoff_delay(self, attempt: int, base_ms: int | None = None) -> int:
        """min(max_delay, base * 2**attempt) in milliseconds."""
        base = self.config.base_delay_ms if base_ms is None else base_ms
        return min(self.config.max_delay_ms, base * (2 ** max(attempt, 0)))

    async def _sleep_before_retry(
        self, error: BaseException, strategy: RecoveryStrategy, attempt: int
    ) -> bool:
        delay_ms = self.backoff_delay(attempt, strategy.delay_ms)
        logger.debug("Retrying after %dms (attempt %d): %s", delay_ms, attempt + 1, error)
        await asyncio.sleep(delay_ms / 1000)
        return True

    async def recover(self, error: BaseException, attempt: int = 0) -> RecoveryResult:
        """Apply the strategy for ``error``.

        ``attempt`` counts recoveries already made for this failure. Once it
        reaches the strategy's max_attempts the result is not recovered.
        """
        strategy = self.strategy_for(error)
        code = error_code_of(error)

        if attempt >= strategy.max_attempts:
            recovered = False
            message = strategy.message or "Recovery attempts exhausted"
        else:
            recovered = await self._run_handler(error, strategy, attempt)
            message = "Recovery successful" if recovered else strategy.message or "Recovery failed"

        result = RecoveryResult(recovered, strategy.action, attempt + 1, message, code)
        self._history.append(result)
        logger.info(
            "Recovery %s for %s: %s",
            "succeeded" if recovered else "failed",
            code.value,
            strategy.action.value,
        )
        return result

    async def _run_handler(self, error: BaseException, strategy: RecoveryStrategy, attempt: int) -> bool:
        handler = self._handlers.get(strategy.action)
        if handler is not None:
            try:
                return await handler(error, strategy, attempt)
            except Exception:
                logger.exception("Recovery handler for %s failed", strategy.action.value)
                return False

        match strategy.action:
            case RecoveryAction.FALLBACK:
                return self.config.enable_fallback
            case RecoveryAction.COMPACT:
                return self.config.enable_compaction
            case RecoveryAction.SKIP:
                return True
            case _:
                return False

    @property
    def history(self) -> list[RecoveryResult]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
