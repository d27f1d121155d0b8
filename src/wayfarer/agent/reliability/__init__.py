"""LLM resilience layer.

- Circuit breaker: per-provider failure isolation
- Backoff: exponential delays with jitter for retries
- Fallback: priority-ordered provider cascade
- Token tracker: usage ledger, cost estimates and budget alerts
- Recovery: error code -> recovery action
"""

from wayfarer.agent.reliability.backoff import (
    PROVIDER_RETRY_BACKOFF,
    BackoffPolicy,
    compute_backoff,
    sleep_with_backoff,
)
from wayfarer.agent.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from wayfarer.agent.reliability.fallback import (
    FallbackConfig,
    FallbackEvent,
    FallbackManager,
    FallbackProvider,
    FallbackResult,
    ProviderEntry,
)
from wayfarer.agent.reliability.recovery import (
    ErrorRecovery,
    RecoveryAction,
    RecoveryConfig,
    RecoveryResult,
    RecoveryStrategy,
)
from wayfarer.agent.reliability.token_tracker import (
    PROVIDER_COSTS,
    AlertKind,
    ModelCost,
    TokenAlert,
    TokenBudget,
    TokenTracker,
    TokenUsageRecord,
    estimate_message_tokens,
)

__all__ = [
    # Backoff
    "BackoffPolicy",
    "PROVIDER_RETRY_BACKOFF",
    "compute_backoff",
    "sleep_with_backoff",
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    # Fallback
    "FallbackConfig",
    "FallbackEvent",
    "FallbackManager",
    "FallbackProvider",
    "FallbackResult",
    "ProviderEntry",
    # Recovery
    "ErrorRecovery",
    "RecoveryAction",
    "RecoveryConfig",
    "RecoveryResult",
    "RecoveryStrategy",
    # Token tracking
    "AlertKind",
    "ModelCost",
    "PROVIDER_COSTS",
    "TokenAlert",
    "TokenBudget",
    "TokenTracker",
    "TokenUsageRecord",
    "estimate_message_tokens",
]
