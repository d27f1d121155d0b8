"""Token and cost accounting for LLM calls.

Costs are per provider (USD per 1K tokens); local Ollama models are free.
Budgets are optional. Crossing 80% of a budget raises a warning alert and
crossing 100% an exceeded alert, each at most once per metric.

Example:
    >>> tracker = TokenTracker(TokenBudget(max_total_tokens=10_000))
    >>> tracker.record("anthropic", "claude-3-5-sonnet", TokenUsage(1000, 500))
    >>> tracker.summary()["total_tokens"]
    1500
"""

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from wayfarer.core.types import Message, TokenUsage, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelCost:
    """USD per 1K tokens."""

    input_per_1k: float = 0.0
    output_per_1k: float = 0.0


PROVIDER_COSTS: dict[str, ModelCost] = {
    "anthropic": ModelCost(input_per_1k=0.003, output_per_1k=0.015),
    "openai": ModelCost(input_per_1k=0.005, output_per_1k=0.015),
    "openrouter": ModelCost(input_per_1k=0.003, output_per_1k=0.015),
    "ollama": ModelCost(),
    "zai": ModelCost(input_per_1k=0.003, output_per_1k=0.015),
}


def get_provider_cost(provider: str) -> ModelCost:
    """Cost table entry for a provider (free if unknown)."""
    return PROVIDER_COSTS.get(provider.lower(), ModelCost())


def estimate_message_tokens(messages: Sequence[Message]) -> int:
    """Rough token estimate: 4 per message plus ~4 characters per token."""
    tokens = 0
    for msg in messages:
        tokens += 4 + math.ceil(len(msg.content) / 4)
        for call in msg.tool_calls:
            tokens += math.ceil((len(call.name) + len(str(call.parameters))) / 4)
    return tokens


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


@dataclass(frozen=True, slots=True)
class TokenUsageRecord:
    """One row of the append-only usage ledger."""

    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    operation: str = "completion"
    timestamp: int = field(default_factory=now_ms)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class TokenBudget:
    max_input_tokens: int | None = None
    max_total_tokens: int | None = None
    max_cost: float | None = None
    reserve_tokens: int = 1000
    """Held back from the budget when checking availability."""


class AlertKind(Enum):
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"


@dataclass(frozen=True, slots=True)
class TokenAlert:
    kind: AlertKind
    metric: str
    """'input_tokens', 'total_tokens' or 'cost'."""

    limit: float
    percentage: float
    message: str
    timestamp: int = field(default_factory=now_ms)


AlertCallback = Callable[[TokenAlert], None]


class TokenTracker:
    """Accumulates usage records and checks them against a budget."""

    WARNING_PERCENT = 80.0

    def __init__(self, budget: TokenBudget | None = None, on_alert: AlertCallback | None = None):
        self.budget = budget
        self.on_alert = on_alert
        self._records: list[TokenUsageRecord] = []
        self._alerts: list[TokenAlert] = []
        self._alerted: set[tuple[AlertKind, str]] = set()

    # =========================================================================
    # Recording
    # =========================================================================

    def estimate_cost(self, provider: str, input_tokens: int, output_tokens: int) -> float:
        cost = get_provider_cost(provider)
        return (input_tokens / 1000) * cost.input_per_1k + (output_tokens / 1000) * cost.output_per_1k

    def record(
        self,
        provider: str,
        model: str,
        usage: TokenUsage,
        operation: str = "completion",
    ) -> TokenUsageRecord:
        """Append a usage record and run the budget checks."""
        record = TokenUsageRecord(
            provider=provider,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=self.estimate_cost(provider, usage.input_tokens, usage.output_tokens),
            operation=operation,
        )
        self._records.append(record)
        logger.debug(
            "Recorded %d in / %d out tokens for %s (%.4f USD)",
            record.input_tokens,
            record.output_tokens,
            provider,
            record.cost,
        )
        self._check_budget()
        return record

    @property
    def records(self) -> list[TokenUsageRecord]:
        return list(self._records)

    @property
    def total_input(self) -> int:
        return sum(r.input_tokens for r in self._records)

    @property
    def total_output(self) -> int:
        return sum(r.output_tokens for r in self._records)

    @property
    def total_tokens(self) -> int:
        return self.total_input + self.total_output

    @property
    def total_cost(self) -> float:
        return sum(r.cost for r in self._records)

    def usage_by_provider(self) -> dict[str, list[TokenUsageRecord]]:
        grouped: dict[str, list[TokenUsageRecord]] = {}
        for record in self._records:
            grouped.setdefault(record.provider, []).append(record)
        return grouped

    # =========================================================================
    # Budget
    # =========================================================================

    def _remaining(self) -> float:
        if self.budget is None:
            return math.inf
        remaining_input = (
            self.budget.max_input_tokens - self.total_input
            if self.budget.max_input_tokens
            else math.inf
        )
        remaining_total = (
            self.budget.max_total_tokens - self.total_tokens
            if self.budget.max_total_tokens
            else math.inf
        )
        return min(remaining_input, remaining_total) - self.budget.reserve_tokens

    def has_budget_available(self, estimated: int = 0) -> bool:
        """Whether ``estimated`` more tokens fit, keeping the reserve."""
        return self._remaining() >= estimated

    def available_input_tokens(self) -> float:
        """Tokens left before the reserve (``math.inf`` without a budget)."""
        return max(0, self._remaining())

    @property
    def alerts(self) -> list[TokenAlert]:
        return list(self._alerts)

    def _check_budget(self) -> None:
        if self.budget is None:
            return
        checks: list[tuple[str, float, float | None]] = [
            ("input_tokens", self.total_input, self.budget.max_input_tokens),
            ("total_tokens", self.total_tokens, self.budget.max_total_tokens),
            ("cost", self.total_cost, self.budget.max_cost),
        ]
        for metric, used, limit in checks:
            if not limit:
                continue
            percentage = used / limit * 100
            if percentage >= 100:
                self._alert(AlertKind.BUDGET_EXCEEDED, metric, limit, percentage,
                            f"{metric} budget exceeded: {used:g}/{limit:g}")
            elif percentage >= self.WARNING_PERCENT:
                self._alert(AlertKind.BUDGET_WARNING, metric, limit, percentage,
                            f"{metric} budget at {percentage:.1f}%")

    def _alert(self, kind: AlertKind, metric: str, limit: float, percentage: float, message: str) -> None:
        if (kind, metric) in self._alerted:
            return
        self._alerted.add((kind, metric))
        alert = TokenAlert(kind, metric, limit, percentage, message)
        self._alerts.append(alert)
        logger.warning("Token budget alert: %s", message)
        if self.on_alert is not None:
            try:
                self.on_alert(alert)
            except Exception:
                logger.exception("Token alert callback failed")

    # =========================================================================
    # Reporting
    # =========================================================================

    def summary(self) -> dict[str, Any]:
        return {
            "total_input_tokens": self.total_input,
            "total_output_tokens": self.total_output,
            "total_tokens": self.total_tokens,
            "total_cost_usd": round(self.total_cost, 6),
            "call_count": len(self._records),
            "by_provider": {
                provider: sum(r.total_tokens for r in records)
                for provider, records in self.usage_by_provider().items()
            },
            "alerts": [a.message for a in self._alerts],
        }

    def reset(self) -> None:
        self._records = []
        self._alerts = []
        self._alerted.clear()
