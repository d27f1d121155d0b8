"""Completion Promise: heuristic scoring of whether a run is really done.

Not a guarantee. The score combines:
- iteration count against a minimum
- plan step completion ratio (when a plan exists)
- observation success rate, counting a failure as recovered once the
  same tool later succeeds
- premature-termination phrasing in the last thought (pluggable detector)
- completion phrasing in the last thought and the last successful result

``complete`` requires confidence >= the configured threshold.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from wayfarer.core.types import AgentState, Observation, PlanStepStatus, Thought, now_ms

logger = logging.getLogger(__name__)


class CompletionStatus(Enum):
    IN_PROGRESS = "in_progress"
    VERIFYING = "verifying"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CompletionCheck:
    """One scoring of a run's state."""

    status: CompletionStatus
    confidence: float
    reason: str
    evidence: tuple[str, ...] = ()
    missing_actions: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    timestamp: int = field(default_factory=now_ms)

    @property
    def is_complete(self) -> bool:
        return self.status is CompletionStatus.COMPLETE


@dataclass(frozen=True, slots=True)
class CompletionConfig:
    min_iterations: int = 1
    confidence_threshold: float = 0.8
    enable_verification: bool = True
    check_premature_patterns: bool = True


PrematureDetector = Callable[[Thought], str | None]
"""Returns a reason when the thought reads like giving up too early."""

Verifier = Callable[[AgentState], bool | Awaitable[bool]]


PREMATURE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"i (can't|cannot|won't be able to)", re.IGNORECASE),
    re.compile(r"i don't (have|know|see)", re.IGNORECASE),
    re.compile(r"no (such|file|data|record)", re.IGNORECASE),
    re.compile(r"unable to", re.IGNORECASE),
    re.compile(r"not (found|available|possible)", re.IGNORECASE),
)

COMPLETION_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"i have (completed|finished|done)", re.IGNORECASE),
    re.compile(r"task (is )?complete", re.IGNORECASE),
    re.compile(r"successfully (completed|created|updated|deleted)", re.IGNORECASE),
    re.compile(r"all (steps|tasks|actions) (are )?done", re.IGNORECASE),
    re.compile(r"here('s| is) (the|your|a)", re.IGNORECASE),
)


def pattern_detector(patterns: Sequence[re.Pattern[str]] = PREMATURE_PATTERNS) -> PrematureDetector:
    """Build a detector that flags the first matching pattern."""

    def detect(thought: Thought) -> str | None:
        for pattern in patterns:
            if pattern.search(thought.reasoning):
                return f"Premature termination pattern: {pattern.pattern}"
        return None

    return detect


def recovered_success_rate(observations: Sequence[Observation]) -> float:
    """Fraction of observations that succeeded or were later recovered.

    A failed observation counts as recovered when a later observation of
    the same tool succeeded.
    """
    if not observations:
        return 0.0
    good = 0
    for i, obs in enumerate(observations):
        if obs.success or any(
            later.success and later.tool_name == obs.tool_name
            for later in observations[i + 1:]
        ):
            good += 1
    return good / len(observations)


class CompletionPromise:
    """Scores run state and keeps a history of checks.

    Example:
        >>> promise = CompletionPromise()
        >>> check = promise.check(ctx.snapshot())
        >>> check.status
        <CompletionStatus.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        config: CompletionConfig | None = None,
        *,
        premature_detector: PrematureDetector | None = None,
        completion_indicators: Sequence[re.Pattern[str]] = COMPLETION_INDICATORS,
    ):
        self.config = config or CompletionConfig()
        self.premature_detector = premature_detector or pattern_detector()
        self.completion_indicators = tuple(completion_indicators)
        self._history: list[CompletionCheck] = []

    def check(self, state: AgentState) -> CompletionCheck:
        if state.current_iteration < self.config.min_iterations:
            return self._record(CompletionCheck(
                CompletionStatus.IN_PROGRESS,
                0.3,
                f"Need at least {self.config.min_iterations} iterations",
                ("Minimum iterations not reached",),
                (),
                ("Continue with task execution",),
            ))

        evidence: list[str] = []
        missing: list[str] = []

        if state.plan is not None:
            total = len(state.plan.steps)
            done = sum(1 for s in state.plan.steps if s.status is PlanStepStatus.COMPLETED)
            evidence.append(f"Plan progress: {done}/{total} steps")
            missing.extend(s.description for s in state.plan.pending_steps)

        success_rate = recovered_success_rate(state.observations)
        if success_rate > 0.7:
            evidence.append(f"Success rate: {success_rate * 100:.0f}%")

        last_thought = state.thoughts[-1] if state.thoughts else None
        if self.config.check_premature_patterns and last_thought is not None:
            premature = self._detect_premature(last_thought)
            if premature:
                return self._record(CompletionCheck(
                    CompletionStatus.INCOMPLETE,
                    0.4,
                    "Possible premature termination detected",
                    (premature,),
                    (),
                    ("Verify task completion", "Check for alternative approaches"),
                ))

        evidence.extend(self._completion_indicators(state, last_thought))
        confidence = self._confidence(state, success_rate, evidence, missing)

        if confidence >= self.config.confidence_threshold:
            status = CompletionStatus.COMPLETE
            reason = "Task appears complete with high confidence"
            suggestions: list[str] = []
        elif confidence >= 0.5:
            status = CompletionStatus.VERIFYING
            reason = "Task may be complete, verification recommended"
            suggestions = ["Verify all requirements are met"]
        elif missing:
            status = CompletionStatus.INCOMPLETE
            reason = "Missing required actions"
            suggestions = [f"Complete: {action}" for action in missing]
        else:
            status = CompletionStatus.IN_PROGRESS
            reason = "Task is still in progress"
            suggestions = ["Continue with remaining work"]

        return self._record(CompletionCheck(
            status, confidence, reason, tuple(evidence), tuple(missing), tuple(suggestions)
        ))

    async def verify(self, state: AgentState, verifier: Verifier | None = None) -> CompletionCheck:
        """Run the heuristic check, then let ``verifier`` confirm or overturn it.

        A verifier that raises is logged and the heuristic result stands.
        """
        base = self.check(state)
        if verifier is None or not self.config.enable_verification or base.is_complete:
            return base

        try:
            verdict = verifier(state)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except Exception:
            logger.exception("Completion verifier failed")
            return base

        if verdict:
            return self._record(CompletionCheck(
                CompletionStatus.COMPLETE,
                min(base.confidence + 0.2, 1.0),
                "Verification passed",
                (*base.evidence, "Custom verification passed"),
                base.missing_actions,
                (),
            ))
        return self._record(CompletionCheck(
            CompletionStatus.INCOMPLETE,
            max(base.confidence - 0.2, 0.0),
            "Verification failed",
            base.evidence,
            base.missing_actions,
            base.suggestions,
        ))

    @property
    def history(self) -> list[CompletionCheck]:
        return list(self._history)

    def reset(self) -> None:
        self._history.clear()

    # =========================================================================
    # Scoring
    # =========================================================================

    def _detect_premature(self, thought: Thought) -> str | None:
        try:
            return self.premature_detector(thought)
        except Exception:
            logger.exception("Premature-termination detector failed")
            return None

    def _completion_indicators(self, state: AgentState, last_thought: Thought | None) -> list[str]:
        found: list[str] = []
        if last_thought is not None:
            found.extend(
                f"Completion indicator found: {p.pattern}"
                for p in self.completion_indicators
                if p.search(last_thought.reasoning)
            )

        last_obs = state.observations[-1] if state.observations else None
        if last_obs is not None and last_obs.success and last_obs.result:
            text = json.dumps(last_obs.result, default=str)
            if any(p.search(text) for p in self.completion_indicators):
                found.append("Result contains completion indicator")
        return found

    def _confidence(
        self,
        state: AgentState,
        success_rate: float,
        evidence: list[str],
        missing: list[str],
    ) -> float:
        confidence = 0.5
        if state.plan is not None:
            confidence += state.plan.completed_ratio * 0.2
        if state.observations:
            confidence += success_rate * 0.2
        confidence += min(len(evidence) * 0.05, 0.15)
        confidence -= min(len(missing) * 0.1, 0.3)

        asked = any(m.role == "user" for m in state.messages)
        if asked and not state.observations:
            confidence -= 0.2
        return round(max(0.0, min(1.0, confidence)), 4)

    def _record(self, check: CompletionCheck) -> CompletionCheck:
        self._history.append(check)
        return check
