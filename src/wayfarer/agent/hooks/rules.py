"""Declarative tool-call rules.

Rules are evaluated before hooks. Each returns a RuleResult record; only
failed ``error``-severity results block a call. Warnings are advisory and
end up in the tool result metadata. A rule that raises or times out is
recorded as passed.

When pre hooks are configured the executor skips ``required-params`` here
and checks completeness after the hooks, so a hook can fill a parameter.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
from collections.abc import Awaitable, Callable, Collection, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from wayfarer.core.types import ToolCall, ToolDefinition, now_ms

if TYPE_CHECKING:
    from wayfarer.core.context import ExecutionContext

logger = logging.getLogger(__name__)


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class RuleResult:
    """Verdict of one rule on one call."""

    rule_id: str
    passed: bool
    severity: Severity
    message: str = ""
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class RuleInput:
    """What a rule evaluator sees."""

    call: ToolCall
    tool: ToolDefinition
    context: ExecutionContext | None = None


RuleEvaluator = Callable[[RuleInput], RuleResult | Awaitable[RuleResult]]


@dataclass(slots=True)
class Rule:
    """A named validator, optionally limited to matching tool names."""

    id: str
    description: str
    severity: Severity
    evaluate: RuleEvaluator
    tool_pattern: str | re.Pattern[str] | None = None
    enabled: bool = True

    def applies_to(self, tool_name: str) -> bool:
        if self.tool_pattern is None:
            return True
        if isinstance(self.tool_pattern, str):
            return tool_name == self.tool_pattern
        return self.tool_pattern.search(tool_name) is not None

    def passed(self, message: str) -> RuleResult:
        return RuleResult(self.id, True, self.severity, message)

    def failed(self, message: str, suggestion: str | None = None) -> RuleResult:
        return RuleResult(self.id, False, self.severity, message, suggestion)


@dataclass(frozen=True, slots=True)
class RuleEvaluation:
    """All rule results for one call."""

    results: tuple[RuleResult, ...] = ()

    @property
    def has_errors(self) -> bool:
        return any(not r.passed and r.severity is Severity.ERROR for r in self.results)

    @property
    def errors(self) -> list[str]:
        return [r.message for r in self.results if not r.passed and r.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[str]:
        return [r.message for r in self.results if not r.passed and r.severity is Severity.WARNING]


# =============================================================================
# Built-in rules
# =============================================================================


def _required_params(inp: RuleInput) -> RuleResult:
    rule = REQUIRED_PARAMS_RULE
    missing = [p for p in inp.tool.parameters.required if inp.call.parameters.get(p) is None]
    if missing:
        names = ", ".join(missing)
        return rule.failed(f"Missing required parameters: {names}", f"Provide values for: {names}")
    return rule.passed("All required parameters provided")


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


def _type_name(value: Any) -> str:
    match value:
        case bool():
            return "boolean"
        case int():
            return "integer"
        case float():
            return "number"
        case str():
            return "string"
        case list() | tuple():
            return "array"
        case dict():
            return "object"
        case None:
            return "null"
        case _:
            return type(value).__name__


def _is_number_string(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _matches_type(expected: str, value: Any) -> bool:
    python_types = _JSON_TYPES.get(expected)
    if python_types is None:
        return True
    # bool is an int subclass; only "boolean" accepts it
    if isinstance(value, bool) and expected != "boolean":
        return False
    if isinstance(value, python_types):
        return True
    # Lenient coercions the model commonly relies on
    if expected == "string" and isinstance(value, (int, float)):
        return True
    if expected in ("number", "integer") and isinstance(value, str):
        return _is_number_string(value)
    if expected == "boolean" and isinstance(value, str):
        return value.lower() in ("true", "false")
    return False


def _param_types(inp: RuleInput) -> RuleResult:
    rule = PARAM_TYPES_RULE
    properties = inp.tool.parameters.properties
    problems: list[str] = []
    for key, value in inp.call.parameters.items():
        expected = (properties.get(key) or {}).get("type")
        if not expected or value is None:
            continue
        if not _matches_type(expected, value):
            problems.append(f"{key}: expected {expected}, got {_type_name(value)}")
            continue
        item_type = (properties[key].get("items") or {}).get("type")
        if expected == "array" and item_type and isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                if not _matches_type(item_type, item):
                    problems.append(f"{key}[{i}]: expected {item_type}, got {_type_name(item)}")
    if problems:
        return rule.failed(
            f"Type validation errors: {'; '.join(problems)}",
            "Check parameter types against the tool schema",
        )
    return rule.passed("All parameters have valid types")


_PATH_PARAMS = ("path", "filePath", "file_path", "dir", "directory", "folder")
_UNSAFE_PATH_FRAGMENTS = ("../", "..\\", "/etc/", "/root/", "~/", "${", "<%=")


def _file_path_safety(inp: RuleInput) -> RuleResult:
    rule = FILE_PATH_SAFETY_RULE
    for name in _PATH_PARAMS:
        value = inp.call.parameters.get(name)
        if not isinstance(value, str):
            continue
        if any(fragment in value for fragment in _UNSAFE_PATH_FRAGMENTS):
            return rule.failed(
                f"Potentially unsafe path: {value}",
                "Use relative paths within the project directory",
            )
    return rule.passed("File path is safe")


RATE_LIMIT_PER_MINUTE = 30


def _rate_limit(inp: RuleInput) -> RuleResult:
    rule = RATE_LIMIT_RULE
    if inp.context is None:
        return rule.passed("No run context")
    cutoff = now_ms() - 60_000
    recent = sum(
        1
        for obs in inp.context.observations
        if obs.tool_name == inp.call.name and obs.timestamp >= cutoff
    )
    if recent > RATE_LIMIT_PER_MINUTE:
        return rule.failed(
            f"Rate limit exceeded for {inp.call.name}: {recent} calls in last minute",
            "Consider batching operations or reducing call frequency",
        )
    return rule.passed("Within rate limits")


def _params_key(params: dict[str, Any] | None) -> str:
    return json.dumps(params or {}, sort_keys=True, default=repr)


def _no_duplicates(inp: RuleInput) -> RuleResult:
    rule = NO_DUPLICATES_RULE
    if inp.context is None or not inp.context.observations:
        return rule.passed("No previous calls to compare")
    wanted = _params_key(inp.call.parameters)
    thoughts = {t.id: t for t in inp.context.thoughts}
    for obs in inp.context.observations[-3:]:
        if obs.tool_name != inp.call.name or not obs.success:
            continue
        thought = thoughts.get(obs.thought_id)
        if thought is not None and _params_key(thought.tool_parameters) == wanted:
            return rule.failed(
                "Duplicate tool call detected",
                "Use the earlier result or change the parameters",
            )
    return rule.passed("No duplicate calls detected")


REQUIRED_PARAMS_RULE = Rule(
    "required-params", "Ensures all required parameters are provided", Severity.ERROR, _required_params
)
PARAM_TYPES_RULE = Rule(
    "param-types", "Validates parameter types against the schema", Severity.ERROR, _param_types
)
FILE_PATH_SAFETY_RULE = Rule(
    "file-path-safety",
    "Rejects path traversal and sensitive locations",
    Severity.ERROR,
    _file_path_safety,
    tool_pattern=re.compile(r"file|read|write|path", re.IGNORECASE),
)
RATE_LIMIT_RULE = Rule(
    "rate-limit", "Flags excessive calls to one tool", Severity.WARNING, _rate_limit
)
NO_DUPLICATES_RULE = Rule(
    "no-duplicates", "Flags repeats of a recent identical call", Severity.WARNING, _no_duplicates
)


def builtin_rules() -> list[Rule]:
    """Fresh copies of the built-in rules (enabled flags are per engine)."""
    return [
        Rule(r.id, r.description, r.severity, r.evaluate, r.tool_pattern)
        for r in (
            REQUIRED_PARAMS_RULE,
            PARAM_TYPES_RULE,
            FILE_PATH_SAFETY_RULE,
            RATE_LIMIT_RULE,
            NO_DUPLICATES_RULE,
        )
    ]


# =============================================================================
# Engine
# =============================================================================


class RuleEngine:
    """Evaluates registered rules against a tool call, in registration order."""

    def __init__(
        self,
        rules: Iterable[Rule] | None = None,
        *,
        include_builtin: bool = True,
        timeout_ms: int = 5_000,
    ):
        self.timeout_ms = timeout_ms
        self.enabled = True
        self._rules: dict[str, Rule] = {}
        if include_builtin:
            for rule in builtin_rules():
                self.add_rule(rule)
        for rule in rules or ():
            self.add_rule(rule)

    def add_rule(self, rule: Rule) -> None:
        self._rules[rule.id] = rule

    def remove_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def enable(self, rule_id: str) -> None:
        if rule := self._rules.get(rule_id):
            rule.enabled = True

    def disable(self, rule_id: str) -> None:
        if rule := self._rules.get(rule_id):
            rule.enabled = False

    @property
    def rules(self) -> list[Rule]:
        return list(self._rules.values())

    async def evaluate(
        self,
        call: ToolCall,
        tool: ToolDefinition,
        ctx: ExecutionContext | None = None,
        *,
        skip: Collection[str] = (),
    ) -> RuleEvaluation:
        """Run every enabled, applicable rule not named in ``skip``."""
        if not self.enabled:
            return RuleEvaluation()

        inp = RuleInput(call=call, tool=tool, context=ctx)
        results: list[RuleResult] = []
        for rule in list(self._rules.values()):
            if not rule.enabled or rule.id in skip or not rule.applies_to(call.name):
                continue
            results.append(await self._run(rule, inp))
        return RuleEvaluation(tuple(results))

    async def _run(self, rule: Rule, inp: RuleInput) -> RuleResult:
        try:
            verdict = rule.evaluate(inp)
            if inspect.isawaitable(verdict):
                verdict = await asyncio.wait_for(verdict, timeout=self.timeout_ms / 1000)
        except TimeoutError:
            logger.warning("Rule %s timed out after %dms; allowing call", rule.id, self.timeout_ms)
            return rule.passed(f"Rule {rule.id} timed out")
        except Exception as e:
            logger.exception("Rule %s failed; allowing call", rule.id)
            return rule.passed(f"Rule evaluation error: {e}")
        return verdict

    def __len__(self) -> int:
        return len(self._rules)
