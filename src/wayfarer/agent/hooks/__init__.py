"""Tool-call interception: hooks and rules.

- HookManager: pre/post/stop interceptors with tagged results
- RuleEngine: declarative validators producing RuleResult records
"""

from wayfarer.agent.hooks.manager import (
    HookManager,
    cache_check_hook,
    logging_hook,
    validation_hook,
)
from wayfarer.agent.hooks.rules import (
    Rule,
    RuleEngine,
    RuleEvaluation,
    RuleInput,
    RuleResult,
    Severity,
    builtin_rules,
)
from wayfarer.agent.hooks.types import (
    Block,
    Continue,
    HookDefinition,
    HookExecution,
    HookInput,
    HookPhase,
    HookResult,
    Modify,
    PostHookOutcome,
    PreHookOutcome,
    ReplaceWith,
    SkipTool,
    StopReason,
)

__all__ = [
    # Manager
    "HookManager",
    "cache_check_hook",
    "logging_hook",
    "validation_hook",
    # Results
    "Block",
    "Continue",
    "HookResult",
    "Modify",
    "ReplaceWith",
    "SkipTool",
    # Types
    "HookDefinition",
    "HookExecution",
    "HookInput",
    "HookPhase",
    "PostHookOutcome",
    "PreHookOutcome",
    "StopReason",
    # Rules
    "Rule",
    "RuleEngine",
    "RuleEvaluation",
    "RuleInput",
    "RuleResult",
    "Severity",
    "builtin_rules",
]
