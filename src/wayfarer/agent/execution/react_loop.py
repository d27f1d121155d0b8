"""ReAct loop: Think -> Act -> Observe -> Reflect, strictly sequential.

Each iteration asks the model for the next action, runs the chosen tool
through the ToolExecutor and feeds the observation back into the message
history before the next Think call. Without that feedback the model
repeats the same tool call.

Stop conditions, checked at the top of every iteration:
- iteration budget reached                 -> max_iterations
- wall-clock budget reached                -> max_duration
- the run was already marked complete      -> (reason recorded earlier)

Inside an iteration the run also stops when the model signals completion
(agent_completed), when an LLM error maps to abort/ask_user (aborted /
ask_user) and when a reflection says not to continue (reflection_stop).

Runs that end on an unrecoverable error (an LLM error mapped to
abort/ask_user, or an exhausted iteration or time budget) skip the
summary call; their final message is the templated text for the error.

Cancellation is coarse: an in-flight LLM or tool call is never interrupted;
only its own timeout fires.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from wayfarer.agent.events.types import EventType
from wayfarer.agent.execution.completion import (
    CompletionCheck,
    CompletionConfig,
    CompletionPromise,
    CompletionStatus,
    Verifier,
)
from wayfarer.agent.execution.thinking import ThinkingEngine
from wayfarer.agent.hooks.types import StopReason
from wayfarer.agent.reliability.recovery import ErrorRecovery, RecoveryAction
from wayfarer.core.errors import (
    ErrorCode,
    error_code_of,
    execution_error,
    format_error_for_user,
    tool_error,
)
from wayfarer.core.types import (
    LlmResponse,
    Message,
    Observation,
    ProgressCallback,
    ProgressEvent,
    ProgressEventType,
    Reflection,
    ReflectionStep,
    ThinkingLevel,
    Thought,
    ThoughtAction,
    ToolCall,
    ToolDefinition,
    new_id,
)
from wayfarer.models.protocol import LlmProvider
from wayfarer.session.compactor import ContextCompactor, is_summary_message

if TYPE_CHECKING:
    from wayfarer.agent.reliability.token_tracker import TokenTracker
    from wayfarer.core.context import ExecutionContext
    from wayfarer.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)


class CompletionReason:
    """Why a run stopped."""

    AGENT_COMPLETED = "agent_completed"
    ASK_USER = "ask_user"
    MAX_ITERATIONS = "max_iterations"
    MAX_DURATION = "max_duration"
    REFLECTION_STOP = "reflection_stop"
    ABORTED = "aborted"


_STOP_REASONS: dict[str, StopReason] = {
    CompletionReason.AGENT_COMPLETED: StopReason.COMPLETE,
    CompletionReason.ASK_USER: StopReason.USER_CANCEL,
    CompletionReason.MAX_ITERATIONS: StopReason.MAX_ITERATIONS,
    CompletionReason.MAX_DURATION: StopReason.TIMEOUT,
    CompletionReason.REFLECTION_STOP: StopReason.ERROR,
    CompletionReason.ABORTED: StopReason.ERROR,
}

_COMPLETION_WORDS = re.compile(r"\b(complete|done|finished)\b", re.IGNORECASE)

_CONVERSATIONAL = (
    re.compile(r"^(sure|of course|certainly|absolutely|gladly)", re.IGNORECASE),
    re.compile(r"will (show|list|display|get|fetch)", re.IGNORECASE),
    re.compile(r"i('ll| will) (help|assist|do this)", re.IGNORECASE),
)

FINALIZE_SYSTEM_PROMPT = "You are a helpful AI assistant summarizing completed work."

CONTINUE_PROMPT = (
    "Continue with the task. Call a tool if more work is needed, "
    "or reply that the task is complete."
)


@dataclass(frozen=True, slots=True)
class ReActConfig:
    max_iterations: int = 20
    max_duration_ms: int = 300_000
    thinking_level: ThinkingLevel = ThinkingLevel.LOW
    allow_self_correction: bool = True
    enable_completion_verification: bool = True
    max_result_chars: int = 5_000


@dataclass(frozen=True, slots=True)
class ReActResult:
    """Everything a run produced."""

    success: bool
    final_message: str
    reasoning: str
    total_iterations: int
    duration_ms: int
    thoughts: tuple[Thought, ...]
    observations: tuple[Observation, ...]
    reflections: tuple[Reflection, ...]
    completion_reason: str
    completion_check: CompletionCheck | None = None
    events: tuple[ProgressEvent, ...] = ()


def _budget_error(reason: str) -> BaseException | None:
    if reason == CompletionReason.MAX_ITERATIONS:
        return execution_error(ErrorCode.EXECUTION_MAX_ITERATIONS, "Iteration budget exhausted")
    if reason == CompletionReason.MAX_DURATION:
        return execution_error(ErrorCode.EXECUTION_TIMEOUT, "Time budget exhausted")
    return None


def is_conversational(text: str) -> bool:
    """Whether a reply is a conversational preface rather than reasoning."""
    return bool(text) and any(p.search(text.strip()) for p in _CONVERSATIONAL)


def format_observation(observation: Observation, max_chars: int = 5_000) -> str:
    """Render an observation as the text the model sees next."""
    if observation.success:
        text = f"Observation: Tool '{observation.tool_name}' executed successfully.\n"
        if observation.result is not None:
            result = (
                observation.result
                if isinstance(observation.result, str)
                else json.dumps(observation.result, default=str)
            )
            suffix = "..." if len(result) > max_chars else ""
            text += f"Result: {result[:max_chars]}{suffix}\n"
    else:
        text = f"Observation: Tool execution failed.\nError: {observation.error or 'Unknown error'}\n"
    return text + f"Duration: {observation.duration_ms}ms"


class ReActLoop:
    """Drives one run to completion.

    Args:
        context: Run state and event emitter
        provider: LLM client (usually a FallbackProvider)
        executor: Runs tool calls through rules, hooks, cache and limits
        tools: Tools offered to the model
        system_prompt: Base system prompt, extended by the thinking level
        config: Budgets and behavior switches
        thinking: Thinking engine (default: one for config.thinking_level)
        completion: Completion scorer (default: CompletionPromise)
        recovery: Error recovery policy (default: ErrorRecovery)
        compactor: Context compactor; None disables compaction
        on_progress: Sync or async callback for ProgressEvents
        verifier: Optional custom completion verifier
        token_tracker: Optional usage ledger for LLM calls
    """

    def __init__(
        self,
        context: ExecutionContext,
        provider: LlmProvider,
        executor: ToolExecutor,
        tools: list[ToolDefinition] | tuple[ToolDefinition, ...],
        system_prompt: str,
        config: ReActConfig | None = None,
        *,
        thinking: ThinkingEngine | None = None,
        completion: CompletionPromise | None = None,
        recovery: ErrorRecovery | None = None,
        compactor: ContextCompactor | None = None,
        on_progress: ProgressCallback | None = None,
        verifier: Verifier | None = None,
        token_tracker: TokenTracker | None = None,
    ):
        self.context = context
        self.provider = provider
        self.executor = executor
        self.tools = tuple(tools)
        self.system_prompt = system_prompt
        self.config = config or ReActConfig()
        self.thinking = thinking or ThinkingEngine(self.config.thinking_level)
        self.completion = completion or CompletionPromise(
            CompletionConfig(enable_verification=self.config.enable_completion_verification)
        )
        self.recovery = recovery or ErrorRecovery()
        self.compactor = compactor
        self.on_progress = on_progress
        self.verifier = verifier
        self.token_tracker = token_tracker

        self._reflections: list[Reflection] = []
        self._events: list[ProgressEvent] = []
        self._conversational_prefix: str | None = None
        self._llm_failures = 0
        self._terminal_error: BaseException | None = None
        self._start = time.monotonic()

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, user_request: str, history: list[Message] | tuple[Message, ...] = ()) -> ReActResult:
        """Run the loop until a stop condition holds, then summarize."""
        self._start = time.monotonic()
        ctx = self.context
        ctx.set_tools(self.tools)
        ctx.replace_messages([
            Message(role="system", content=self.thinking.enhance_system_prompt(self.system_prompt)),
            *(m for m in history if m.role != "system" or is_summary_message(m)),
            Message(role="user", content=user_request),
        ])
        await ctx.emitter.emit(EventType.RUN_STARTED, request=user_request[:200])

        while True:
            reason = self._stop_reason()
            if reason is not None:
                if not ctx.is_complete:
                    self._terminal_error = _budget_error(reason)
                self.mark_complete(reason)
                break

            await self._maybe_compact()
            iteration = ctx.iteration + 1
            ctx.set_iteration(iteration)

            thought = await self._think(iteration)
            if ctx.is_complete:
                break

            match thought.next_action:
                case ThoughtAction.COMPLETE:
                    self.mark_complete(CompletionReason.AGENT_COMPLETED)
                    break
                case ThoughtAction.ASK_USER:
                    self.mark_complete(CompletionReason.ASK_USER)
                    break

            observation = None
            if thought.next_action is ThoughtAction.USE_TOOL and thought.tool_name:
                observation = await self._act(thought)

            reflection = await self._reflect(thought, observation)
            if reflection.satisfied or not reflection.should_continue:
                self.mark_complete(
                    CompletionReason.AGENT_COMPLETED
                    if reflection.satisfied
                    else CompletionReason.REFLECTION_STOP
                )
                break

        return await self._finish(user_request)

    def mark_complete(self, reason: str) -> None:
        """Stop the run at the next loop check. The first reason wins."""
        self.context.mark_complete(reason)

    # =========================================================================
    # Loop phases
    # =========================================================================

    def _stop_reason(self) -> str | None:
        ctx = self.context
        if ctx.iteration >= self.config.max_iterations:
            return CompletionReason.MAX_ITERATIONS
        if self._elapsed_ms() >= self.config.max_duration_ms:
            return CompletionReason.MAX_DURATION
        if ctx.is_complete:
            return ctx.completion_reason
        return None

    async def _think(self, iteration: int) -> Thought:
        ctx = self.context
        await ctx.emitter.emit(EventType.LLM_REQUEST_STARTED, iteration=iteration)
        try:
            response = await self.provider.complete(list(ctx.messages), self.tools)
        except Exception as e:
            return await self._llm_failed(iteration, e)

        self._llm_failures = 0
        self._record_usage(response)
        thinking, content = self.thinking.process(response.content)
        thinking = response.thinking or thinking
        if thinking:
            await self._progress(ProgressEventType.THINKING, content=thinking, iteration=iteration)

        thought = self._parse_thought(iteration, content, response)
        ctx.add_thought(thought)
        await ctx.emitter.emit(
            EventType.THOUGHT,
            thought_id=thought.id,
            next_action=thought.next_action.value,
            tool_name=thought.tool_name,
            confidence=thought.confidence,
        )

        if is_conversational(thought.reasoning):
            self._conversational_prefix = self._conversational_prefix or thought.reasoning
        else:
            await self._progress(
                ProgressEventType.THOUGHT,
                thought_id=thought.id,
                reasoning=thought.reasoning,
                next_action=thought.next_action.value,
                tool_name=thought.tool_name,
                iteration=iteration,
                confidence=thought.confidence,
            )

        if thought.next_action is ThoughtAction.RETRY:
            if content:
                ctx.add_message(Message(role="assistant", content=content))
            ctx.add_message(Message(role="user", content=CONTINUE_PROMPT))
        return thought

    def _parse_thought(self, iteration: int, content: str, response: LlmResponse) -> Thought:
        if response.tool_calls:
            call = response.tool_calls[0]
            return Thought(
                id=new_id("thought"),
                iteration=iteration,
                reasoning=content or f"Using tool: {call.name}",
                next_action=ThoughtAction.USE_TOOL,
                tool_name=call.name,
                tool_parameters=dict(call.parameters),
                tool_call_id=call.id,
                confidence=0.8,
            )
        complete = _COMPLETION_WORDS.search(content) is not None
        return Thought(
            id=new_id("thought"),
            iteration=iteration,
            reasoning=content or "No reasoning provided",
            next_action=ThoughtAction.COMPLETE if complete else ThoughtAction.RETRY,
            confidence=0.9 if complete else 0.5,
        )

    async def _llm_failed(self, iteration: int, error: Exception) -> Thought:
        ctx = self.context
        ctx.increment("errors")
        logger.warning("LLM call failed on iteration %d: %s", iteration, error)
        await ctx.emitter.emit(
            EventType.LLM_REQUEST_FAILED,
            iteration=iteration,
            error=str(error),
            error_code=error_code_of(error).value,
        )
        await self._progress(ProgressEventType.ERROR, error=str(error), iteration=iteration)

        thought = Thought(
            id=new_id("thought"),
            iteration=iteration,
            reasoning=f"Error generating thought: {error}",
            next_action=ThoughtAction.RETRY,
            confidence=0.3,
        )
        ctx.add_thought(thought)

        strategy = self.recovery.strategy_for(error)
        if strategy.stops_run:
            self._terminal_error = error
            self.mark_complete(
                CompletionReason.ASK_USER
                if strategy.action is RecoveryAction.ASK_USER
                else CompletionReason.ABORTED
            )
            return thought

        if strategy.action is RecoveryAction.COMPACT and self.compactor is not None:
            await self._compact(force=True)

        recovery = await self.recovery.recover(error, self._llm_failures)
        self._llm_failures += 1
        if recovery.recovered:
            await ctx.emitter.emit(
                EventType.ERROR_RECOVERED, action=recovery.action.value, attempts=recovery.attempts
            )
        else:
            self._terminal_error = error
            self.mark_complete(CompletionReason.ABORTED)
        return thought

    async def _act(self, thought: Thought) -> Observation:
        """Run the thought's tool, retrying retryable failures in place.

        Every retry is its own RETRY thought plus observation, so the
        history shows each attempt.
        """
        observation = await self._execute(thought)
        attempt = 0
        while not observation.success:
            strategy = self.recovery.strategy_for_code(observation.error_code or ErrorCode.UNKNOWN)
            if strategy.action is not RecoveryAction.RETRY or attempt >= strategy.max_attempts:
                break
            if self._elapsed_ms() >= self.config.max_duration_ms:
                break
            error = tool_error(
                observation.error_code or ErrorCode.TOOL_EXECUTION_FAILED,
                observation.tool_name or "",
                observation.error or "",
            )
            recovery = await self.recovery.recover(error, attempt)
            attempt += 1
            if not recovery.recovered:
                break

            thought = Thought(
                id=new_id("thought"),
                iteration=thought.iteration,
                reasoning=f"Retrying {thought.tool_name} (attempt {attempt + 1})",
                next_action=ThoughtAction.RETRY,
                tool_name=thought.tool_name,
                tool_parameters=thought.tool_parameters,
                tool_call_id=new_id("call"),
                confidence=0.5,
            )
            self.context.add_thought(thought)
            await self.context.emitter.emit(
                EventType.THOUGHT,
                thought_id=thought.id,
                next_action=thought.next_action.value,
                tool_name=thought.tool_name,
                confidence=thought.confidence,
            )
            observation = await self._execute(thought)
            if observation.success:
                await self.context.emitter.emit(
                    EventType.ERROR_RECOVERED, action=RecoveryAction.RETRY.value, attempts=attempt
                )
        return observation

    async def _execute(self, thought: Thought) -> Observation:
        ctx = self.context
        call = ToolCall(
            id=thought.tool_call_id or new_id("call"),
            name=thought.tool_name or "",
            parameters=dict(thought.tool_parameters or {}),
        )
        await self._progress(
            ProgressEventType.STEP_START,
            thought_id=thought.id,
            tool_name=call.name,
            parameters=call.parameters,
            iteration=thought.iteration,
        )

        result = await self.executor.execute(call, ctx)

        observation = Observation(
            id=new_id("obs"),
            thought_id=thought.id,
            tool_name=result.tool_name,
            success=result.success,
            result=result.result,
            error=result.error,
            error_code=result.error_code,
            duration_ms=result.duration_ms,
        )
        ctx.add_observation(observation)
        ctx.increment("total_steps")
        ctx.increment("successful_steps" if observation.success else "failed_steps")

        # Feed the observation back before the next Think
        ctx.add_message(Message(role="assistant", content=thought.reasoning, tool_calls=(call,)))
        ctx.add_message(Message(
            role="tool",
            content=format_observation(observation, self.config.max_result_chars),
            tool_call_id=call.id,
            name=call.name,
            metadata={"observation_id": observation.id, "tool_name": observation.tool_name},
        ))

        await ctx.emitter.emit(
            EventType.OBSERVATION,
            observation_id=observation.id,
            thought_id=thought.id,
            tool_name=observation.tool_name,
            success=observation.success,
            duration_ms=observation.duration_ms,
        )
        if observation.success:
            await self._progress(
                ProgressEventType.STEP_COMPLETE,
                tool_name=observation.tool_name,
                duration_ms=observation.duration_ms,
                cached=result.cached,
            )
        else:
            await self._progress(
                ProgressEventType.STEP_FAILED,
                tool_name=observation.tool_name,
                error=observation.error,
                blocked=result.blocked,
            )
        await self._progress(
            ProgressEventType.OBSERVATION,
            observation_id=observation.id,
            thought_id=thought.id,
            success=observation.success,
        )
        return observation

    async def _reflect(self, thought: Thought, observation: Observation | None) -> Reflection:
        if observation is None:
            complete = thought.next_action is ThoughtAction.COMPLETE
            reflection = Reflection(
                id=new_id("ref"),
                observation_id="",
                thoughts="No observation to reflect on.",
                plan_changed=False,
                satisfied=complete,
                should_continue=not complete,
                next_step=ReflectionStep.COMPLETE if complete else ReflectionStep.CONTINUE,
            )
        elif observation.success:
            reflection = Reflection(
                id=new_id("ref"),
                observation_id=observation.id,
                thoughts="Tool executed successfully.",
                plan_changed=False,
                satisfied=False,
                should_continue=True,
                next_step=ReflectionStep.CONTINUE,
            )
        else:
            correct = self.config.allow_self_correction
            reflection = Reflection(
                id=new_id("ref"),
                observation_id=observation.id,
                thoughts=f"Tool failed: {observation.error}",
                plan_changed=correct,
                satisfied=False,
                should_continue=correct,
                next_step=ReflectionStep.ADJUST_PLAN if correct else ReflectionStep.REQUEST_HELP,
            )

        self._reflections.append(reflection)
        await self.context.emitter.emit(
            EventType.REFLECTION,
            reflection_id=reflection.id,
            observation_id=reflection.observation_id,
            satisfied=reflection.satisfied,
            should_continue=reflection.should_continue,
        )
        return reflection

    # =========================================================================
    # Finish
    # =========================================================================

    async def _finish(self, user_request: str) -> ReActResult:
        ctx = self.context
        reason = ctx.completion_reason or CompletionReason.AGENT_COMPLETED

        check = await self.completion.verify(ctx.snapshot(), self.verifier)
        success = check.is_complete or (
            reason == CompletionReason.AGENT_COMPLETED
            and check.status not in (
                CompletionStatus.INCOMPLETE,
                CompletionStatus.BLOCKED,
                CompletionStatus.FAILED,
            )
        )
        if self._terminal_error is not None:
            final_message = format_error_for_user(self._terminal_error)
        else:
            final_message = await self._finalize(user_request)
        duration_ms = self._elapsed_ms()

        if self.executor.hooks is not None:
            await self.executor.hooks.run_stop(_STOP_REASONS.get(reason, StopReason.COMPLETE), ctx)

        await self._progress(
            ProgressEventType.COMPLETE,
            success=success,
            completion_reason=reason,
            confidence=check.confidence,
            iterations=ctx.iteration,
        )
        await ctx.emitter.emit(
            EventType.RUN_COMPLETED if success else EventType.RUN_ABORTED,
            completion_reason=reason,
            iterations=ctx.iteration,
            duration_ms=duration_ms,
        )
        logger.info(
            "Run %s finished: %s after %d iterations (%s, confidence %.2f)",
            ctx.run_id,
            reason,
            ctx.iteration,
            check.status.value,
            check.confidence,
        )

        return ReActResult(
            success=success,
            final_message=final_message,
            reasoning=self._reasoning_summary(reason),
            total_iterations=ctx.iteration,
            duration_ms=duration_ms,
            thoughts=ctx.thoughts,
            observations=ctx.observations,
            reflections=tuple(self._reflections),
            completion_reason=reason,
            completion_check=check,
            events=tuple(self._events),
        )

    async def _finalize(self, user_request: str) -> str:
        """One extra LLM call for the user-facing summary, or a template."""
        prompt = (
            f'User request: "{user_request[:200]}"\n\n'
            "Task execution completed. Provide a clear, natural summary of what was accomplished.\n\n"
            "Key points:\n"
            "- Be conversational and direct\n"
            "- Explain what you did\n"
            "- Keep it concise but complete"
        )
        results = self._results_digest()
        if results:
            prompt += f"\n\nResults:\n{results}"
        if self._conversational_prefix:
            prompt = f"{self._conversational_prefix}\n\n{prompt}"

        try:
            response = await self.provider.complete([
                Message(role="system", content=FINALIZE_SYSTEM_PROMPT),
                Message(role="user", content=prompt),
            ])
        except Exception as e:
            logger.warning("Finalize call failed, using template: %s", e)
            observations = self.context.observations
            succeeded = sum(1 for o in observations if o.success)
            return f"Task completed. {succeeded} actions succeeded, {len(observations) - succeeded} failed."

        self._record_usage(response)
        _, content = self.thinking.process(response.content)
        return content or "Task completed."

    def _results_digest(self) -> str:
        lines = []
        for obs in self.context.observations[-10:]:
            if obs.success:
                detail = obs.result if isinstance(obs.result, str) else json.dumps(obs.result, default=str)
                lines.append(f"- {obs.tool_name}: {detail[:500]}")
            else:
                lines.append(f"- {obs.tool_name} failed: {obs.error}")
        return "\n".join(lines)

    def _reasoning_summary(self, reason: str) -> str:
        observations = self.context.observations
        parts = [
            "## Execution Summary",
            f"- Total iterations: {self.context.iteration}",
            f"- Duration: {self._elapsed_ms()}ms",
            f"- Tools used: {sum(1 for o in observations if o.success)}",
            f"- Completion reason: {reason}",
        ]
        if observations:
            parts.append("\n## Key Actions")
            for i, obs in enumerate(observations[-5:], 1):
                parts.append(f"{i}. {obs.tool_name or 'Action'} - {'✓' if obs.success else '✗'}")
        return "\n".join(parts)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def _record_usage(self, response: LlmResponse) -> None:
        self.context.increment("llm_calls")
        if response.usage is None:
            return
        self.context.increment("token_estimate_in", response.usage.input_tokens)
        self.context.increment("token_estimate_out", response.usage.output_tokens)
        if self.token_tracker is not None:
            self.token_tracker.record(
                getattr(self.provider, "last_provider", None) or self.provider.name,
                response.model or self.provider.model,
                response.usage,
            )

    async def _maybe_compact(self) -> None:
        if self.compactor is not None and self.compactor.needs_compaction(self.context.messages):
            await self._compact(force=False)

    async def _compact(self, *, force: bool) -> None:
        assert self.compactor is not None
        result = self.compactor.compact(self.context.messages, force=force)
        if not result.compacted:
            return
        self.context.replace_messages(list(result.messages))
        await self.context.emitter.emit(
            EventType.SESSION_COMPACTED,
            folded_count=result.folded_count,
            tokens_before=result.tokens_before,
            tokens_after=result.tokens_after,
        )

    async def _progress(self, event_type: ProgressEventType, **data: Any) -> None:
        event = ProgressEvent(event_type, data)
        self._events.append(event)
        if self.on_progress is None:
            return
        try:
            outcome = self.on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Progress callback failed for %s", event_type.value)
