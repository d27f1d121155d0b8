"""ExecutionContext: run state plus the collaborators a run needs.

Components receive the context through their constructors or call
arguments. There is no global registry; everything a run touches is
reachable from here.

Mutations go through accessors so the invariants hold:
- every observation references a thought recorded earlier in the run
- telemetry counters never decrease
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from typing import TYPE_CHECKING

from wayfarer.agent.events.bus import EventBus, TypedEventEmitter
from wayfarer.core.errors import ErrorCode, execution_error
from wayfarer.core.types import (
    TELEMETRY_COUNTERS,
    AgentState,
    AgentTelemetry,
    ExecutionPlan,
    Message,
    Observation,
    Thought,
    ToolContext,
    ToolDefinition,
    new_id,
    now_ms,
)

if TYPE_CHECKING:
    from wayfarer.config import AgentConfig


def new_run_id() -> str:
    return new_id("run")


def new_session_id() -> str:
    return new_id("sess")


class ExecutionContext:
    """State and wiring for one agent run.

    Usage:
        ctx = ExecutionContext(new_run_id(), session_id, "user-1", config, bus)
        ctx.add_message(Message(role="user", content="hi"))
        ctx.increment("llm_calls")
        ctx.finish()
    """

    def __init__(
        self,
        run_id: str,
        session_id: str,
        user_id: str,
        config: AgentConfig,
        event_bus: EventBus | None = None,
    ):
        self.run_id = run_id
        self.session_id = session_id
        self.user_id = user_id
        self.config = config
        self.event_bus = event_bus or EventBus()
        self.emitter: TypedEventEmitter = self.event_bus.create_emitter(run_id, session_id)

        self._state = AgentState(run_id=run_id, session_id=session_id, user_id=user_id)
        self._telemetry = AgentTelemetry(run_id=run_id)
        self._thought_ids: set[str] = set()
        self._tools: dict[str, ToolDefinition] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # State
    # =========================================================================

    def snapshot(self) -> AgentState:
        """Deep copy of the run state, safe to hand out."""
        with self._lock:
            return copy.deepcopy(self._state)

    @property
    def iteration(self) -> int:
        return self._state.current_iteration

    def set_iteration(self, iteration: int) -> None:
        with self._lock:
            self._state.current_iteration = iteration

    @property
    def is_complete(self) -> bool:
        return self._state.is_complete

    @property
    def completion_reason(self) -> str | None:
        return self._state.completion_reason

    def add_message(self, message: Message) -> None:
        with self._lock:
            self._state.messages.append(message)

    def extend_messages(self, messages: list[Message]) -> None:
        with self._lock:
            self._state.messages.extend(messages)

    def replace_messages(self, messages: list[Message]) -> None:
        """Swap in a new history (used after compaction)."""
        with self._lock:
            self._state.messages = list(messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._state.messages)

    def add_thought(self, thought: Thought) -> None:
        with self._lock:
            self._state.thoughts.append(thought)
            self._thought_ids.add(thought.id)

    def add_observation(self, observation: Observation) -> None:
        """Record an observation.

        Raises:
            AgentError: EXECUTION_FAILED if the thought id is unknown.
        """
        with self._lock:
            if observation.thought_id not in self._thought_ids:
                raise execution_error(
                    ErrorCode.EXECUTION_FAILED,
                    f"Observation {observation.id} references unknown thought "
                    f"{observation.thought_id}",
                    observation_id=observation.id,
                )
            self._state.observations.append(observation)

    @property
    def thoughts(self) -> tuple[Thought, ...]:
        return tuple(self._state.thoughts)

    @property
    def observations(self) -> tuple[Observation, ...]:
        return tuple(self._state.observations)

    @property
    def plan(self) -> ExecutionPlan | None:
        return self._state.plan

    def set_plan(self, plan: ExecutionPlan | None) -> None:
        with self._lock:
            self._state.plan = plan

    def mark_complete(self, reason: str) -> None:
        """Set the completion flag. The first reason wins."""
        with self._lock:
            if not self._state.is_complete:
                self._state.is_complete = True
                self._state.completion_reason = reason

    # =========================================================================
    # Tools
    # =========================================================================

    @property
    def tools(self) -> tuple[ToolDefinition, ...]:
        return tuple(self._tools.values())

    def set_tools(self, tools: list[ToolDefinition] | tuple[ToolDefinition, ...]) -> None:
        with self._lock:
            self._tools = {t.name: t for t in tools}

    def tool_context(self) -> ToolContext:
        return ToolContext(
            user_id=self.user_id,
            run_id=self.run_id,
            session_id=self.session_id,
            iteration=self._state.current_iteration,
        )

    # =========================================================================
    # Telemetry
    # =========================================================================

    @property
    def telemetry(self) -> AgentTelemetry:
        """Copy of the counters."""
        with self._lock:
            return replace(self._telemetry)

    def increment(self, counter: str, amount: int = 1) -> None:
        """Increase a telemetry counter.

        Raises:
            ValueError: Unknown counter or negative amount.
        """
        if counter not in TELEMETRY_COUNTERS:
            raise ValueError(f"Unknown telemetry counter: {counter}")
        if amount < 0:
            raise ValueError(f"Telemetry counters cannot decrease ({counter} by {amount})")
        with self._lock:
            setattr(self._telemetry, counter, getattr(self._telemetry, counter) + amount)

    def elapsed_ms(self) -> int:
        return now_ms() - self._telemetry.start_ms

    def finish(self) -> AgentTelemetry:
        """Stamp the run duration and return the final counters."""
        with self._lock:
            self._telemetry.duration_ms = now_ms() - self._telemetry.start_ms
            return replace(self._telemetry)

    # =========================================================================
    # Children
    # =========================================================================

    def create_child(self, run_id: str | None = None) -> ExecutionContext:
        """New run in the same session, sharing config, bus and tools."""
        child = ExecutionContext(
            run_id or new_run_id(),
            self.session_id,
            self.user_id,
            self.config,
            self.event_bus,
        )
        child.set_tools(self.tools)
        return child

    def __repr__(self) -> str:
        return (
            f"ExecutionContext(run_id={self.run_id!r}, session_id={self.session_id!r}, "
            f"iteration={self._state.current_iteration})"
        )
