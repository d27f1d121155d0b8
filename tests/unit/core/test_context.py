"""Tests for ExecutionContext and core value types."""

import pytest

from wayfarer.agent.events.bus import EventBus
from wayfarer.agent.events.types import AgentEvent, EventType
from wayfarer.core.context import ExecutionContext, new_run_id, new_session_id
from wayfarer.core.errors import AgentError, ErrorCode
from wayfarer.core.types import (
    ExecutionPlan,
    Message,
    Observation,
    PlanStep,
    PlanStepStatus,
    Thought,
    ThoughtAction,
    ToolCall,
    ToolParameterSchema,
)


def _thought(tid: str = "th_1", iteration: int = 1) -> Thought:
    return Thought(id=tid, iteration=iteration, reasoning="r", next_action=ThoughtAction.USE_TOOL, tool_name="t")


# =============================================================================
# Value types
# =============================================================================


class TestValueTypes:
    """Tests for messages, plans and schemas."""

    def test_message_to_dict_omits_empty_fields(self) -> None:
        """Only populated optional fields are serialized."""
        assert Message(role="user", content="hi").to_dict() == {"role": "user", "content": "hi"}

    def test_message_with_tool_calls(self) -> None:
        """Tool calls serialize with id, name and parameters."""
        msg = Message(role="assistant", tool_calls=(ToolCall("c1", "search", {"q": "x"}),))
        assert msg.to_dict()["tool_calls"] == [{"id": "c1", "name": "search", "parameters": {"q": "x"}}]

    def test_plan_completed_ratio(self) -> None:
        """completed_ratio counts COMPLETED steps only."""
        plan = ExecutionPlan("p", "goal", [
            PlanStep("1", "a", status=PlanStepStatus.COMPLETED),
            PlanStep("2", "b", status=PlanStepStatus.FAILED),
            PlanStep("3", "c"),
            PlanStep("4", "d", status=PlanStepStatus.IN_PROGRESS),
        ])
        assert plan.completed_ratio == 0.25
        assert [s.id for s in plan.pending_steps] == ["3", "4"]

    def test_empty_plan_ratio(self) -> None:
        """An empty plan has ratio 0."""
        assert ExecutionPlan("p", "goal").completed_ratio == 0.0

    def test_parameter_schema(self) -> None:
        """to_json_schema produces an object schema."""
        schema = ToolParameterSchema({"q": {"type": "string"}}, ("q",)).to_json_schema()
        assert schema == {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}

    def test_ids_are_prefixed_and_unique(self) -> None:
        """Generated ids carry their prefix."""
        assert new_run_id().startswith("run_")
        assert new_session_id().startswith("sess_")
        assert new_run_id() != new_run_id()


# =============================================================================
# ExecutionContext
# =============================================================================


class TestExecutionContext:
    """Tests for run state accessors and invariants."""

    def test_observation_requires_known_thought(self, context: ExecutionContext) -> None:
        """An observation for an unrecorded thought is rejected."""
        with pytest.raises(AgentError) as exc_info:
            context.add_observation(Observation("ob_1", "th_missing", "t", True))
        assert exc_info.value.code is ErrorCode.EXECUTION_FAILED
        assert context.observations == ()

    def test_observation_after_thought(self, context: ExecutionContext) -> None:
        """Observations referencing recorded thoughts are kept in order."""
        context.add_thought(_thought())
        context.add_observation(Observation("ob_1", "th_1", "t", True))
        assert [o.id for o in context.observations] == ["ob_1"]

    def test_increment_counters(self, context: ExecutionContext) -> None:
        """Counters accumulate."""
        context.increment("llm_calls")
        context.increment("token_estimate_in", 120)
        telemetry = context.telemetry
        assert telemetry.llm_calls == 1
        assert telemetry.token_estimate_in == 120

    def test_counters_never_decrease(self, context: ExecutionContext) -> None:
        """Negative amounts and unknown counters are rejected."""
        with pytest.raises(ValueError):
            context.increment("errors", -1)
        with pytest.raises(ValueError):
            context.increment("not_a_counter")

    def test_telemetry_is_a_copy(self, context: ExecutionContext) -> None:
        """Mutating the returned telemetry does not affect the run."""
        snapshot = context.telemetry
        snapshot.errors = 99
        assert context.telemetry.errors == 0

    def test_snapshot_is_deep(self, context: ExecutionContext) -> None:
        """Snapshots do not alias live state."""
        context.add_message(Message(role="user", content="hi"))
        state = context.snapshot()
        state.messages.clear()
        assert len(context.messages) == 1

    def test_first_completion_reason_wins(self, context: ExecutionContext) -> None:
        """mark_complete keeps the first reason."""
        context.mark_complete("agent_completed")
        context.mark_complete("max_iterations")
        assert context.is_complete
        assert context.completion_reason == "agent_completed"

    def test_finish_stamps_duration(self, context: ExecutionContext) -> None:
        """finish() records a non-negative duration."""
        assert context.finish().duration_ms >= 0

    def test_tool_context_carries_identity(self, context: ExecutionContext) -> None:
        """Tool bodies see user, run, session and iteration."""
        context.set_iteration(3)
        tool_ctx = context.tool_context()
        assert (tool_ctx.user_id, tool_ctx.run_id, tool_ctx.session_id, tool_ctx.iteration) == (
            "user-1", "run_test", "sess_test", 3,
        )

    def test_create_child_shares_session_and_bus(self, context: ExecutionContext) -> None:
        """Children get a new run in the same session."""
        context.set_tools([])
        child = context.create_child()
        assert child.session_id == context.session_id
        assert child.run_id != context.run_id
        assert child.event_bus is context.event_bus

    @pytest.mark.asyncio
    async def test_emitter_stamps_run_and_session(self, context: ExecutionContext, event_bus: EventBus) -> None:
        """Events emitted through the context carry its identity."""
        received: list[AgentEvent] = []
        event_bus.on(EventType.RUN_STARTED, received.append)
        await context.emitter.emit(EventType.RUN_STARTED, request="hi")
        assert received[0].run_id == "run_test"
        assert received[0].session_id == "sess_test"
        assert received[0].data == {"request": "hi"}
