from __future__ import annotations

import logging

import pytest

from models.session_models import GoalPipelineState
from services.session.errors import EventPayloadError, ProtocolDiscriminationError, UnknownEventError
from services.session.reconciler import EventReconciler
from services.session.session_store import SessionStore
from factories import (
    goal_payload,
    legacy_plan_payload,
    llm_prompt_payload,
    llm_response_payload,
    v1_session_payload,
    v2_session_payload,
)


class FakeRuntime:
    def __init__(self, fail_with: str | None = None) -> None:
        self.fail_with = fail_with
        self.executed: list[str] = []

    async def execute_plan(self, plan) -> None:
        self.executed.append(plan.id)
        if self.fail_with:
            raise RuntimeError(self.fail_with)


def _reconciler(**store_kwargs) -> tuple[SessionStore, EventReconciler]:
    store = SessionStore(**store_kwargs)
    return store, EventReconciler(store)


def test_failed_step_reports_one_based_step_number() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("plan_ready", legacy_plan_payload(step_count=3))
    plan = store.snapshot.plan

    reconciler.apply("step_started", {"stepIndex": 0, "debug": "open -a Safari"})
    reconciler.apply("step_completed", {"stepIndex": 0, "success": True})
    reconciler.apply("step_started", {"stepIndex": 1, "debug": "type: 'hello'"})
    reconciler.apply("step_completed", {"stepIndex": 1, "success": False})

    snapshot = store.snapshot
    assert snapshot.run_state == "error"
    assert snapshot.error == "Step 2 failed"
    assert snapshot.plan == plan
    assert snapshot.current_step_index == 1
    assert snapshot.debug_logs == {0: "open -a Safari", 1: "type: 'hello'"}


def test_plan_ready_without_runtime_still_enters_executing(caplog) -> None:
    store, reconciler = _reconciler()

    with caplog.at_level(logging.WARNING):
        reconciler.apply("plan_ready", legacy_plan_payload())

    assert store.snapshot.run_state == "executing"
    assert "will not be executed" in caplog.text


def test_execution_done_maps_success_and_default_failure_message() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("execution_done", {"success": True})
    assert store.snapshot.run_state == "done"

    reconciler.apply("execution_done", {"success": False})
    assert store.snapshot.run_state == "error"
    assert store.snapshot.error == "Execution failed"

    reconciler.apply("execution_done", {"success": False, "message": "Execution cancelled"})
    assert store.snapshot.error == "Execution cancelled"


def test_error_events_carry_their_message() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("error", {"message": "LLM unreachable"})
    assert store.snapshot.error == "LLM unreachable"

    reconciler.apply("agent_error", {"message": "too many actions"})
    assert store.snapshot.error == "too many actions"

    reconciler.apply("agent_failed", {"message": "could not find button"})
    assert store.snapshot.error == "could not find button"
    assert store.snapshot.run_state == "error"


def test_completion_events_set_done() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("session_complete", {})
    assert store.snapshot.run_state == "done"

    store.reset()
    reconciler.apply("agent_done", "Opened Safari")
    assert store.snapshot.run_state == "done"


def test_v2_session_never_populates_goal_based_state() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("agent_session", v2_session_payload(state="executing"))

    snapshot = store.snapshot
    assert snapshot.agent_session_v2 is not None
    assert snapshot.agent_session_v2.task == "open safari"
    assert snapshot.agent_session is None
    assert snapshot.goal_pipelines == {}
    assert snapshot.run_state == "executing"


def test_v1_session_never_populates_tool_based_state() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("agent_session", v1_session_payload(state="thinking"))

    snapshot = store.snapshot
    assert snapshot.agent_session is not None
    assert snapshot.agent_session_v2 is None
    assert snapshot.goal_pipelines["g0"].step == "thinking"


@pytest.mark.parametrize(
    ("state", "run_state"),
    [("planning", "planning"), ("executing", "executing"), ("done", "done"), ("failed", "error")],
)
def test_v2_state_projects_onto_run_state(state: str, run_state: str) -> None:
    store, reconciler = _reconciler()

    reconciler.apply("agent_session", v2_session_payload(state=state, error="gave up"))

    assert store.snapshot.run_state == run_state


def test_v2_idle_state_leaves_run_state_alone() -> None:
    store, reconciler = _reconciler()
    store.set_run_state("planning")

    reconciler.apply("agent_session", v2_session_payload(state="idle"))

    assert store.snapshot.run_state == "planning"


def test_discrimination_runs_on_every_event() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload(state="acting"))

    reconciler.apply("agent_session", v2_session_payload(state="planning"))

    assert store.snapshot.agent_session_v2 is not None
    assert store.snapshot.agent_session.state == "acting"


def test_undiscriminable_session_is_rejected_without_mutation() -> None:
    store, reconciler = _reconciler()
    before = store.snapshot

    with pytest.raises(ProtocolDiscriminationError):
        reconciler.apply("agent_session", {"id": "x", "state": "idle"})

    assert store.snapshot is before


@pytest.mark.parametrize(
    ("state", "step"),
    [
        ("observing", "observing"),
        ("thinking", "thinking"),
        ("acting", "acting"),
        ("verifying", "verifying"),
        ("complete", "done"),
    ],
)
def test_v1_state_projects_onto_cursor_goal_pipeline(state: str, step: str) -> None:
    store, reconciler = _reconciler()

    reconciler.apply("agent_session", v1_session_payload(state=state, current_goal_index=1))

    assert store.snapshot.goal_pipelines["g1"].step == step
    assert "g0" not in store.snapshot.goal_pipelines


def test_v1_unmapped_state_leaves_pipeline_untouched() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload(state="acting"))

    reconciler.apply("agent_session", v1_session_payload(state="decomposing"))

    assert store.snapshot.goal_pipelines["g0"].step == "acting"


def test_v1_terminal_states_project_onto_run_state() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload(state="complete"))
    assert store.snapshot.run_state == "done"

    reconciler.apply("agent_session", v1_session_payload(state="error", error="goal failed"))
    assert store.snapshot.run_state == "error"
    assert store.snapshot.error == "goal failed"


def test_goal_pipeline_scenario_from_observation_to_planned_action() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload([goal_payload("g0", "in_progress")]))

    reconciler.apply("goal_started", {"goalIndex": 0})
    reconciler.apply("observation", {"description": "Safari window open", "timestamp": 1})
    reconciler.apply(
        "action_planned",
        {"id": "a1", "action_type": "open_app", "params": {"app_name": "Safari"}, "rationale": "launch"},
    )

    assert store.snapshot.goal_pipelines["g0"] == GoalPipelineState(
        step="acting",
        observation="Safari window open",
        action_type="open_app",
        action_params="Safari",
        action_rationale="launch",
    )


def test_goal_started_clears_every_pipeline_field() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload())
    reconciler.apply("observation", {"description": "desktop"})
    reconciler.apply("action_planned", {"action_type": "type_text", "params": {"text": "hi"}, "rationale": "r"})
    reconciler.apply("action_completed", {"success": False, "error_message": "no focus"})
    reconciler.apply("verification", {"goal_achieved": False, "observation": "nothing typed"})

    reconciler.apply("goal_started", {"goalIndex": 0})

    assert store.snapshot.goal_pipelines["g0"] == GoalPipelineState(step="observing")


def test_goal_started_for_unknown_index_is_ignored() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload())
    before = store.snapshot

    reconciler.apply("goal_started", {"goalIndex": 9})

    assert store.snapshot is before


def test_pipeline_events_without_a_session_are_ignored() -> None:
    store, reconciler = _reconciler()
    before = store.snapshot

    reconciler.apply("goal_started", {"goalIndex": 0})
    reconciler.apply("observation", {"description": "desktop"})
    reconciler.apply("action_completed", {"success": True})

    assert store.snapshot is before


def test_action_completed_and_verification_merge_their_own_fields() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload())
    reconciler.apply("goal_started", {"goalIndex": 0})

    reconciler.apply("action_completed", {"action_id": "a1", "success": False, "error_message": "missed"})
    assert store.snapshot.goal_pipelines["g0"].step == "verifying"
    assert store.snapshot.goal_pipelines["g0"].action_result == "failed"
    assert store.snapshot.goal_pipelines["g0"].action_error == "missed"

    reconciler.apply("verification", {"goal_achieved": True, "observation": "Safari is frontmost"})
    pipeline = store.snapshot.goal_pipelines["g0"]
    assert pipeline.step == "verifying"
    assert pipeline.verification == "Safari is frontmost"
    assert pipeline.verified is True


def test_explicit_goal_reference_wins_over_stale_cursor() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload(current_goal_index=1))

    reconciler.apply("action_completed", {"success": True, "goal_id": "g0"})
    reconciler.apply("observation", {"description": "later", "goalIndex": 0})
    reconciler.apply("verification", {"goal_id": "unknown", "goal_achieved": True, "observation": "x"})

    assert store.snapshot.goal_pipelines["g0"].action_result == "success"
    assert store.snapshot.goal_pipelines["g0"].observation == "later"
    assert store.snapshot.goal_pipelines["g0"].verification is None
    assert store.snapshot.goal_pipelines["g1"].step == "observing"


def test_goal_completed_marks_pipeline_done() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload())
    reconciler.apply("goal_started", {"goalIndex": 0})

    reconciler.apply("goal_completed", {"goalIndex": 0})

    assert store.snapshot.goal_pipelines["g0"].step == "done"


def test_decomposition_sets_info_and_goals_ready_changes_nothing() -> None:
    store, reconciler = _reconciler()

    reconciler.apply(
        "decomposition",
        {"method": "pattern", "pattern_name": "open_and_type", "original_command": "open notes and type hi"},
    )
    after_decomposition = store.snapshot
    reconciler.apply("goals_ready", [goal_payload("g0")])

    assert after_decomposition.decomposition_info.pattern_name == "open_and_type"
    assert store.snapshot is after_decomposition


def test_tool_result_does_not_mutate_state() -> None:
    store, reconciler = _reconciler()
    before = store.snapshot

    reconciler.apply("tool_result", {"tool": "click", "success": True, "output": {"type": "ack"}})

    assert store.snapshot is before


def test_mismatched_llm_response_leaves_prompt_pending() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("llm_prompt", llm_prompt_payload("c1"))
    reconciler.apply("llm_response", llm_response_payload("c2"))

    assert list(store.snapshot.llm_calls) == ["c1"]
    assert store.snapshot.llm_calls["c1"].status == "pending"


def test_llm_prompt_and_response_pair_up() -> None:
    store, reconciler = _reconciler()

    reconciler.apply("llm_prompt", llm_prompt_payload("c1"))
    reconciler.apply("llm_response", llm_response_payload("c1", success=False))

    entry = store.snapshot.llm_calls["c1"]
    assert entry.status == "error"
    assert entry.error == "bad json"
    assert entry.duration_ms == 120


def test_unknown_event_is_rejected() -> None:
    _, reconciler = _reconciler()

    with pytest.raises(UnknownEventError):
        reconciler.apply("teleport", {})


def test_invalid_payload_is_rejected_without_mutation() -> None:
    store, reconciler = _reconciler()
    before = store.snapshot

    with pytest.raises(EventPayloadError, match="step_completed"):
        reconciler.apply("step_completed", {"stepIndex": "first"})

    assert store.snapshot is before


@pytest.mark.asyncio
async def test_plan_execution_failure_surfaces_as_error() -> None:
    store = SessionStore()
    runtime = FakeRuntime(fail_with="Accessibility permission denied")
    reconciler = EventReconciler(store, runtime=runtime)

    reconciler.apply("plan_ready", legacy_plan_payload())
    assert store.snapshot.run_state == "executing"
    await reconciler.drain()

    assert runtime.executed == ["plan-1"]
    assert store.snapshot.run_state == "error"
    assert store.snapshot.error == "Accessibility permission denied"


@pytest.mark.asyncio
async def test_successful_plan_execution_leaves_state_to_events() -> None:
    store = SessionStore()
    reconciler = EventReconciler(store, runtime=FakeRuntime())

    reconciler.apply("plan_ready", legacy_plan_payload())
    await reconciler.drain()

    assert store.snapshot.run_state == "executing"
    assert store.snapshot.error is None


def test_stale_session_cannot_move_goals_backward_or_exceed_attempts() -> None:
    store, reconciler = _reconciler()
    reconciler.apply("agent_session", v1_session_payload([goal_payload("g0", "completed", attempts=2)]))

    reconciler.apply(
        "agent_session",
        v1_session_payload([goal_payload("g0", "pending", attempts=9, max_attempts=3)]),
    )

    goal = store.snapshot.agent_session.goals[0]
    assert goal.status == "completed"
    assert goal.attempts == 3
