"""Single-writer in-memory store for the overlay session state."""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Callable, Dict, List, Optional

from models.event_models import ActionPlan, AgentSessionV1, AgentSessionV2, Goal
from models.session_models import (
	RUN_STATES,
	ActiveMode,
	DecompositionInfo,
	GoalPipelineState,
	LlmCallEntry,
	RunState,
	SessionSnapshot,
)

logger = logging.getLogger(__name__)

Observer = Callable[[SessionSnapshot, SessionSnapshot], None]

_GOAL_STATUS_RANK = {"pending": 0, "in_progress": 1, "completed": 2, "failed": 2}


class SessionStore:
	"""Hold the current session snapshot and apply controlled mutations.

	Each mutation either commits a new snapshot and notifies every observer
	before returning, or changes nothing and notifies nobody.
	"""

	def __init__(self, *, use_agent_mode: bool = True, use_agent_v2: bool = True) -> None:
		self.use_agent_mode = use_agent_mode
		self.use_agent_v2 = use_agent_v2
		self._snapshot = SessionSnapshot()
		self._observers: List[Observer] = []
		self._committing = False

	@property
	def snapshot(self) -> SessionSnapshot:
		"""Return the latest committed snapshot."""
		return self._snapshot

	@property
	def active_mode(self) -> ActiveMode:
		"""Return which protocol interpretation the overlay should render."""
		return active_mode_for(
			self._snapshot, use_agent_mode=self.use_agent_mode, use_agent_v2=self.use_agent_v2
		)

	def subscribe(self, observer: Observer) -> Callable[[], None]:
		"""Register an observer called with (snapshot, previous) after each commit."""
		self._observers.append(observer)

		def unsubscribe() -> None:
			if observer in self._observers:
				self._observers.remove(observer)

		return unsubscribe

	# -- legacy plan --------------------------------------------------------

	def set_command(self, command: str) -> bool:
		"""Remember the command text the user submitted."""
		return self._commit(command=command)

	def set_plan(self, plan: ActionPlan) -> bool:
		"""Replace the legacy plan; a different plan restarts the step cursor and debug text."""
		if self._snapshot.plan == plan:
			return False
		return self._commit(plan=plan, current_step_index=0, debug_logs={})

	def set_step_index(self, index: int) -> bool:
		"""Move the legacy step cursor."""
		return self._commit(current_step_index=index)

	def set_debug_log(self, index: int, text: str) -> bool:
		"""Attach diagnostic text to one legacy step."""
		if self._snapshot.debug_logs.get(index) == text:
			return False
		return self._commit(debug_logs={**self._snapshot.debug_logs, index: text})

	def set_run_state(self, state: RunState) -> bool:
		"""Set the unified run-state."""
		if state not in RUN_STATES:
			raise ValueError(f"Unknown run state: {state}")
		return self._commit(run_state=state)

	def set_error(self, message: str) -> bool:
		"""Record an error message and force the run-state to error."""
		return self._commit(error=message, run_state="error")

	def reset(self) -> bool:
		"""Clear every session-scoped field and return to idle."""
		defaults = SessionSnapshot()
		return self._commit(**{f.name: getattr(defaults, f.name) for f in fields(SessionSnapshot)})

	# -- goal-based sessions (v1) -----------------------------------------------

	def set_agent_session(self, session: AgentSessionV1) -> bool:
		"""Replace the goal-based session, keeping goal status forward-only and attempts bounded.

		Status is compared against the previous snapshot of the same session id; a
		session with a new id replaces the old one without comparison.
		"""
		return self._commit(agent_session=_settle_goals(self._snapshot.agent_session, session))

	def merge_goal_pipeline(self, goal_id: str, **updates: Any) -> bool:
		"""Shallow-merge pipeline fields into a goal's entry, creating it if needed."""
		existing = self._snapshot.goal_pipelines.get(goal_id)
		if existing is None:
			merged = GoalPipelineState(**{"step": "observing", **updates})
		else:
			merged = replace(existing, **updates)
		return self._put_pipeline(goal_id, merged)

	def replace_goal_pipeline(self, goal_id: str, entry: GoalPipelineState) -> bool:
		"""Overwrite a goal's pipeline entry; no previous field survives."""
		return self._put_pipeline(goal_id, entry)

	def set_decomposition_info(self, info: DecompositionInfo) -> bool:
		"""Record how the command was decomposed; written once per session."""
		current = self._snapshot.decomposition_info
		if current is not None and current != info:
			logger.debug("Decomposition info already set for this session; ignoring %s", info)
			return False
		return self._commit(decomposition_info=info)

	# -- tool-based sessions (v2) -----------------------------------------------

	def set_agent_session_v2(self, session: AgentSessionV2) -> bool:
		"""Replace the tool-based session wholesale."""
		return self._commit(agent_session_v2=session)

	# -- LLM debug trace ------------------------------------------------------

	def add_llm_prompt(self, entry: LlmCallEntry) -> bool:
		"""Insert a pending call entry, overwriting any entry with the same id."""
		if self._snapshot.llm_calls.get(entry.id) == entry:
			return False
		return self._commit(llm_calls={**self._snapshot.llm_calls, entry.id: entry})

	def add_llm_response(
		self,
		call_id: str,
		*,
		raw_response: str,
		parsed_result: Any = None,
		duration_ms: int = 0,
		success: bool,
		error: Optional[str] = None,
	) -> bool:
		"""Complete a pending call entry; unknown call ids are dropped."""
		existing = self._snapshot.llm_calls.get(call_id)
		if existing is None:
			return False
		updated = replace(
			existing,
			raw_response=raw_response,
			parsed_result=parsed_result,
			duration_ms=duration_ms,
			success=success,
			error=error,
			status="success" if success else "error",
		)
		if updated == existing:
			return False
		return self._commit(llm_calls={**self._snapshot.llm_calls, call_id: updated})

	def select_llm_call(self, call_id: Optional[str]) -> bool:
		"""Point the debug view at one call, or clear the selection."""
		return self._commit(selected_llm_call=call_id)

	def clear_llm_calls(self) -> bool:
		"""Drop every call entry and the selection."""
		return self._commit(llm_calls={}, selected_llm_call=None)

	# -- internals ----------------------------------------------------------------

	def _put_pipeline(self, goal_id: str, entry: GoalPipelineState) -> bool:
		if self._snapshot.goal_pipelines.get(goal_id) == entry:
			return False
		return self._commit(goal_pipelines={**self._snapshot.goal_pipelines, goal_id: entry})

	def _commit(self, **changes: Any) -> bool:
		if self._committing:
			raise RuntimeError("SessionStore mutated from inside an observer callback")
		previous = self._snapshot
		if all(getattr(previous, name) == value for name, value in changes.items()):
			return False
		self._snapshot = replace(previous, **changes)
		self._committing = True
		try:
			for observer in list(self._observers):
				try:
					observer(self._snapshot, previous)
				except Exception:
					logger.exception("Session observer %r failed", observer)
		finally:
			self._committing = False
		return True


def active_mode_for(snapshot: SessionSnapshot, *, use_agent_mode: bool, use_agent_v2: bool) -> ActiveMode:
	"""Pick exactly one interpretation from configuration plus which sessions exist."""
	if use_agent_v2 and snapshot.agent_session_v2 is not None:
		return "v2"
	if use_agent_mode and snapshot.agent_session is not None:
		return "v1"
	return "legacy"


def _is_forward_transition(current: str, new: str) -> bool:
	if current == new:
		return True
	if _GOAL_STATUS_RANK[current] == 2:
		return False
	return _GOAL_STATUS_RANK[new] > _GOAL_STATUS_RANK[current]


def _settle_goals(previous: Optional[AgentSessionV1], incoming: AgentSessionV1) -> AgentSessionV1:
	known: Dict[str, Goal] = {}
	if previous is not None and previous.id == incoming.id:
		known = {goal.id: goal for goal in previous.goals}
	goals: List[Goal] = []
	changed = False
	for goal in incoming.goals:
		updates: Dict[str, Any] = {}
		current = known.get(goal.id)
		if current is not None and not _is_forward_transition(current.status, goal.status):
			logger.warning(
				"Ignoring backward goal transition %s -> %s for goal %s", current.status, goal.status, goal.id
			)
			updates["status"] = current.status
		if goal.attempts > goal.max_attempts:
			updates["attempts"] = goal.max_attempts
		if updates:
			goal = goal.model_copy(update=updates)
			changed = True
		goals.append(goal)
	return incoming.model_copy(update={"goals": goals}) if changed else incoming
