"""Session domain models held by the overlay session store."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Literal, Optional

from models.event_models import ActionPlan, AgentSessionV1, AgentSessionV2

RunState = Literal["idle", "planning", "executing", "done", "error"]
PipelineStep = Literal["observing", "thinking", "acting", "verifying", "done"]
LlmCallStatus = Literal["pending", "success", "error"]
ActiveMode = Literal["legacy", "v1", "v2"]

RUN_STATES = ("idle", "planning", "executing", "done", "error")


@dataclass(frozen=True)
class GoalPipelineState:
	"""Observe/think/act/verify progress for one goal, as shown in the overlay."""

	step: PipelineStep
	observation: Optional[str] = None
	action_type: Optional[str] = None
	action_params: Optional[str] = None
	action_rationale: Optional[str] = None
	action_result: Optional[Literal["success", "failed"]] = None
	action_error: Optional[str] = None
	verification: Optional[str] = None
	verified: Optional[bool] = None

	def visible_row_count(self) -> int:
		"""Header row plus one row per populated detail line."""
		rows = 1
		for value in (self.observation, self.action_type, self.action_result, self.verification):
			if value:
				rows += 1
		return rows


@dataclass(frozen=True)
class DecompositionInfo:
	"""How the runtime split a command into goals."""

	method: Literal["pattern", "llm"]
	original_command: str
	pattern_name: Optional[str] = None


@dataclass(frozen=True)
class LlmCallEntry:
	"""Debug trace of one model call, keyed by its call id."""

	id: str
	type: str
	model: str
	prompt: str
	timestamp: int
	status: LlmCallStatus = "pending"
	raw_response: Optional[str] = None
	parsed_result: Optional[Any] = None
	duration_ms: Optional[int] = None
	success: Optional[bool] = None
	error: Optional[str] = None


@dataclass(frozen=True)
class SessionSnapshot:
	"""Immutable view of everything the overlay renders.

	A new snapshot is produced for every committed mutation, so readers never
	observe a half-applied update. Maps are replaced, never edited in place.
	"""

	run_state: RunState = "idle"
	command: str = ""
	plan: Optional[ActionPlan] = None
	current_step_index: int = 0
	error: Optional[str] = None
	debug_logs: Dict[int, str] = field(default_factory=dict)
	agent_session: Optional[AgentSessionV1] = None
	goal_pipelines: Dict[str, GoalPipelineState] = field(default_factory=dict)
	decomposition_info: Optional[DecompositionInfo] = None
	agent_session_v2: Optional[AgentSessionV2] = None
	llm_calls: Dict[str, LlmCallEntry] = field(default_factory=dict)
	selected_llm_call: Optional[str] = None

	def to_dict(self) -> Dict[str, Any]:
		"""JSON-ready representation used by the REST and overlay surfaces."""
		return {
			"run_state": self.run_state,
			"command": self.command,
			"plan": self.plan.model_dump(mode="json") if self.plan else None,
			"current_step_index": self.current_step_index,
			"error": self.error,
			"debug_logs": {str(idx): text for idx, text in self.debug_logs.items()},
			"agent_session": self.agent_session.model_dump(mode="json") if self.agent_session else None,
			"goal_pipelines": {goal_id: asdict(entry) for goal_id, entry in self.goal_pipelines.items()},
			"decomposition_info": asdict(self.decomposition_info) if self.decomposition_info else None,
			"agent_session_v2": self.agent_session_v2.model_dump(mode="json") if self.agent_session_v2 else None,
			"llm_calls": {call_id: asdict(entry) for call_id, entry in self.llm_calls.items()},
			"selected_llm_call": self.selected_llm_call,
		}
