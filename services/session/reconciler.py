"""Translate agent runtime events into session store mutations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple, Type

from pydantic import BaseModel, ValidationError

from models.event_models import (
	ActionPlan,
	ActionResult,
	AgentSessionV1,
	AgentSessionV2,
	AtomicAction,
	DecompositionEvent,
	EmptyEvent,
	ExecutionDoneEvent,
	GoalIndexEvent,
	LlmPromptEvent,
	LlmResponseEvent,
	MessageEvent,
	ScreenState,
	StepCompletedEvent,
	StepStartedEvent,
	ToolResultEvent,
	VerificationResult,
)
from models.session_models import DecompositionInfo, GoalPipelineState, LlmCallEntry
from services.runtime.runtime_channel import AgentRuntime
from services.session.action_format import format_action_params
from services.session.errors import EventPayloadError, UnknownEventError
from services.session.layout import LayoutScheduler
from services.session.protocol import classify_agent_session
from services.session.session_store import SessionStore

logger = logging.getLogger(__name__)

AGENT_STATE_TO_STEP = {
	"observing": "observing",
	"thinking": "thinking",
	"acting": "acting",
	"verifying": "verifying",
	"complete": "done",
}

V2_STATE_TO_RUN_STATE = {
	"planning": "planning",
	"executing": "executing",
	"done": "done",
}

Parser = Callable[[Any], Any]
Handler = Callable[[Any], None]


def _model_parser(event_name: str, model: Type[BaseModel]) -> Parser:
	def parse(payload: Any) -> BaseModel:
		try:
			return model.model_validate(payload if payload is not None else {})
		except ValidationError as exc:
			raise EventPayloadError(event_name, str(exc)) from exc

	return parse


class EventReconciler:
	"""Apply each inbound runtime event as the smallest store mutation it implies.

	Every handler only touches the fields its own event owns, so events of
	different names may arrive in any relative order without clobbering each
	other. Handlers are synchronous; the only asynchronous work is plan
	execution, which runs as a tracked background task.
	"""

	def __init__(
		self,
		store: SessionStore,
		runtime: Optional[AgentRuntime] = None,
		layout: Optional[LayoutScheduler] = None,
	) -> None:
		self.store = store
		self.runtime = runtime
		self.layout = layout
		self._tasks: Set[asyncio.Task] = set()
		self._handlers: Dict[str, Tuple[Parser, Handler]] = {}
		self._register("plan_ready", ActionPlan, self._on_plan_ready)
		self._register("step_started", StepStartedEvent, self._on_step_started)
		self._register("step_completed", StepCompletedEvent, self._on_step_completed)
		self._register("execution_done", ExecutionDoneEvent, self._on_execution_done)
		self._register("error", MessageEvent, self._on_error)
		self._register("decomposition", DecompositionEvent, self._on_decomposition)
		self._register("goals_ready", None, self._on_goals_ready)
		self._handlers["agent_session"] = (classify_agent_session, self._on_agent_session)
		self._register("goal_started", GoalIndexEvent, self._on_goal_started)
		self._register("goal_completed", GoalIndexEvent, self._on_goal_completed)
		self._register("observation", ScreenState, self._on_observation)
		self._register("action_planned", AtomicAction, self._on_action_planned)
		self._register("action_completed", ActionResult, self._on_action_completed)
		self._register("verification", VerificationResult, self._on_verification)
		self._register("session_complete", EmptyEvent, self._on_done)
		self._register("agent_error", MessageEvent, self._on_error)
		self._register("agent_done", MessageEvent, self._on_done)
		self._register("agent_failed", MessageEvent, self._on_agent_failed)
		self._register("tool_result", ToolResultEvent, self._on_tool_result)
		self._register("llm_prompt", LlmPromptEvent, self._on_llm_prompt)
		self._register("llm_response", LlmResponseEvent, self._on_llm_response)

	@property
	def event_names(self) -> Tuple[str, ...]:
		return tuple(self._handlers)

	def apply(self, event_name: str, payload: Any) -> None:
		"""Validate one event payload and apply it to the store."""
		entry = self._handlers.get(event_name)
		if entry is None:
			raise UnknownEventError(f"Unsupported event: {event_name}")
		parse, handle = entry
		parsed = parse(payload)
		logger.debug("Reconciling %s", event_name)
		handle(parsed)

	async def drain(self) -> None:
		"""Wait for background runtime work started by events to finish."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	def _register(self, event_name: str, model: Optional[Type[BaseModel]], handler: Handler) -> None:
		# Payload-free events still accept whatever the runtime sends (e.g. a goal list).
		parser: Parser = _model_parser(event_name, model) if model is not None else (lambda payload: payload)
		self._handlers[event_name] = (parser, handler)

	# -- legacy plan --------------------------------------------------------

	def _on_plan_ready(self, plan: ActionPlan) -> None:
		self.store.set_plan(plan)
		self.store.set_run_state("executing")
		if self.runtime is None:
			logger.warning("No agent runtime configured; plan %s will not be executed", plan.id)
			return
		self._spawn(self._execute_plan(plan))

	async def _execute_plan(self, plan: ActionPlan) -> None:
		try:
			await self.runtime.execute_plan(plan)
		except Exception as exc:
			logger.error("Plan %s execution failed: %s", plan.id, exc)
			self.store.set_error(str(exc))

	def _on_step_started(self, event: StepStartedEvent) -> None:
		self.store.set_step_index(event.step_index)
		self.store.set_debug_log(event.step_index, event.debug)

	def _on_step_completed(self, event: StepCompletedEvent) -> None:
		if not event.success:
			self.store.set_error(f"Step {event.step_index + 1} failed")

	def _on_execution_done(self, event: ExecutionDoneEvent) -> None:
		if event.success:
			self.store.set_run_state("done")
		else:
			self.store.set_error(event.message or "Execution failed")

	def _on_error(self, event: MessageEvent) -> None:
		self.store.set_error(event.message or "Unknown error")

	def _on_done(self, _event: Any) -> None:
		self.store.set_run_state("done")

	def _on_agent_failed(self, event: MessageEvent) -> None:
		self.store.set_error(event.message or "Agent failed")

	# -- agent sessions ---------------------------------------------------------

	def _on_agent_session(self, session: Any) -> None:
		if isinstance(session, AgentSessionV2):
			self._apply_session_v2(session)
		else:
			self._apply_session_v1(session)

	def _apply_session_v2(self, session: AgentSessionV2) -> None:
		self.store.set_agent_session_v2(session)
		if session.state == "failed":
			self.store.set_error(session.error or "Agent failed")
			return
		run_state = V2_STATE_TO_RUN_STATE.get(session.state)
		if run_state is not None:
			self.store.set_run_state(run_state)

	def _apply_session_v1(self, session: AgentSessionV1) -> None:
		self.store.set_agent_session(session)
		goal = session.goal_at(session.current_goal_index)
		step = AGENT_STATE_TO_STEP.get(session.state)
		if goal is not None and step is not None:
			self.store.merge_goal_pipeline(goal.id, step=step)
		if session.state == "complete":
			self.store.set_run_state("done")
		elif session.state == "error":
			if session.error:
				self.store.set_error(session.error)
			else:
				self.store.set_run_state("error")

	def _on_decomposition(self, event: DecompositionEvent) -> None:
		self.store.set_decomposition_info(
			DecompositionInfo(
				method=event.method,
				original_command=event.original_command,
				pattern_name=event.pattern_name,
			)
		)

	def _on_goals_ready(self, _payload: Any) -> None:
		# Goals arrive inside the next agent_session; only the window needs a refresh.
		if self.layout is not None:
			self.layout.request()

	# -- goal pipeline ------------------------------------------------------------

	def _resolve_goal_id(self, goal_id: Optional[str] = None, goal_index: Optional[int] = None) -> Optional[str]:
		"""Prefer an explicit goal reference; fall back to the session cursor."""
		session = self.store.snapshot.agent_session
		if session is None:
			return None
		if goal_id is not None:
			return goal_id if session.goal_by_id(goal_id) is not None else None
		index = goal_index if goal_index is not None else session.current_goal_index
		goal = session.goal_at(index)
		return goal.id if goal is not None else None

	def _on_goal_started(self, event: GoalIndexEvent) -> None:
		goal_id = self._resolve_goal_id(goal_index=event.goal_index)
		if goal_id is None:
			logger.debug("goal_started for unknown goal index %s", event.goal_index)
			return
		self.store.replace_goal_pipeline(goal_id, GoalPipelineState(step="observing"))

	def _on_goal_completed(self, event: GoalIndexEvent) -> None:
		goal_id = self._resolve_goal_id(goal_index=event.goal_index)
		if goal_id is not None:
			self.store.merge_goal_pipeline(goal_id, step="done")

	def _on_observation(self, event: ScreenState) -> None:
		goal_id = self._resolve_goal_id(event.goal_id, event.goal_index)
		if goal_id is not None:
			self.store.merge_goal_pipeline(goal_id, step="thinking", observation=event.description)

	def _on_action_planned(self, event: AtomicAction) -> None:
		goal_id = self._resolve_goal_id(event.goal_id, event.goal_index)
		if goal_id is None:
			return
		self.store.merge_goal_pipeline(
			goal_id,
			step="acting",
			action_type=event.action_type,
			action_params=format_action_params(event.params),
			action_rationale=event.rationale,
		)

	def _on_action_completed(self, event: ActionResult) -> None:
		goal_id = self._resolve_goal_id(event.goal_id, event.goal_index)
		if goal_id is None:
			return
		self.store.merge_goal_pipeline(
			goal_id,
			step="verifying",
			action_result="success" if event.success else "failed",
			action_error=event.error_message,
		)

	def _on_verification(self, event: VerificationResult) -> None:
		goal_id = self._resolve_goal_id(event.goal_id, event.goal_index)
		if goal_id is not None:
			self.store.merge_goal_pipeline(
				goal_id, verification=event.observation, verified=event.goal_achieved
			)

	# -- diagnostics ------------------------------------------------------------

	def _on_tool_result(self, event: ToolResultEvent) -> None:
		logger.debug(
			"Tool %s finished (success=%s, error=%s)", event.tool, event.success, event.error
		)

	def _on_llm_prompt(self, event: LlmPromptEvent) -> None:
		self.store.add_llm_prompt(
			LlmCallEntry(
				id=event.call_id,
				type=event.call_type,
				model=event.model,
				prompt=event.prompt,
				timestamp=event.timestamp,
			)
		)

	def _on_llm_response(self, event: LlmResponseEvent) -> None:
		if not self.store.add_llm_response(
			event.call_id,
			raw_response=event.raw_response,
			parsed_result=event.parsed_result,
			duration_ms=event.duration_ms,
			success=event.success,
			error=event.error,
		):
			logger.debug("llm_response for %s did not change the trace", event.call_id)

	def _spawn(self, coro) -> None:
		task = asyncio.get_running_loop().create_task(coro)
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
