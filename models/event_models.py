"""Wire payloads emitted by the agent runtime.

Every inbound event is validated against one of these models before it reaches
the session store. Field names follow the runtime's JSON; the handful of
camelCase keys it emits are accepted through aliases.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class WireModel(BaseModel):
    """Base for runtime payloads: tolerate extra keys, accept field names or aliases."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Action parameters (tagged by which fields are present)
# ---------------------------------------------------------------------------


class OpenAppParams(WireModel):
    app_name: str = Field(validation_alias=AliasChoices("app_name", "name"))


class TypeTextParams(WireModel):
    text: str


class PressKeyParams(WireModel):
    key: str
    modifiers: Optional[List[str]] = None


class MouseClickParams(WireModel):
    x: int
    y: int
    button: Optional[str] = None


class MouseMoveParams(WireModel):
    x: int
    y: int


class WaitParams(WireModel):
    ms: int


class FindAndClickParams(WireModel):
    element: str


ActionParams = Union[
    OpenAppParams,
    TypeTextParams,
    PressKeyParams,
    MouseClickParams,
    MouseMoveParams,
    WaitParams,
    FindAndClickParams,
]


# ---------------------------------------------------------------------------
# Legacy single-plan protocol
# ---------------------------------------------------------------------------


class ActionStep(WireModel):
    id: str
    type: str = Field(validation_alias=AliasChoices("type", "action_type"))
    description: str
    params: ActionParams


class ActionPlan(WireModel):
    id: str
    original_command: str = ""
    steps: List[ActionStep] = Field(default_factory=list)
    requires_confirmation: bool = False


class StepStartedEvent(WireModel):
    step_index: int = Field(validation_alias=AliasChoices("stepIndex", "step_index"))
    debug: str = ""


class StepCompletedEvent(WireModel):
    step_index: int = Field(validation_alias=AliasChoices("stepIndex", "step_index"))
    success: bool


class ExecutionDoneEvent(WireModel):
    success: bool
    message: Optional[str] = None


class MessageEvent(WireModel):
    """Payload shared by `error`, `agent_error`, `agent_done` and `agent_failed`."""

    message: str = ""

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_string(cls, data: Any) -> Any:
        # agent_done is emitted with the summary string itself as the payload.
        if isinstance(data, str):
            return {"message": data}
        return data


class EmptyEvent(WireModel):
    pass


# ---------------------------------------------------------------------------
# Goal-pipeline protocol (v1)
# ---------------------------------------------------------------------------

AgentState = Literal[
    "idle", "decomposing", "observing", "thinking", "acting", "verifying", "complete", "error"
]
GoalStatus = Literal["pending", "in_progress", "completed", "failed"]


class Goal(WireModel):
    id: str
    description: str
    success_criteria: str = ""
    status: GoalStatus = "pending"
    attempts: int = 0
    max_attempts: int = 3


class DetectedElement(WireModel):
    description: str
    location: Optional[List[int]] = None
    confidence: float = 0.0


class ScreenState(WireModel):
    description: str
    timestamp: int = 0
    detected_elements: List[DetectedElement] = Field(default_factory=list)
    active_app: Optional[str] = None
    screenshot_hash: str = ""
    goal_id: Optional[str] = None
    goal_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("goalIndex", "goal_index")
    )


class AtomicAction(WireModel):
    id: str = ""
    action_type: str
    params: ActionParams
    rationale: str = ""
    goal_id: Optional[str] = None
    goal_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("goalIndex", "goal_index")
    )


class ActionResult(WireModel):
    action_id: str = ""
    success: bool
    error_message: Optional[str] = None
    screen_changed: bool = False
    goal_id: Optional[str] = None
    goal_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("goalIndex", "goal_index")
    )


class VerificationResult(WireModel):
    goal_id: Optional[str] = None
    goal_index: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("goalIndex", "goal_index")
    )
    action_id: str = ""
    goal_achieved: bool
    progress_made: bool = False
    observation: str = ""


class AgentSessionV1(WireModel):
    id: str
    original_command: str
    goals: List[Goal] = Field(default_factory=list)
    current_goal_index: int = 0
    state: AgentState = "idle"
    action_history: List[ActionResult] = Field(default_factory=list)
    total_actions: int = 0
    max_total_actions: int = 0
    current_action: Optional[AtomicAction] = None
    last_observation: Optional[ScreenState] = None
    error: Optional[str] = None

    def goal_at(self, index: Optional[int]) -> Optional[Goal]:
        if index is None or index < 0 or index >= len(self.goals):
            return None
        return self.goals[index]

    def goal_by_id(self, goal_id: str) -> Optional[Goal]:
        return next((goal for goal in self.goals if goal.id == goal_id), None)


class DecompositionEvent(WireModel):
    method: Literal["pattern", "llm"]
    pattern_name: Optional[str] = None
    original_command: str = ""


class GoalIndexEvent(WireModel):
    goal_index: int = Field(validation_alias=AliasChoices("goalIndex", "goal_index"))


# ---------------------------------------------------------------------------
# Tool-based protocol (v2)
# ---------------------------------------------------------------------------


class PlanStep(WireModel):
    id: int
    description: str
    status: Literal["pending", "in_progress", "done", "failed"] = "pending"


class Plan(WireModel):
    task: str = ""
    steps: List[PlanStep] = Field(default_factory=list)
    current_step: int = 0


class AgentSessionV2(WireModel):
    id: str
    task: str
    state: Literal["idle", "planning", "executing", "done", "failed"] = "idle"
    plan: Optional[Plan] = None
    step_count: int = 0
    error: Optional[str] = None


class ToolResultEvent(WireModel):
    tool: str
    success: bool
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# LLM debug trace
# ---------------------------------------------------------------------------

LlmCallType = Literal[
    "decomposition", "screen_description", "action_decision", "verification", "find_element"
]


class LlmPromptEvent(WireModel):
    call_id: str
    call_type: LlmCallType
    model: str
    prompt: str
    timestamp: int = 0


class LlmResponseEvent(WireModel):
    call_id: str
    raw_response: str = ""
    parsed_result: Optional[Any] = None
    duration_ms: int = 0
    success: bool
    error: Optional[str] = None
