"""Classify agent_session payloads into the goal-based (v1) or tool-based (v2) shape."""

from __future__ import annotations

from typing import Any, Dict, Literal, Union

from pydantic import ValidationError

from models.event_models import AgentSessionV1, AgentSessionV2
from services.session.errors import EventPayloadError, ProtocolDiscriminationError

ProtocolVersion = Literal["v1", "v2"]


def discriminate(payload: Dict[str, Any]) -> ProtocolVersion:
	"""Return the protocol version implied by which fields the payload carries.

	Tool-based sessions carry `task` and no `original_command`; goal-based sessions
	carry the inverse. Anything else is a runtime contract violation.
	"""
	if not isinstance(payload, dict):
		raise ProtocolDiscriminationError(f"agent_session payload must be an object, got {type(payload).__name__}")
	has_task = "task" in payload
	has_command = "original_command" in payload
	if has_task and not has_command:
		return "v2"
	if has_command and not has_task:
		return "v1"
	raise ProtocolDiscriminationError(
		"agent_session payload carries "
		+ ("both 'task' and 'original_command'" if has_task else "neither 'task' nor 'original_command'")
	)


def classify_agent_session(payload: Dict[str, Any]) -> Union[AgentSessionV1, AgentSessionV2]:
	"""Discriminate, then validate against the matching model only."""
	version = discriminate(payload)
	model = AgentSessionV2 if version == "v2" else AgentSessionV1
	try:
		return model.model_validate(payload)
	except ValidationError as exc:
		raise EventPayloadError("agent_session", str(exc)) from exc
