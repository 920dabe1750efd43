"""Human-readable projection of action parameters for the pipeline rows."""

from __future__ import annotations

from models.event_models import (
	ActionParams,
	FindAndClickParams,
	MouseClickParams,
	MouseMoveParams,
	OpenAppParams,
	PressKeyParams,
	TypeTextParams,
	WaitParams,
)


def format_action_params(params: ActionParams) -> str:
	if isinstance(params, OpenAppParams):
		return params.app_name
	if isinstance(params, TypeTextParams):
		return f'"{params.text}"'
	if isinstance(params, PressKeyParams):
		modifiers = "+".join(params.modifiers or [])
		return f"{modifiers}+{params.key}" if modifiers else params.key
	if isinstance(params, (MouseClickParams, MouseMoveParams)):
		return f"({params.x}, {params.y})"
	if isinstance(params, WaitParams):
		return f"{params.ms}ms"
	if isinstance(params, FindAndClickParams):
		return params.element
	return ""
