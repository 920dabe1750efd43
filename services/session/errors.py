"""Errors raised by the overlay session core."""

from __future__ import annotations


class SessionCoreError(Exception):
	"""Base class for session core failures."""


class ProtocolDiscriminationError(SessionCoreError):
	"""An agent_session payload matches neither the goal-based nor the tool-based shape."""


class UnknownEventError(SessionCoreError):
	"""The runtime sent an event name the reconciler has no handler for."""


class EventPayloadError(SessionCoreError):
	"""An event payload failed validation against its wire model."""

	def __init__(self, event_name: str, detail: str) -> None:
		super().__init__(f"Invalid payload for '{event_name}': {detail}")
		self.event_name = event_name
		self.detail = detail


class RuntimeCommandError(SessionCoreError):
	"""A command sent to the agent runtime was rejected, timed out, or could not be delivered."""
