"""Dispatch frames arriving from the agent runtime websocket."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket

from dal.event_journal_dal import EventJournalDAL
from services.runtime.runtime_channel import RuntimeChannel
from services.session.errors import ProtocolDiscriminationError, SessionCoreError
from services.session.reconciler import EventReconciler

logger = logging.getLogger(__name__)


class RuntimeMessageHandler:
	"""Route one runtime connection's frames to the reconciler or the command channel."""

	def __init__(
		self,
		reconciler: EventReconciler,
		channel: RuntimeChannel,
		journal: Optional[EventJournalDAL] = None,
	) -> None:
		self.reconciler = reconciler
		self.channel = channel
		self.journal = journal

	async def handle(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		"""Process a single inbound frame."""
		message_type = payload.get("type")
		if message_type == "command.result":
			self.channel.resolve(payload)
			return
		if message_type != "event":
			await self._send_error(websocket, None, "Unsupported message type.")
			return
		event_name = payload.get("event")
		if not isinstance(event_name, str) or not event_name:
			await self._send_error(websocket, None, "Event name is required.")
			return
		event_payload = payload.get("payload")
		if self.journal is not None:
			try:
				await self.journal.append(event_name, event_payload)
			except Exception:
				logger.exception("Failed to journal %s event; reconciling anyway", event_name)
		try:
			self.reconciler.apply(event_name, event_payload)
		except ProtocolDiscriminationError as exc:
			logger.error("Runtime sent an undiscriminable agent_session: %s", exc)
			await self._send_error(websocket, event_name, str(exc))
		except SessionCoreError as exc:
			logger.warning("Rejected %s event: %s", event_name, exc)
			await self._send_error(websocket, event_name, str(exc))

	async def _send_error(self, websocket: WebSocket, event_name: Optional[str], detail: str) -> None:
		await self._send(websocket, {"type": "error", "event": event_name, "detail": detail})

	async def _send(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		await websocket.send_text(json.dumps(payload))
