"""Handle control messages sent by overlay clients."""
from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import WebSocket

from services.runtime.command_dispatcher import CommandDispatcher
from services.session.session_store import SessionStore


class OverlayMessageHandler:
	"""Apply acknowledge/submit/cancel/hide and debug-trace selection from the overlay."""

	def __init__(self, store: SessionStore, dispatcher: CommandDispatcher) -> None:
		self.store = store
		self.dispatcher = dispatcher

	async def handle(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		"""Process a single overlay frame and reply with an ack or an error."""
		request_id = payload.get("request_id")
		message_type = payload.get("type")
		try:
			if message_type == "acknowledge":
				self.dispatcher.acknowledge()
				result: Dict[str, Any] = {"type": "acknowledge.ack"}
			elif message_type == "submit":
				command = payload.get("command")
				if not isinstance(command, str):
					raise ValueError("Command text is required.")
				entry_point = self.dispatcher.submit(command)
				result = {"type": "submit.ack", "entry_point": entry_point}
			elif message_type == "cancel":
				self.dispatcher.cancel()
				result = {"type": "cancel.ack"}
			elif message_type == "hide":
				self.dispatcher.hide()
				result = {"type": "hide.ack"}
			elif message_type == "llm.select":
				call_id = payload.get("call_id")
				if call_id is not None and not isinstance(call_id, str):
					raise ValueError("call_id must be a string or null.")
				if call_id is not None and call_id not in self.store.snapshot.llm_calls:
					raise KeyError(f"LLM call {call_id} not found")
				self.store.select_llm_call(call_id)
				result = {"type": "llm.select.ack", "call_id": call_id}
			elif message_type == "llm.clear":
				self.store.clear_llm_calls()
				result = {"type": "llm.clear.ack"}
			else:
				raise ValueError("Unsupported message type.")
			result["request_id"] = request_id
			await self._send(websocket, result)
		except (KeyError, ValueError, RuntimeError) as exc:
			await self._send(websocket, {"type": "error", "request_id": request_id, "detail": str(exc)})

	async def _send(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		await websocket.send_text(json.dumps(payload))
