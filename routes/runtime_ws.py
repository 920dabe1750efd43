"""WebSocket endpoint the agent runtime connects to."""

from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.runtime.ws_runtime import RuntimeMessageHandler

router = APIRouter()


@router.websocket("/ws/runtime")
async def runtime_socket(websocket: WebSocket):
	"""Receive status events from the runtime and relay command results back to waiters."""
	await websocket.accept()
	state = websocket.app.state
	channel = state.runtime_channel
	channel.attach(websocket)
	handler = RuntimeMessageHandler(state.reconciler, channel, getattr(state, "event_journal", None))
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				payload = json.loads(raw)
			except json.JSONDecodeError:
				await websocket.send_text(json.dumps({"type": "error", "detail": "Payload must be JSON"}))
				continue
			if not isinstance(payload, dict):
				await websocket.send_text(json.dumps({"type": "error", "detail": "Payload must be a JSON object"}))
				continue
			await handler.handle(websocket, payload)
	finally:
		channel.detach(websocket)
