"""WebSocket endpoint for overlay (presentation) clients."""

from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.runtime.ws_overlay import OverlayMessageHandler

router = APIRouter()


@router.websocket("/ws/overlay")
async def overlay_socket(websocket: WebSocket):
	"""Stream snapshots and resizes to the overlay and accept its control messages."""
	await websocket.accept()
	state = websocket.app.state
	surface = state.overlay_surface
	await surface.connect(websocket)
	handler = OverlayMessageHandler(state.session_store, state.command_dispatcher)
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
		surface.disconnect(websocket)
