"""Push snapshots and window resizes to connected overlay clients."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Set

from fastapi import WebSocket

from services.session.layout import WindowSize
from services.session.session_store import SessionStore

logger = logging.getLogger(__name__)


class OverlaySurface:
	"""Fan out store changes to every overlay websocket.

	Snapshot pushes are coalesced per loop iteration the same way layout
	recomputes are, so a burst of events produces one frame.
	"""

	def __init__(self, store: SessionStore) -> None:
		self.store = store
		self._clients: Set[WebSocket] = set()
		self._snapshot_pending = False
		self._tasks: Set[asyncio.Task] = set()
		self._unsubscribe: Optional[Callable[[], None]] = None
		self.last_size: Optional[WindowSize] = None

	@property
	def client_count(self) -> int:
		return len(self._clients)

	def attach(self) -> None:
		if self._unsubscribe is None:
			self._unsubscribe = self.store.subscribe(lambda _snapshot, _previous: self._schedule_snapshot())

	def detach(self) -> None:
		if self._unsubscribe is not None:
			self._unsubscribe()
			self._unsubscribe = None

	async def connect(self, websocket: WebSocket) -> None:
		"""Register a client and bring it up to date."""
		self._clients.add(websocket)
		await self._send(websocket, self.snapshot_message())
		if self.last_size is not None:
			await self._send(websocket, self.resize_message(self.last_size))
		logger.info("Overlay client connected (%d total)", len(self._clients))

	def disconnect(self, websocket: WebSocket) -> None:
		self._clients.discard(websocket)
		logger.info("Overlay client disconnected (%d left)", len(self._clients))

	async def resize(self, size: WindowSize) -> None:
		"""Resize sink for the layout scheduler."""
		self.last_size = size
		await self.broadcast(self.resize_message(size))

	async def broadcast(self, message: Dict[str, Any]) -> None:
		for websocket in list(self._clients):
			await self._send(websocket, message)

	def snapshot_message(self) -> Dict[str, Any]:
		return {
			"type": "snapshot",
			"active_mode": self.store.active_mode,
			"state": self.store.snapshot.to_dict(),
		}

	@staticmethod
	def resize_message(size: WindowSize) -> Dict[str, Any]:
		return {"type": "window.resize", "width": size.width, "height": size.height}

	async def drain(self) -> None:
		while self._tasks:
			await asyncio.gather(*list(self._tasks))

	def _schedule_snapshot(self) -> None:
		if self._snapshot_pending or not self._clients:
			return
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			return
		self._snapshot_pending = True
		loop.call_soon(self._push_snapshot)

	def _push_snapshot(self) -> None:
		self._snapshot_pending = False
		task = asyncio.get_running_loop().create_task(self.broadcast(self.snapshot_message()))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _send(self, websocket: WebSocket, payload: Dict[str, Any]) -> None:
		try:
			await websocket.send_text(json.dumps(payload))
		except Exception as exc:
			logger.warning("Dropping overlay client after failed send: %s", exc)
			self._clients.discard(websocket)
