"""Send commands to the agent runtime over its websocket and await the answers."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from fastapi import WebSocket

from models.event_models import ActionPlan
from services.session.errors import RuntimeCommandError

logger = logging.getLogger(__name__)


class AgentRuntime(Protocol):
	"""Commands the session core may invoke on the external agent runtime."""

	async def plan_command(self, command: str) -> None: ...

	async def execute_plan(self, plan: ActionPlan) -> None: ...

	async def cancel_execution(self) -> None: ...

	async def hide_window(self) -> None: ...

	async def start_agent(self, command: str) -> None: ...

	async def start_agent_v2(self, command: str) -> None: ...

	async def cancel_agent(self) -> None: ...


class RuntimeChannel:
	"""Command side of the runtime websocket.

	Each command frame carries a fresh `request_id`; the runtime answers with a
	`command.result` frame echoing it. Long-running commands (plan execution and
	agent runs) get the longer execution timeout.
	"""

	def __init__(self, *, command_timeout: float = 30.0, execution_timeout: float = 600.0) -> None:
		self.command_timeout = command_timeout
		self.execution_timeout = execution_timeout
		self._websocket: Optional[WebSocket] = None
		self._pending: Dict[str, asyncio.Future] = {}

	@property
	def connected(self) -> bool:
		return self._websocket is not None

	def attach(self, websocket: WebSocket) -> None:
		"""Bind the channel to a freshly connected runtime, replacing any previous one."""
		if self._websocket is not None and self._websocket is not websocket:
			self._fail_pending("Agent runtime connection replaced")
		self._websocket = websocket
		logger.info("Agent runtime attached")

	def detach(self, websocket: WebSocket) -> None:
		"""Forget a runtime connection and fail every command still waiting on it."""
		if self._websocket is not websocket:
			return
		self._websocket = None
		self._fail_pending("Agent runtime disconnected")
		logger.info("Agent runtime detached")

	def resolve(self, payload: Dict[str, Any]) -> bool:
		"""Complete the command a `command.result` frame answers; False if nobody waits for it."""
		request_id = payload.get("request_id")
		future = self._pending.pop(request_id, None) if isinstance(request_id, str) else None
		if future is None or future.done():
			logger.debug("Dropping command result for unknown request %r", request_id)
			return False
		if payload.get("ok", False):
			future.set_result(payload.get("result"))
		else:
			future.set_exception(RuntimeCommandError(payload.get("error") or "Runtime command failed"))
		return True

	async def send_command(self, name: str, args: Optional[Dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
		"""Send one command and wait for its result."""
		websocket = self._websocket
		if websocket is None:
			raise RuntimeCommandError(f"Agent runtime not connected; cannot run '{name}'")
		request_id = uuid4().hex
		future: asyncio.Future = asyncio.get_running_loop().create_future()
		self._pending[request_id] = future
		frame = {"type": "command", "request_id": request_id, "name": name, "args": args or {}}
		logger.info("Sending runtime command %s (%s)", name, request_id)
		try:
			await websocket.send_text(json.dumps(frame))
		except Exception as exc:
			self._pending.pop(request_id, None)
			raise RuntimeCommandError(f"Failed to deliver '{name}' to the agent runtime: {exc}") from exc
		wait_for = timeout if timeout is not None else self.command_timeout
		try:
			return await asyncio.wait_for(future, wait_for)
		except asyncio.TimeoutError as exc:
			raise RuntimeCommandError(f"Runtime command '{name}' timed out after {wait_for:.1f}s") from exc
		finally:
			self._pending.pop(request_id, None)

	async def plan_command(self, command: str) -> None:
		await self.send_command("plan_command", {"command": command})

	async def execute_plan(self, plan: ActionPlan) -> None:
		await self.send_command(
			"execute_plan", {"plan": plan.model_dump(mode="json")}, timeout=self.execution_timeout
		)

	async def cancel_execution(self) -> None:
		await self.send_command("cancel_execution")

	async def hide_window(self) -> None:
		await self.send_command("hide_window")

	async def start_agent(self, command: str) -> None:
		await self.send_command("start_agent", {"command": command}, timeout=self.execution_timeout)

	async def start_agent_v2(self, command: str) -> None:
		await self.send_command("start_agent_v2", {"command": command}, timeout=self.execution_timeout)

	async def cancel_agent(self) -> None:
		await self.send_command("cancel_agent")

	def _fail_pending(self, reason: str) -> None:
		pending, self._pending = self._pending, {}
		for future in pending.values():
			if not future.done():
				future.set_exception(RuntimeCommandError(reason))
