"""Run user-initiated runtime commands and route their failures into the session."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from services.runtime.runtime_channel import AgentRuntime
from services.session.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
	"""A command was submitted while another one is still planning or executing."""


class CommandDispatcher:
	"""Outbound command side of the overlay.

	Commands are fire-and-forget: state changes happen synchronously, the
	runtime call runs in a tracked background task, and any failure it raises
	lands in the unified error state.
	"""

	def __init__(self, store: SessionStore, runtime: Optional[AgentRuntime]) -> None:
		self.store = store
		self.runtime = runtime
		self._tasks: Set[asyncio.Task] = set()

	def is_busy(self) -> bool:
		snapshot = self.store.snapshot
		if snapshot.run_state in ("planning", "executing"):
			return True
		mode = self.store.active_mode
		if mode == "v1":
			return snapshot.agent_session.state not in ("complete", "error")
		if mode == "v2":
			return snapshot.agent_session_v2.state not in ("done", "failed")
		return False

	def submit(self, command: str) -> str:
		"""Start a new task for `command`; return the runtime entry point used."""
		text = command.strip()
		if not text:
			raise ValueError("Command text is required.")
		if self.is_busy():
			raise SessionBusyError("A command is already running.")
		if self.store.snapshot.run_state in ("done", "error"):
			self.store.reset()
		self.store.set_command(text)
		self.store.set_run_state("planning")
		if self.store.use_agent_v2:
			entry_point = "start_agent_v2"
		elif self.store.use_agent_mode:
			entry_point = "start_agent"
		else:
			entry_point = "plan_command"
		self._run(entry_point, lambda runtime: getattr(runtime, entry_point)(text))
		return entry_point

	def cancel(self) -> None:
		"""Ask the runtime to stop whatever is running."""
		if self.store.active_mode == "legacy":
			self._run("cancel_execution", lambda runtime: runtime.cancel_execution())
		else:
			self._run("cancel_agent", lambda runtime: runtime.cancel_agent())

	def hide(self) -> None:
		self._run("hide_window", lambda runtime: runtime.hide_window())

	def acknowledge(self) -> None:
		"""Dismiss a finished or failed session and return to idle."""
		self.store.reset()

	async def drain(self) -> None:
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	def _run(self, name: str, call: Callable[[AgentRuntime], Awaitable[None]]) -> None:
		if self.runtime is None:
			self.store.set_error(f"Agent runtime unavailable; cannot run {name}")
			return
		task = asyncio.get_running_loop().create_task(self._guarded(name, call(self.runtime)))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _guarded(self, name: str, call: Awaitable[None]) -> None:
		try:
			await call
		except Exception as exc:
			logger.error("Runtime command %s failed: %s", name, exc)
			self.store.set_error(str(exc))
