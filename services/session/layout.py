"""Derive the overlay window size from the session snapshot."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, NamedTuple, Optional, Set

from models.session_models import SessionSnapshot
from services.session.session_store import SessionStore, active_mode_for

logger = logging.getLogger(__name__)

WINDOW_WIDTH = 680
INPUT_HEIGHT = 88
STEP_HEIGHT = 48
DECOMPOSITION_HEIGHT = 56
PIPELINE_HEADER_HEIGHT = 48
PIPELINE_ROW_HEIGHT = 22
PIPELINE_FOOTER_HEIGHT = 20
V2_EXECUTING_HEIGHT = 24


class WindowSize(NamedTuple):
	width: int
	height: int


def derive_window_size(
	snapshot: SessionSnapshot,
	*,
	use_agent_mode: bool = True,
	use_agent_v2: bool = True,
	width: int = WINDOW_WIDTH,
) -> WindowSize:
	"""Return the window size for a snapshot.

	Presentation modes are mutually exclusive and checked in priority order:
	the tool-based plan, then the bare legacy states, then the goal list.
	"""
	mode = active_mode_for(snapshot, use_agent_mode=use_agent_mode, use_agent_v2=use_agent_v2)
	height = INPUT_HEIGHT
	session_v2 = snapshot.agent_session_v2
	legacy_visible = mode != "v1"

	if mode == "v2" and session_v2 is not None and session_v2.plan is not None:
		height += STEP_HEIGHT * len(session_v2.plan.steps)
		if session_v2.state in ("done", "failed"):
			height += STEP_HEIGHT
		elif session_v2.state == "executing":
			height += V2_EXECUTING_HEIGHT
	elif snapshot.run_state == "planning":
		height += STEP_HEIGHT
	elif legacy_visible and snapshot.run_state == "error":
		height += STEP_HEIGHT
	elif legacy_visible and snapshot.run_state in ("executing", "done"):
		steps = snapshot.plan.steps if snapshot.plan else []
		height += STEP_HEIGHT * len(steps)
		if snapshot.run_state == "done":
			height += STEP_HEIGHT
	elif mode == "v1" and snapshot.agent_session.goals:
		height += _goal_list_height(snapshot)

	return WindowSize(width, height)


def _goal_list_height(snapshot: SessionSnapshot) -> int:
	session = snapshot.agent_session
	height = DECOMPOSITION_HEIGHT if snapshot.decomposition_info else 0
	for idx, goal in enumerate(session.goals):
		pipeline = snapshot.goal_pipelines.get(goal.id)
		is_current = idx == session.current_goal_index and goal.status == "in_progress"
		if pipeline is not None and (is_current or goal.status in ("completed", "failed")):
			height += (
				PIPELINE_HEADER_HEIGHT
				+ PIPELINE_ROW_HEIGHT * pipeline.visible_row_count()
				+ PIPELINE_FOOTER_HEIGHT
			)
		else:
			height += STEP_HEIGHT
	if session.state in ("complete", "error"):
		height += STEP_HEIGHT
	return height


ResizeSink = Callable[[WindowSize], Awaitable[None]]


class LayoutScheduler:
	"""Coalesce recompute requests into one resize per loop iteration.

	Requests made while a recompute is already queued are folded into it; the
	recompute reads whatever snapshot is committed when it runs.
	"""

	def __init__(self, store: SessionStore, resize: ResizeSink, *, width: int = WINDOW_WIDTH) -> None:
		self.store = store
		self.width = width
		self._resize = resize
		self._pending = False
		self._last_size: Optional[WindowSize] = None
		self._tasks: Set[asyncio.Task] = set()
		self._unsubscribe: Optional[Callable[[], None]] = None

	@property
	def last_size(self) -> Optional[WindowSize]:
		return self._last_size

	def attach(self) -> None:
		"""Request a recompute after every committed store mutation."""
		if self._unsubscribe is None:
			self._unsubscribe = self.store.subscribe(lambda _snapshot, _previous: self.request())

	def detach(self) -> None:
		if self._unsubscribe is not None:
			self._unsubscribe()
			self._unsubscribe = None

	def current_size(self) -> WindowSize:
		return derive_window_size(
			self.store.snapshot,
			use_agent_mode=self.store.use_agent_mode,
			use_agent_v2=self.store.use_agent_v2,
			width=self.width,
		)

	def request(self) -> None:
		"""Schedule a recompute at the end of the current loop iteration."""
		if self._pending:
			return
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			logger.debug("No running loop; layout recompute deferred until next flush")
			return
		self._pending = True
		loop.call_soon(self._run_scheduled)

	async def flush(self) -> None:
		"""Recompute now and wait for any resize in flight."""
		self._pending = False
		size = self.current_size()
		if size != self._last_size:
			self._last_size = size
			await self._apply(size)
		await self.drain()

	async def drain(self) -> None:
		while self._tasks:
			await asyncio.gather(*list(self._tasks))

	def _run_scheduled(self) -> None:
		self._pending = False
		size = self.current_size()
		if size == self._last_size:
			return
		self._last_size = size
		task = asyncio.get_running_loop().create_task(self._apply(size))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def _apply(self, size: WindowSize) -> None:
		try:
			await self._resize(size)
			logger.debug("Resized overlay window to %sx%s", size.width, size.height)
		except Exception:
			logger.exception("Failed to resize overlay window to %sx%s", size.width, size.height)
