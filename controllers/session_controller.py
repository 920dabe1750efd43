"""Session read contract and operator commands exposed over HTTP."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from services.runtime.command_dispatcher import CommandDispatcher, SessionBusyError
from services.session.layout import LayoutScheduler
from services.session.session_store import SessionStore


def _store(request: Request) -> SessionStore:
	store = getattr(request.app.state, "session_store", None)
	if store is None:
		raise HTTPException(status_code=500, detail="Session store unavailable")
	return store


def _dispatcher(request: Request) -> CommandDispatcher:
	dispatcher = getattr(request.app.state, "command_dispatcher", None)
	if dispatcher is None:
		raise HTTPException(status_code=500, detail="Command dispatcher unavailable")
	return dispatcher


async def get_snapshot(request: Request) -> Dict[str, Any]:
	"""Return the current snapshot and which interpretation is active."""
	store = _store(request)
	return {"active_mode": store.active_mode, "state": store.snapshot.to_dict()}


async def get_layout(request: Request) -> Dict[str, Any]:
	"""Return the window size derived from the current snapshot."""
	scheduler: LayoutScheduler = request.app.state.layout_scheduler
	size = scheduler.current_size()
	return {"width": size.width, "height": size.height}


async def submit_command(request: Request, command: str) -> Dict[str, Any]:
	"""Start a new task on the agent runtime."""
	try:
		entry_point = _dispatcher(request).submit(command)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	except SessionBusyError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc
	return {"accepted": True, "entry_point": entry_point}


async def reset_session(request: Request) -> Dict[str, Any]:
	"""Acknowledge the current result and clear every session field."""
	_dispatcher(request).acknowledge()
	return {"run_state": _store(request).snapshot.run_state}


async def cancel_session(request: Request) -> Dict[str, Any]:
	_dispatcher(request).cancel()
	return {"cancel_requested": True}


async def hide_window(request: Request) -> Dict[str, Any]:
	_dispatcher(request).hide()
	return {"hide_requested": True}


async def list_llm_calls(request: Request) -> Dict[str, Any]:
	"""Return the LLM call trace ordered by timestamp."""
	snapshot = _store(request).snapshot
	calls = sorted(snapshot.to_dict()["llm_calls"].values(), key=lambda entry: entry["timestamp"])
	return {"calls": calls, "selected": snapshot.selected_llm_call}


async def select_llm_call(request: Request, call_id: Optional[str]) -> Dict[str, Any]:
	"""Select one trace entry, or clear the selection with None."""
	store = _store(request)
	if call_id is not None and call_id not in store.snapshot.llm_calls:
		raise HTTPException(status_code=404, detail=f"LLM call {call_id} not found")
	store.select_llm_call(call_id)
	return {"selected": call_id}


async def clear_llm_calls(request: Request) -> Dict[str, Any]:
	_store(request).clear_llm_calls()
	return {"cleared": True}
