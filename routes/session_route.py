"""FastAPI routes for the overlay session."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.session_controller import (
	cancel_session,
	clear_llm_calls,
	get_layout,
	get_snapshot,
	hide_window,
	list_llm_calls,
	reset_session,
	select_llm_call,
	submit_command,
)

router = APIRouter(prefix="/session")


class CommandPayload(BaseModel):
	command: str


class SelectPayload(BaseModel):
	call_id: Optional[str] = None


@router.get("")
async def snapshot_route(request: Request):
	try:
		return await get_snapshot(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/layout")
async def layout_route(request: Request):
	try:
		return await get_layout(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/commands")
async def submit_route(request: Request, payload: CommandPayload):
	try:
		return await submit_command(request, payload.command)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/reset")
async def reset_route(request: Request):
	try:
		return await reset_session(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/cancel")
async def cancel_route(request: Request):
	try:
		return await cancel_session(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/hide")
async def hide_route(request: Request):
	try:
		return await hide_window(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/llm-calls")
async def llm_calls_route(request: Request):
	try:
		return await list_llm_calls(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/llm-calls/select")
async def select_llm_call_route(request: Request, payload: SelectPayload):
	try:
		return await select_llm_call(request, payload.call_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/llm-calls")
async def clear_llm_calls_route(request: Request):
	try:
		return await clear_llm_calls(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
