from __future__ import annotations

import pytest

from models.event_models import AgentSessionV1, AgentSessionV2
from services.runtime.command_dispatcher import CommandDispatcher, SessionBusyError
from services.session.errors import RuntimeCommandError
from services.session.session_store import SessionStore
from factories import v1_session_payload, v2_session_payload


class RecordingRuntime:
    def __init__(self, fail_with: str | None = None) -> None:
        self.fail_with = fail_with
        self.calls: list[tuple] = []

    async def _record(self, *call) -> None:
        self.calls.append(call)
        if self.fail_with:
            raise RuntimeCommandError(self.fail_with)

    async def plan_command(self, command: str) -> None:
        await self._record("plan_command", command)

    async def execute_plan(self, plan) -> None:
        await self._record("execute_plan", plan.id)

    async def cancel_execution(self) -> None:
        await self._record("cancel_execution")

    async def hide_window(self) -> None:
        await self._record("hide_window")

    async def start_agent(self, command: str) -> None:
        await self._record("start_agent", command)

    async def start_agent_v2(self, command: str) -> None:
        await self._record("start_agent_v2", command)

    async def cancel_agent(self) -> None:
        await self._record("cancel_agent")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("use_agent_mode", "use_agent_v2", "entry_point"),
    [(True, True, "start_agent_v2"), (True, False, "start_agent"), (False, False, "plan_command")],
)
async def test_submit_routes_to_the_configured_entry_point(
    use_agent_mode: bool, use_agent_v2: bool, entry_point: str
) -> None:
    store = SessionStore(use_agent_mode=use_agent_mode, use_agent_v2=use_agent_v2)
    runtime = RecordingRuntime()
    dispatcher = CommandDispatcher(store, runtime)

    assert dispatcher.submit("  open safari  ") == entry_point
    await dispatcher.drain()

    assert runtime.calls == [(entry_point, "open safari")]
    assert store.snapshot.command == "open safari"
    assert store.snapshot.run_state == "planning"


@pytest.mark.asyncio
async def test_submit_rejects_blank_commands() -> None:
    dispatcher = CommandDispatcher(SessionStore(), RecordingRuntime())

    with pytest.raises(ValueError):
        dispatcher.submit("   ")


@pytest.mark.asyncio
async def test_submit_rejects_while_busy() -> None:
    store = SessionStore()
    store.set_run_state("executing")
    dispatcher = CommandDispatcher(store, RecordingRuntime())

    with pytest.raises(SessionBusyError):
        dispatcher.submit("open safari")


@pytest.mark.asyncio
async def test_running_agent_session_counts_as_busy() -> None:
    store = SessionStore()
    store.set_agent_session_v2(AgentSessionV2.model_validate(v2_session_payload(state="executing")))
    dispatcher = CommandDispatcher(store, RecordingRuntime())

    assert dispatcher.is_busy() is True

    store.set_agent_session_v2(AgentSessionV2.model_validate(v2_session_payload(state="done")))
    assert dispatcher.is_busy() is False


@pytest.mark.asyncio
async def test_submit_after_a_finished_session_starts_fresh() -> None:
    store = SessionStore()
    store.set_agent_session(AgentSessionV1.model_validate(v1_session_payload(state="complete")))
    store.set_error("previous failure")
    dispatcher = CommandDispatcher(store, RecordingRuntime())

    dispatcher.submit("open notes")
    await dispatcher.drain()

    assert store.snapshot.agent_session is None
    assert store.snapshot.error is None
    assert store.snapshot.command == "open notes"


@pytest.mark.asyncio
async def test_runtime_failure_lands_in_error_state() -> None:
    store = SessionStore()
    dispatcher = CommandDispatcher(store, RecordingRuntime(fail_with="agent crashed"))

    dispatcher.submit("open safari")
    await dispatcher.drain()

    assert store.snapshot.run_state == "error"
    assert store.snapshot.error == "agent crashed"


@pytest.mark.asyncio
async def test_missing_runtime_lands_in_error_state() -> None:
    store = SessionStore()
    dispatcher = CommandDispatcher(store, None)

    dispatcher.submit("open safari")

    assert store.snapshot.run_state == "error"
    assert "start_agent_v2" in store.snapshot.error


@pytest.mark.asyncio
async def test_cancel_uses_the_active_protocol() -> None:
    store = SessionStore()
    runtime = RecordingRuntime()
    dispatcher = CommandDispatcher(store, runtime)

    dispatcher.cancel()
    store.set_agent_session_v2(AgentSessionV2.model_validate(v2_session_payload()))
    dispatcher.cancel()
    dispatcher.hide()
    await dispatcher.drain()

    assert runtime.calls == [("cancel_execution",), ("cancel_agent",), ("hide_window",)]


def test_acknowledge_resets_to_idle() -> None:
    store = SessionStore()
    store.set_error("boom")
    dispatcher = CommandDispatcher(store, None)

    dispatcher.acknowledge()

    assert store.snapshot.run_state == "idle"
    assert store.snapshot.error is None
