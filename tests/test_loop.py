import json

import pytest
from unittest.mock import AsyncMock

from agent_loop.backends import BackendError, MockBackend, MockCall, MockStep
from agent_loop.config import AgentConfig
from agent_loop.events import EventLog
from agent_loop.loop import AgentLoop
from agent_loop.models import Action, ActionOutcome, BackendResponse, check_pairing
from agent_loop.tools import DONE, SEARCH_PRODUCTS, TOOLS

TASK = "Find a laptop under $1500 for programming"


def _done(payload: dict) -> MockCall:
    return MockCall(name="done", arguments={"result": json.dumps(payload)})


def _pairs(log: EventLog) -> int:
    invoked = {e.request_id for e in log.filter("action_invoked")}
    completed = {e.request_id for e in log.filter("action_completed")}
    assert invoked == completed
    return len(invoked)


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_laptop_scenario_completes():
    backend = MockBackend(
        [
            MockStep(calls=[MockCall(name="search_products", arguments={"query": "programming", "max_price": 1500})]),
            MockStep(
                calls=[
                    _done({"recommendation": "laptop-001", "reasoning": "fits budget", "confidence": 0.85})
                ]
            ),
        ]
    )
    log = EventLog()
    loop = AgentLoop(backend, [SEARCH_PRODUCTS, DONE], AgentConfig(), log)

    result = await loop.run(TASK)

    assert json.loads(result)["recommendation"] == "laptop-001"
    assert _pairs(log) == 2
    state = log.derive()
    assert state.status == "completed"
    assert state.result == result
    assert state.iterations == 2
    assert state.actions.succeeded == 2


@pytest.mark.asyncio
async def test_terminator_skips_rest_of_batch():
    backend = MockBackend(
        [MockStep(calls=[_done({"recommendation": "laptop-003"}), MockCall(name="search_products")])]
    )
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(), log)

    await loop.run(TASK)

    assert [e.name for e in log.filter("action_invoked")] == ["done"]
    assert loop.history[-1].role == "tool"
    assert loop.history[-1].request_id == "mock-1-0"


@pytest.mark.asyncio
async def test_history_announces_requests_before_results():
    backend = MockBackend()
    loop = AgentLoop(backend, TOOLS, AgentConfig(system_prompt="be helpful"))

    await loop.run(TASK)

    roles = [m.role for m in loop.history]
    assert roles[:2] == ["system", "user"]
    assert roles[2:] == ["assistant", "tool"] * 3
    check_pairing(loop.history)


@pytest.mark.asyncio
async def test_text_only_response_continues():
    backend = MockBackend([MockStep(content="Let me think."), MockStep(calls=[_done({"recommendation": "x"})])])
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(), log)

    await loop.run(TASK)

    assert loop.history[1].role == "assistant"
    assert loop.history[1].content == "Let me think."
    assert log.derive().iterations == 2


# ---------------------------------------------------------------------------
# Budget exhaustion
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_max_iterations_returns_advisory():
    backend = MockBackend([MockStep(calls=[MockCall(name="search_products", arguments={"query": "gaming"})])] * 5)
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(max_iterations=1), log)

    result = await loop.run(TASK)

    assert "maximum iterations (1)" in result
    assert _pairs(log) == 1
    completed = log.filter("run_completed")
    assert len(completed) == 1
    assert completed[0].success is False
    state = log.derive()
    assert state.status == "failed"
    assert state.errors == [result]


# ---------------------------------------------------------------------------
# Action failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_action_is_reported_not_raised():
    backend = MockBackend(
        [MockStep(calls=[MockCall(name="teleport")]), MockStep(calls=[_done({"recommendation": "x"})])]
    )
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(), log)

    await loop.run(TASK)

    tool_turn = loop.history[2]
    assert tool_turn.role == "tool"
    assert 'Unknown action "teleport"' in tool_turn.content
    failed = [e for e in log.filter("action_completed") if not e.success]
    assert [e.name for e in failed] == ["teleport"]
    assert log.derive().status == "completed"


@pytest.mark.asyncio
async def test_handler_exception_is_reported_not_raised():
    def explode(args):
        raise RuntimeError("disk full")

    broken = Action(name="broken", handler=explode)
    backend = MockBackend([MockStep(calls=[MockCall(name="broken")]), MockStep(calls=[_done({})])])
    log = EventLog()
    loop = AgentLoop(backend, [broken, DONE], AgentConfig(), log)

    await loop.run(TASK)

    assert loop.history[2].content == "Error: broken failed: disk full"
    assert log.derive().by_action["broken"].failed == 1


@pytest.mark.asyncio
async def test_async_handler_is_awaited():
    async def lookup(args):
        return ActionOutcome.ok(f"looked up {args['key']}")

    backend = MockBackend(
        [MockStep(calls=[MockCall(name="lookup", arguments={"key": "k"})]), MockStep(calls=[_done({})])]
    )
    loop = AgentLoop(backend, [Action(name="lookup", handler=lookup), DONE])

    await loop.run(TASK)

    assert loop.history[2].content == "looked up k"


@pytest.mark.asyncio
async def test_event_results_are_truncated():
    backend = MockBackend([MockStep(calls=[MockCall(name="search_products")]), MockStep(calls=[_done({})])])
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(result_preview_chars=40), log)

    await loop.run(TASK)

    search = log.filter("action_completed")[0]
    assert len(search.result) == 40
    assert len(loop.history[2].content) > 40


# ---------------------------------------------------------------------------
# Backend failure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_backend_failure_propagates_and_fails_run():
    backend = AsyncMock()
    backend.invoke.side_effect = ConnectionError("connection reset")
    log = EventLog()
    loop = AgentLoop(backend, TOOLS, AgentConfig(), log)

    with pytest.raises(BackendError, match="connection reset") as excinfo:
        await loop.run(TASK)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    state = log.derive()
    assert state.status == "failed"
    assert len(state.errors) == 1
    assert not log.filter("run_completed")


@pytest.mark.asyncio
async def test_backend_error_is_reraised_unchanged():
    error = BackendError("no choices")
    backend = AsyncMock()
    backend.invoke.side_effect = error
    loop = AgentLoop(backend, TOOLS, AgentConfig())

    with pytest.raises(BackendError) as excinfo:
        await loop.run(TASK)

    assert excinfo.value is error


@pytest.mark.asyncio
async def test_done_flag_is_ignored():
    backend = AsyncMock()
    backend.invoke.side_effect = [
        BackendResponse(content="All done!", done=True),
        BackendResponse(content="Still done.", done=True),
    ]
    loop = AgentLoop(backend, TOOLS, AgentConfig(max_iterations=2))

    result = await loop.run(TASK)

    assert "maximum iterations (2)" in result
    assert backend.invoke.await_count == 2


def test_duplicate_action_names_rejected():
    with pytest.raises(ValueError, match="Duplicate action name"):
        AgentLoop(MockBackend(), [DONE, DONE])
