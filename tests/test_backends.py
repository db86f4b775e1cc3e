import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from agent_loop.backends import (
    SCENARIOS,
    BackendError,
    MockBackend,
    MockCall,
    MockStep,
    OpenRouterBackend,
    create_backend,
)
from agent_loop.config import AgentConfig
from agent_loop.models import ActionRequest, Message, check_pairing
from agent_loop.tools import TOOLS


def _tool_call(call_id: str, name: str, arguments: str) -> MagicMock:
    call = MagicMock()
    call.id = call_id
    call.function.name = name
    call.function.arguments = arguments
    return call


def _completion(content=None, tool_calls=None, usage=True) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].message.tool_calls = tool_calls
    if usage:
        response.usage.prompt_tokens = 10
        response.usage.completion_tokens = 5
        response.usage.total_tokens = 15
    else:
        response.usage = None
    return response


# ---------------------------------------------------------------------------
# Message pairing
# ---------------------------------------------------------------------------

def test_tool_message_requires_request_id():
    with pytest.raises(ValueError):
        Message(role="tool", content="result")


def test_only_assistant_may_request_actions():
    with pytest.raises(ValueError):
        Message(role="user", content="x", action_requests=[ActionRequest(id="1", name="done")])


def test_check_pairing_rejects_orphan_result():
    messages = [
        Message(role="user", content="task"),
        Message(role="assistant", action_requests=[ActionRequest(id="a", name="done")]),
        Message(role="tool", content="ok", request_id="a"),
        Message(role="tool", content="stray", request_id="b"),
    ]
    with pytest.raises(ValueError, match="'b'"):
        check_pairing(messages)
    check_pairing(messages[:3])


# ---------------------------------------------------------------------------
# OpenRouter
# ---------------------------------------------------------------------------

def test_openrouter_requires_api_key():
    with pytest.raises(BackendError, match="OPENROUTER_API_KEY"):
        OpenRouterBackend(model="m", api_key=None)


@pytest.mark.asyncio
@patch("agent_loop.backends.AsyncOpenAI")
async def test_openrouter_request_and_conversion(mock_client_cls):
    create = mock_client_cls.return_value.chat.completions.create = AsyncMock(
        return_value=_completion(
            content="  Searching.  ",
            tool_calls=[_tool_call("call_1", "search_products", '{"query": "gaming"}')],
        )
    )
    backend = OpenRouterBackend(model="test/model", api_key="sk-test")
    messages = [
        Message(role="system", content="sys"),
        Message(role="user", content="task"),
        Message(role="assistant", action_requests=[ActionRequest(id="c0", name="get_reviews", arguments={"product_id": "laptop-001"})]),
        Message(role="tool", content="reviews", request_id="c0"),
    ]

    response = await backend.invoke(messages, list(TOOLS.values()))

    assert response.content == "Searching."
    assert response.action_requests == [
        ActionRequest(id="call_1", name="search_products", arguments={"query": "gaming"})
    ]
    assert response.usage.total_tokens == 15

    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "test/model"
    assert kwargs["messages"][2]["tool_calls"][0]["id"] == "c0"
    assert json.loads(kwargs["messages"][2]["tool_calls"][0]["function"]["arguments"]) == {"product_id": "laptop-001"}
    assert kwargs["messages"][3] == {"role": "tool", "content": "reviews", "tool_call_id": "c0"}
    assert [t["function"]["name"] for t in kwargs["tools"]] == list(TOOLS)

    headers = mock_client_cls.call_args.kwargs["default_headers"]
    assert "X-Title" in headers


@pytest.mark.asyncio
@patch("agent_loop.backends.AsyncOpenAI")
async def test_openrouter_omits_empty_tool_list(mock_client_cls):
    create = mock_client_cls.return_value.chat.completions.create = AsyncMock(
        return_value=_completion(content="hi", usage=False)
    )
    backend = OpenRouterBackend(model="m", api_key="k")

    response = await backend.invoke([Message(role="user", content="hello")], [])

    assert "tools" not in create.await_args.kwargs
    assert response.usage is None
    assert response.action_requests == []


@pytest.mark.asyncio
@patch("agent_loop.backends.AsyncOpenAI")
async def test_openrouter_malformed_arguments(mock_client_cls):
    mock_client_cls.return_value.chat.completions.create = AsyncMock(
        return_value=_completion(tool_calls=[_tool_call("call_9", "done", "{broken: json}")])
    )
    backend = OpenRouterBackend(model="m", api_key="k")

    with pytest.raises(BackendError, match="call_9"):
        await backend.invoke([Message(role="user", content="x")], [])


@pytest.mark.asyncio
@patch("agent_loop.backends.AsyncOpenAI")
async def test_openrouter_no_choices(mock_client_cls):
    empty = MagicMock()
    empty.choices = []
    mock_client_cls.return_value.chat.completions.create = AsyncMock(return_value=empty)
    backend = OpenRouterBackend(model="m", api_key="k")

    with pytest.raises(BackendError, match="no choices"):
        await backend.invoke([Message(role="user", content="x")], [])


@pytest.mark.asyncio
@patch("agent_loop.backends.AsyncOpenAI")
async def test_openrouter_rejects_unpaired_history(mock_client_cls):
    backend = OpenRouterBackend(model="m", api_key="k")
    with pytest.raises(ValueError):
        await backend.invoke([Message(role="tool", content="x", request_id="ghost")], [])


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_mock_replays_scenario_then_falls_back():
    backend = MockBackend([MockStep(content="thinking", calls=[MockCall(name="search_products")])])
    history = [Message(role="user", content="task")]

    first = await backend.invoke(history, [])
    assert first.content == "thinking"
    assert first.action_requests[0].id == "mock-1-0"

    fallback = await backend.invoke(history, [])
    assert fallback.action_requests[0].name == "done"
    assert fallback.action_requests[0].id.startswith("mock-fallback")
    assert "Scenario exhausted" in fallback.action_requests[0].arguments["result"]
    assert len(backend.call_log) == 2


@pytest.mark.asyncio
async def test_mock_reset_and_set_scenario():
    backend = MockBackend()
    await backend.invoke([Message(role="user", content="x")], [])
    backend.reset()
    assert backend.call_log == []

    backend.set_scenario(SCENARIOS["comparison"])
    response = await backend.invoke([Message(role="user", content="x")], [])
    assert response.action_requests[0].name == "search_products"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def test_create_backend_mock():
    backend = create_backend(AgentConfig(backend="mock", mock_scenario="comparison"))
    assert isinstance(backend, MockBackend)


def test_create_backend_unknown_scenario():
    with pytest.raises(ValueError, match="Unknown mock scenario"):
        create_backend(AgentConfig(backend="mock", mock_scenario="nope"))


@patch("agent_loop.backends.AsyncOpenAI")
def test_create_backend_openrouter(mock_client_cls):
    backend = create_backend(AgentConfig(backend="openrouter", api_key="k", model="x/y"))
    assert isinstance(backend, OpenRouterBackend)
    assert mock_client_cls.call_args.kwargs["base_url"] == "https://openrouter.ai/api/v1"
