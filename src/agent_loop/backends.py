# backends.py
# Decision backends: anything that, given the conversation and the action
# catalog, answers with text and/or action requests.
#
# OpenRouterBackend speaks the chat-completions wire format through the
# OpenAI SDK. MockBackend replays scripted steps for deterministic runs.
# Neither one terminates a run on its own: termination is always a `done`
# action request the loop executes like any other.

import json
from typing import Any, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from agent_loop.config import AgentConfig
from agent_loop.models import (
    Action,
    ActionRequest,
    BackendResponse,
    Message,
    Usage,
    check_pairing,
)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class BackendError(Exception):
    """Raised when the decision backend cannot produce a usable response. Fatal to the run."""


class Backend(Protocol):
    async def invoke(self, messages: list[Message], actions: list[Action]) -> BackendResponse: ...


# ---------------------------------------------------------------------------
# OpenRouter
# ---------------------------------------------------------------------------


def _to_wire_message(message: Message) -> dict[str, Any]:
    if message.role == "tool":
        return {"role": "tool", "content": message.content, "tool_call_id": message.request_id}

    if message.role == "assistant" and message.action_requests:
        return {
            "role": "assistant",
            "content": message.content or None,
            "tool_calls": [
                {
                    "id": request.id,
                    "type": "function",
                    "function": {
                        "name": request.name,
                        "arguments": json.dumps(request.arguments),
                    },
                }
                for request in message.action_requests
            ],
        }

    return {"role": message.role, "content": message.content}


def _to_wire_tool(action: Action) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": action.name,
            "description": action.description,
            "parameters": action.parameters,
        },
    }


def _parse_arguments(raw: str | None, call_id: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        arguments = json.loads(raw, strict=False)
    except json.JSONDecodeError as exc:
        raise BackendError(f"Arguments for tool call {call_id} are malformed: {exc}") from exc
    if not isinstance(arguments, dict):
        raise BackendError(f"Arguments for tool call {call_id} are not a JSON object.")
    return arguments


class OpenRouterBackend:
    """
    Chat-completions backend routed through OpenRouter.

    Example:
        backend = OpenRouterBackend(model="anthropic/claude-sonnet-4", api_key=key)
        response = await backend.invoke(messages, actions)
    """

    def __init__(
        self,
        model: str,
        api_key: str | None,
        base_url: str = OPENROUTER_BASE_URL,
        site_url: str = "https://github.com/agent-loop/agent-loop",
        site_name: str = "agent-loop",
    ) -> None:
        if not api_key:
            raise BackendError(
                "OPENROUTER_API_KEY not set. Add it to .env.local or set USE_MOCK=true."
            )
        self._model = model
        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=api_key,
            default_headers={"HTTP-Referer": site_url, "X-Title": site_name},
        )

    async def invoke(self, messages: list[Message], actions: list[Action]) -> BackendResponse:
        check_pairing(messages)
        request: dict[str, Any] = {
            "model": self._model,
            "messages": [_to_wire_message(m) for m in messages],
        }
        if actions:
            request["tools"] = [_to_wire_tool(a) for a in actions]

        response = await self._client.chat.completions.create(**request)
        return self._convert_response(response)

    def _convert_response(self, response: Any) -> BackendResponse:
        if not response.choices:
            raise BackendError("Backend returned no choices.")
        message = response.choices[0].message

        requests = [
            ActionRequest(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments, call.id),
            )
            for call in (message.tool_calls or [])
        ]

        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return BackendResponse(
            content=(message.content or "").strip(),
            action_requests=requests,
            usage=usage,
        )


# ---------------------------------------------------------------------------
# Scripted backend
# ---------------------------------------------------------------------------


class MockCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class MockStep(BaseModel):
    """One scripted backend reply."""

    content: str = ""
    calls: list[MockCall] = Field(default_factory=list)


def _done_call(payload: dict[str, Any]) -> MockCall:
    return MockCall(name="done", arguments={"result": json.dumps(payload)})


SCENARIOS: dict[str, list[MockStep]] = {
    # search → reviews for the top hit → done
    "basic_search": [
        MockStep(calls=[MockCall(name="search_products", arguments={"query": "programming", "max_price": 1500})]),
        MockStep(calls=[MockCall(name="get_reviews", arguments={"product_id": "laptop-001"})]),
        MockStep(
            calls=[
                _done_call(
                    {
                        "recommendation": "laptop-001",
                        "reasoning": "Best keyboard for programming, within budget",
                        "confidence": 0.85,
                    }
                )
            ]
        ),
    ],
    # search → compare → two reviews in one turn → done
    "comparison": [
        MockStep(
            calls=[
                MockCall(
                    name="search_products",
                    arguments={"query": "programming", "max_price": 1500},
                )
            ]
        ),
        MockStep(
            calls=[
                MockCall(
                    name="compare_specs",
                    arguments={"product_ids": ["laptop-001", "laptop-003", "laptop-007"]},
                )
            ]
        ),
        MockStep(
            calls=[
                MockCall(name="get_reviews", arguments={"product_id": "laptop-001"}),
                MockCall(name="get_reviews", arguments={"product_id": "laptop-003"}),
            ]
        ),
        MockStep(
            calls=[
                _done_call(
                    {
                        "recommendation": "laptop-003",
                        "reasoning": "Best value overall; laptop-001 if the keyboard matters most.",
                        "confidence": 0.9,
                        "alternatives": [{"id": "laptop-001", "reason": "Better keyboard"}],
                    }
                )
            ]
        ),
    ],
}


class MockBackend:
    """Replays a scripted scenario, one step per invoke()."""

    def __init__(self, scenario: list[MockStep] | None = None) -> None:
        self._scenario = list(scenario if scenario is not None else SCENARIOS["basic_search"])
        self._step = 0
        self.call_log: list[dict[str, Any]] = []

    async def invoke(self, messages: list[Message], actions: list[Action]) -> BackendResponse:
        if self._step >= len(self._scenario):
            step = MockStep(calls=[_done_call({"recommendation": None, "reasoning": "Scenario exhausted"})])
            prefix = "mock-fallback"
        else:
            step = self._scenario[self._step]
            prefix = f"mock-{self._step + 1}"
        self._step += 1

        prompt_tokens = sum(len(m.content) for m in messages) // 4
        response = BackendResponse(
            content=step.content,
            action_requests=[
                ActionRequest(id=f"{prefix}-{i}", name=call.name, arguments=call.arguments)
                for i, call in enumerate(step.calls)
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=100,
                total_tokens=prompt_tokens + 100,
            ),
        )
        self.call_log.append({"messages": list(messages), "response": response})
        return response

    def reset(self) -> None:
        self._step = 0
        self.call_log = []

    def set_scenario(self, scenario: list[MockStep]) -> None:
        self._scenario = list(scenario)
        self.reset()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_backend(config: AgentConfig) -> Backend:
    """Build the backend selected by `config`. No process-wide selection state."""
    if config.backend == "mock":
        if config.mock_scenario not in SCENARIOS:
            raise ValueError(
                f"Unknown mock scenario {config.mock_scenario!r}. "
                f"Available: {', '.join(sorted(SCENARIOS))}"
            )
        return MockBackend(SCENARIOS[config.mock_scenario])
    return OpenRouterBackend(model=config.model, api_key=config.api_key)
