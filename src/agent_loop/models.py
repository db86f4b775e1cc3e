# models.py
# Data contracts for the agent loop, the coordinator and their collaborators.
# No control flow lives here: schema, validation and small constructors only.

import asyncio
import inspect
import json
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class ActionRequest(BaseModel):
    """Backend-issued instruction to run one action."""

    id: str = Field(..., description="Identifier the action result must echo back.")
    name: str = Field(..., description="Action name, looked up in the registry.")
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One turn of the conversation handed to the decision backend."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    action_requests: list[ActionRequest] = Field(default_factory=list)
    request_id: str | None = Field(
        default=None, description="For tool turns: the ActionRequest.id being answered."
    )

    @model_validator(mode="after")
    def _check_role_fields(self) -> "Message":
        if self.role == "tool" and not self.request_id:
            raise ValueError("tool messages must reference a request_id")
        if self.role != "assistant" and self.action_requests:
            raise ValueError("only assistant messages may carry action requests")
        return self


def check_pairing(messages: list[Message]) -> None:
    """
    Verify every tool message answers an id announced by an earlier
    assistant message. Raises ValueError on the first orphan.
    """
    announced: set[str] = set()
    for index, message in enumerate(messages):
        if message.role == "assistant":
            announced.update(request.id for request in message.action_requests)
        elif message.role == "tool" and message.request_id not in announced:
            raise ValueError(
                f"Message {index} answers request {message.request_id!r} "
                "which no preceding assistant message announced."
            )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class ActionOutcome(BaseModel):
    """
    Result of executing one action.

    `terminate` is the control variant produced only by the terminator
    action; the loop matches on it instead of catching a signal.
    """

    kind: Literal["ok", "error", "terminate"] = "ok"
    text: str = ""
    data: Any = None

    @property
    def success(self) -> bool:
        return self.kind != "error"

    @classmethod
    def ok(cls, text: str, data: Any = None) -> "ActionOutcome":
        return cls(kind="ok", text=text, data=data)

    @classmethod
    def error(cls, text: str) -> "ActionOutcome":
        return cls(kind="error", text=text)

    @classmethod
    def terminate(cls, text: str) -> "ActionOutcome":
        return cls(kind="terminate", text=text)

    @classmethod
    def from_result(cls, value: Any) -> "ActionOutcome":
        """Normalise whatever a handler returned into an outcome."""
        if isinstance(value, ActionOutcome):
            return value
        if isinstance(value, str):
            if value.startswith("Error"):
                return cls.error(value)
            return cls.ok(value)
        if value is None:
            return cls.ok("")
        return cls.ok(json.dumps(value, default=str), data=value)


class Action(BaseModel):
    """A named, schema-described operation the backend may request."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    handler: Callable[[dict[str, Any]], Any] = Field(..., exclude=True)

    async def execute(self, arguments: dict[str, Any]) -> ActionOutcome:
        """
        Run the handler and normalise its return value.

        Synchronous handlers run in a worker thread. Handler exceptions propagate.
        """
        if inspect.iscoroutinefunction(self.handler):
            result = await self.handler(arguments)
        else:
            result = await asyncio.to_thread(self.handler, arguments)
            if inspect.isawaitable(result):
                result = await result
        return ActionOutcome.from_result(result)


def build_registry(actions: list[Action]) -> dict[str, Action]:
    """Index actions by name. Duplicate names are a wiring error."""
    registry: dict[str, Action] = {}
    for action in actions:
        if action.name in registry:
            raise ValueError(f"Duplicate action name: {action.name!r}")
        registry[action.name] = action
    return registry


# ---------------------------------------------------------------------------
# Backend response
# ---------------------------------------------------------------------------


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class BackendResponse(BaseModel):
    """What the decision backend returns for one query."""

    content: str = ""
    action_requests: list[ActionRequest] = Field(default_factory=list)
    done: bool = Field(
        default=False,
        description="Ignored by the loop; termination goes through the terminator action.",
    )
    usage: Usage | None = None


# ---------------------------------------------------------------------------
# Delegation
# ---------------------------------------------------------------------------

SubtaskKind = Literal["search", "review", "compare"]


class Task(BaseModel):
    id: str
    description: str
    context: dict[str, Any] = Field(default_factory=dict)


class Subtask(BaseModel):
    """A task fragment owned by exactly one parent task."""

    id: str
    parent_id: str
    description: str
    kind: SubtaskKind
    parameters: dict[str, Any] = Field(default_factory=dict)


class WorkerOutcome(BaseModel):
    subtask_id: str
    kind: SubtaskKind | None = None
    success: bool
    output: str = ""
    data: Any = None
    duration_ms: int = 0


class Alternative(BaseModel):
    id: str
    reason: str


class Recommendation(BaseModel):
    """Domain payload of a coordination run or a `done` call."""

    recommendation: str | None = None
    reasoning: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    alternatives: list[Alternative] = Field(default_factory=list)
    degraded: bool = Field(
        default=False, description="True when no candidate could be identified."
    )


class CoordinationResult(BaseModel):
    task_id: str
    success: bool
    summary: str
    outcomes: list[WorkerOutcome] = Field(default_factory=list)
    total_duration_ms: int = 0
    result: Recommendation = Field(default_factory=Recommendation)
