# loop.py
# The agent loop: observe → decide → act → repeat.
#
# The loop owns all control flow. The decision backend is a passive
# responder; actions are passive executors. Every step is recorded on the
# event log (when one is attached), and run state is derived from there.
#
# Control flow per iteration:
#   query backend → no actions? keep text, next iteration
#   → announce all requests in one assistant turn
#   → per request: invoked event → dispatch → tool turn → completed event
#   → terminate outcome ends the run
#
# Budget exhaustion is a normal return, not an exception.
# All terminal output is delegated to display.py: no formatting here.

import time
from typing import Callable, Iterable, Mapping

from agent_loop import display
from agent_loop.backends import Backend, BackendError
from agent_loop.config import AgentConfig
from agent_loop.events import (
    ActionCompleted,
    ActionInvoked,
    ErrorOccurred,
    Event,
    EventLog,
    RunCompleted,
    RunStarted,
)
from agent_loop.models import Action, ActionOutcome, ActionRequest, Message, build_registry


MAX_ITERATIONS_MESSAGE = (
    "Agent reached maximum iterations ({max_iterations}) without completing. "
    "Consider increasing max_iterations or simplifying the task."
)

PURCHASE_ADVISOR_PROMPT = """\
You are a Smart Purchase Advisor helping users find the best laptop for their needs.

Your tools:
- search_products: Search the catalog by criteria (query, price, tags)
- get_reviews: Get detailed reviews for a specific product
- compare_specs: Compare specifications of multiple products
- done: Complete the task with your recommendation

Process:
1. Understand the user's requirements (budget, use case, preferences)
2. Search for matching products
3. Review top candidates
4. Compare if needed
5. Make a recommendation with reasoning

Always use the done tool when finished, providing:
- recommendation: the product ID (e.g., "laptop-001")
- reasoning: why you chose this product
- confidence: 0-1 score
- alternatives: other options to consider\
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


# ---------------------------------------------------------------------------
# AgentLoop
# ---------------------------------------------------------------------------


class AgentLoop:
    """
    Iteration engine for a single tool-using agent.

    Example:
        loop = AgentLoop(MockBackend(), TOOLS, AgentConfig(max_iterations=10))
        result = await loop.run("Find a laptop under $1500 for programming")
    """

    def __init__(
        self,
        backend: Backend,
        actions: Mapping[str, Action] | Iterable[Action],
        config: AgentConfig | None = None,
        event_log: EventLog | None = None,
    ) -> None:
        self._backend = backend
        if isinstance(actions, Mapping):
            self._actions = dict(actions)
        else:
            self._actions = build_registry(list(actions))
        self._config = config or AgentConfig()
        self._event_log = event_log
        self.history: list[Message] = []

    @property
    def event_log(self) -> EventLog | None:
        return self._event_log

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _record(self, event: Event) -> None:
        if self._event_log is not None:
            self._event_log.append(event)

    def _show(self, fn: Callable, *args) -> None:
        if self._config.verbose:
            fn(*args)

    # ------------------------------------------------------------------
    # Action dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, request: ActionRequest) -> ActionOutcome:
        """
        Execute one action request and append its tool turn.

        Unknown actions and handler failures become error outcomes. They
        are reported to the backend, never raised.
        """
        started = time.perf_counter()
        self._record(
            ActionInvoked(request_id=request.id, name=request.name, arguments=request.arguments)
        )

        action = self._actions.get(request.name)
        if action is None:
            self._show(display.unknown_action, request.name)
            outcome = ActionOutcome.error(f'Error: Unknown action "{request.name}"')
        else:
            self._show(display.action_call, request.name, request.arguments)
            try:
                outcome = await action.execute(request.arguments)
            except Exception as exc:
                outcome = ActionOutcome.error(f"Error: {request.name} failed: {exc}")
            self._show(display.action_result, request.name, outcome.text, outcome.success)

        self.history.append(Message(role="tool", content=outcome.text, request_id=request.id))
        self._record(
            ActionCompleted(
                request_id=request.id,
                name=request.name,
                result=_preview(outcome.text, self._config.result_preview_chars),
                success=outcome.success,
                duration_ms=_elapsed_ms(started),
            )
        )
        return outcome

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, task: str) -> str:
        """
        Drive the loop until the terminator runs or the budget is spent.

        Returns the terminator's result, or the max-iterations advisory.
        Raises BackendError if the backend fails; the failure is recorded
        on the event log first.
        """
        started = time.perf_counter()
        max_iterations = self._config.max_iterations
        catalog = list(self._actions.values())

        self._record(RunStarted(task=task, actions=list(self._actions)))
        self._show(display.banner, "AGENT LOOP", task, list(self._actions))

        self.history = []
        if self._config.system_prompt:
            self.history.append(Message(role="system", content=self._config.system_prompt))
        self.history.append(Message(role="user", content=task))

        for iteration in range(1, max_iterations + 1):
            self._show(display.iteration_start, iteration, max_iterations)

            # ── 1. Decide ─────────────────────────────────────────────
            try:
                response = await self._backend.invoke(list(self.history), catalog)
            except Exception as exc:
                message = f"Backend failure at iteration {iteration}: {exc}"
                self._record(
                    ErrorOccurred(
                        message=message, recoverable=False, context={"iteration": iteration}
                    )
                )
                self._show(display.backend_failure, message)
                if isinstance(exc, BackendError):
                    raise
                raise BackendError(message) from exc

            # ── 2. Text only: keep it, ask again ──────────────────────
            if not response.action_requests:
                if response.content:
                    self.history.append(Message(role="assistant", content=response.content))
                    self._show(display.backend_text, response.content)
                continue

            # ── 3. Act: announce every request before any result ──────
            self.history.append(
                Message(
                    role="assistant",
                    content=response.content,
                    action_requests=list(response.action_requests),
                )
            )

            for request in response.action_requests:
                outcome = await self._dispatch(request)

                # ── 4. Terminator ends the run ────────────────────────
                if outcome.kind == "terminate":
                    self._record(
                        RunCompleted(
                            result=outcome.text,
                            success=True,
                            iterations=iteration,
                            duration_ms=_elapsed_ms(started),
                        )
                    )
                    self._show(display.terminated, outcome.text)
                    return outcome.text

        # ── 5. Budget exhausted ───────────────────────────────────────
        failure = MAX_ITERATIONS_MESSAGE.format(max_iterations=max_iterations)
        self._record(
            ErrorOccurred(
                message=failure, recoverable=True, context={"reason": "max_iterations"}
            )
        )
        self._record(
            RunCompleted(
                result=failure,
                success=False,
                iterations=max_iterations,
                duration_ms=_elapsed_ms(started),
            )
        )
        self._show(display.budget_exhausted, failure)
        return failure
