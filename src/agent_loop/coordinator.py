# coordinator.py
# One level of delegation: analyze → delegate → aggregate.
#
# The Coordinator plans subtasks and hands each one to a Worker. A Worker
# calls exactly one action and has no reference to other workers or to the
# coordinator, so delegation depth is bounded at one.
#
# Review subtasks spawned by a search fan out concurrently and are joined
# before the compare subtask runs. Every subtask, including ones without a
# worker, leaves an invoked/completed pair on the event log.

import asyncio
import json
import re
import time
from typing import Any, Iterable, Mapping, Protocol

from agent_loop import display
from agent_loop.config import AgentConfig
from agent_loop.events import (
    ActionCompleted,
    ActionInvoked,
    ErrorOccurred,
    EventLog,
    RunCompleted,
    RunStarted,
)
from agent_loop.models import (
    Action,
    ActionOutcome,
    Alternative,
    CoordinationResult,
    Recommendation,
    Subtask,
    SubtaskKind,
    Task,
    WorkerOutcome,
    build_registry,
)

DEFAULT_KIND_ACTIONS: dict[str, str] = {
    "search": "search_products",
    "review": "get_reviews",
    "compare": "compare_specs",
}

USE_CASES = ("programming", "gaming", "video editing", "business", "student")

_PRICE_RE = re.compile(r"under\s*\$?(\d+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Identifier extraction
# ---------------------------------------------------------------------------


class IdentifierExtractor(Protocol):
    def extract(self, text: str) -> list[str]: ...


class RegexExtractor:
    """Finds identifiers in free text. Unique, in order of first appearance."""

    def __init__(self, pattern: str = r"laptop-\d{3}") -> None:
        self._pattern = re.compile(pattern)

    def extract(self, text: str) -> list[str]:
        return list(dict.fromkeys(self._pattern.findall(text)))


def extract_search_params(description: str) -> dict[str, Any]:
    """Pull a price ceiling and a use-case query out of a task description."""
    params: dict[str, Any] = {}

    match = _PRICE_RE.search(description)
    if match:
        params["max_price"] = int(match.group(1))

    lowered = description.lower()
    for use_case in USE_CASES:
        if use_case in lowered:
            params["query"] = use_case
            break

    return params


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class Worker:
    """Executes a single subtask through a single action. Holds no run state."""

    def __init__(
        self,
        action: Action,
        event_log: EventLog | None = None,
        result_preview_chars: int = 500,
    ) -> None:
        self.action = action
        self._event_log = event_log
        self._preview_chars = result_preview_chars

    async def execute(self, subtask: Subtask) -> WorkerOutcome:
        started = time.perf_counter()
        if self._event_log is not None:
            self._event_log.append(
                ActionInvoked(
                    request_id=subtask.id, name=self.action.name, arguments=subtask.parameters
                )
            )

        try:
            outcome = await self.action.execute(subtask.parameters)
        except Exception as exc:
            outcome = ActionOutcome.error(f"Error: {self.action.name} failed: {exc}")

        duration_ms = _elapsed_ms(started)
        if self._event_log is not None:
            self._event_log.append(
                ActionCompleted(
                    request_id=subtask.id,
                    name=self.action.name,
                    result=outcome.text[: self._preview_chars],
                    success=outcome.success,
                    duration_ms=duration_ms,
                )
            )

        return WorkerOutcome(
            subtask_id=subtask.id,
            kind=subtask.kind,
            success=outcome.success,
            output=outcome.text,
            data=outcome.data,
            duration_ms=duration_ms,
        )


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class Coordinator:
    """
    Plans, dispatches and aggregates subtasks for a purchase-advice task.

    Example:
        coordinator = Coordinator(TOOLS, event_log=EventLog())
        result = await coordinator.coordinate("Find a laptop under $1500 for programming")
        print(result.result.recommendation, result.summary)
    """

    def __init__(
        self,
        actions: Mapping[str, Action] | Iterable[Action],
        event_log: EventLog | None = None,
        config: AgentConfig | None = None,
        extractor: IdentifierExtractor | None = None,
        kind_actions: Mapping[str, str] | None = None,
    ) -> None:
        registry = dict(actions) if isinstance(actions, Mapping) else build_registry(list(actions))
        self._config = config or AgentConfig()
        self._event_log = event_log
        self._extractor = extractor or RegexExtractor()
        self._kind_actions = dict(kind_actions or DEFAULT_KIND_ACTIONS)
        self.workers: dict[str, Worker] = {
            name: Worker(action, event_log, self._config.result_preview_chars)
            for name, action in registry.items()
            if name != self._config.terminator
        }

    def _show(self, fn, *args) -> None:
        if self._config.verbose:
            fn(*args)

    # ------------------------------------------------------------------
    # Phase 1: analyze
    # ------------------------------------------------------------------

    def analyze(self, task: Task) -> list[Subtask]:
        """Always yields the search subtask, even when nothing can be extracted."""
        return [
            Subtask(
                id=f"{task.id}-search",
                parent_id=task.id,
                description="Search for matching products",
                kind="search",
                parameters=extract_search_params(task.description),
            )
        ]

    # ------------------------------------------------------------------
    # Phase 2: delegate
    # ------------------------------------------------------------------

    def candidates(self, outcome: WorkerOutcome) -> list[str]:
        """Candidate ids from a search outcome: structured data first, text second."""
        if isinstance(outcome.data, dict) and isinstance(outcome.data.get("ids"), list):
            return [str(i) for i in outcome.data["ids"]]
        return self._extractor.extract(outcome.output)

    async def _run_subtask(self, subtask: Subtask) -> WorkerOutcome:
        self._show(display.subtask_dispatched, subtask)
        action_name = self._kind_actions.get(subtask.kind, subtask.kind)
        worker = self.workers.get(action_name)
        if worker is not None:
            return await worker.execute(subtask)

        message = f"No worker available for subtask kind: {subtask.kind}"
        if self._event_log is not None:
            self._event_log.append(
                ActionInvoked(request_id=subtask.id, name=action_name, arguments=subtask.parameters)
            )
            self._event_log.append(
                ActionCompleted(
                    request_id=subtask.id,
                    name=action_name,
                    result=message,
                    success=False,
                    duration_ms=0,
                )
            )
        return WorkerOutcome(subtask_id=subtask.id, kind=subtask.kind, success=False, output=message)

    async def delegate(self, subtasks: list[Subtask]) -> list[WorkerOutcome]:
        outcomes: list[WorkerOutcome] = []

        for subtask in subtasks:
            outcome = await self._run_subtask(subtask)
            outcomes.append(outcome)

            if subtask.kind != "search" or not outcome.success:
                continue

            ids = self.candidates(outcome)
            if self._event_log is not None:
                self._event_log.set_variable("candidates", ids)

            reviews = [
                self._follow_up(subtask, f"review-{i}", "review", f"Get reviews for {pid}", {"product_id": pid})
                for i, pid in enumerate(ids[: self._config.max_reviews])
            ]
            outcomes.extend(await asyncio.gather(*(self._run_subtask(r) for r in reviews)))

            if len(ids) >= 2:
                compare = self._follow_up(
                    subtask,
                    "compare",
                    "compare",
                    "Compare top products",
                    {"product_ids": ids[: self._config.max_compare]},
                )
                outcomes.append(await self._run_subtask(compare))

        return outcomes

    @staticmethod
    def _follow_up(
        parent: Subtask, suffix: str, kind: SubtaskKind, description: str, parameters: dict
    ) -> Subtask:
        return Subtask(
            id=f"{parent.parent_id}-{suffix}",
            parent_id=parent.parent_id,
            description=description,
            kind=kind,
            parameters=parameters,
        )

    # ------------------------------------------------------------------
    # Phase 3: aggregate
    # ------------------------------------------------------------------

    def aggregate(self, task: Task, outcomes: list[WorkerOutcome]) -> CoordinationResult:
        succeeded = [o for o in outcomes if o.success]
        failed = [o for o in outcomes if not o.success]

        search = next((o for o in outcomes if o.kind == "search" and o.success), None)
        reviews = [o for o in outcomes if o.kind == "review" and o.success]
        compared = any(o.kind == "compare" and o.success for o in outcomes)

        ids = self.candidates(search) if search is not None else []

        if ids:
            confidence = 0.7
            for review in reviews:
                if "5/5" in review.output:
                    confidence = min(confidence + 0.1, 0.95)

            sources = ["search results"]
            if reviews:
                sources.append("user reviews")
            if compared:
                sources.append("spec comparison")
            recommendation = Recommendation(
                recommendation=ids[0],
                reasoning=(
                    f"Based on {', '.join(sources)}, this product best matches your requirements. "
                    f"({len(succeeded)}/{len(outcomes)} subtasks completed successfully)"
                ),
                confidence=round(confidence, 2),
                alternatives=[
                    Alternative(id=pid, reason="Also matches your criteria") for pid in ids[1:3]
                ],
            )
        else:
            recommendation = Recommendation(
                recommendation=None,
                reasoning="No candidate products could be identified from the search results.",
                confidence=0.0,
                degraded=True,
            )

        if failed:
            summary = (
                f"Completed {len(succeeded)}/{len(outcomes)} subtasks. "
                f"Failures: {', '.join(sorted(o.subtask_id for o in failed))}"
            )
        else:
            summary = f"Successfully completed {len(succeeded)} subtasks"

        return CoordinationResult(
            task_id=task.id,
            success=not failed,
            summary=summary,
            outcomes=list(outcomes),
            total_duration_ms=sum(o.duration_ms for o in outcomes),
            result=recommendation,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def coordinate(self, task: Task | str) -> CoordinationResult:
        if isinstance(task, str):
            task = Task(id=f"task-{int(time.time() * 1000)}", description=task)

        started = time.perf_counter()
        if self._event_log is not None:
            self._event_log.append(RunStarted(task=task.description, actions=list(self.workers)))
        self._show(display.banner, "COORDINATOR", task.description, list(self.workers))

        self._show(display.coordinator_phase, "analyze")
        subtasks = self.analyze(task)

        self._show(display.coordinator_phase, "delegate", f"{len(subtasks)} initial subtask(s)")
        outcomes = await self.delegate(subtasks)
        self._show(display.outcomes_table, outcomes)

        self._show(display.coordinator_phase, "aggregate")
        result = self.aggregate(task, outcomes)
        result.total_duration_ms = _elapsed_ms(started)

        if self._event_log is not None:
            if not result.success:
                self._event_log.append(
                    ErrorOccurred(message=result.summary, recoverable=True, context={"task_id": task.id})
                )
            self._event_log.append(
                RunCompleted(
                    result=json.dumps(
                        {
                            "recommendation": result.result.recommendation,
                            "confidence": result.result.confidence,
                        }
                    ),
                    success=result.success,
                    iterations=len(outcomes),
                    duration_ms=result.total_duration_ms,
                )
            )

        return result
