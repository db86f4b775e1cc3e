# events.py
# Append-only event log and the fold that derives run state from it.
#
# The log is the only object shared between concurrently running writers.
# Derived state is never stored: every read folds the full sequence again.
#
# Persisted format: one JSON object per line, full-file rewrite per append.

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Event vocabulary
# ---------------------------------------------------------------------------


class _BaseEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float | None = Field(
        default=None, description="Epoch seconds. Assigned by EventLog.append."
    )


class RunStarted(_BaseEvent):
    kind: Literal["run_started"] = "run_started"
    task: str
    actions: list[str] = Field(default_factory=list)


class ActionInvoked(_BaseEvent):
    kind: Literal["action_invoked"] = "action_invoked"
    request_id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ActionCompleted(_BaseEvent):
    kind: Literal["action_completed"] = "action_completed"
    request_id: str
    name: str
    result: str
    success: bool
    duration_ms: int = 0


class VariableChanged(_BaseEvent):
    kind: Literal["variable_changed"] = "variable_changed"
    key: str
    old_value: Any = None
    new_value: Any = None


class RunCompleted(_BaseEvent):
    kind: Literal["run_completed"] = "run_completed"
    result: str
    success: bool
    iterations: int
    duration_ms: int = 0


class ErrorOccurred(_BaseEvent):
    kind: Literal["error_occurred"] = "error_occurred"
    message: str
    recoverable: bool
    context: dict[str, Any] = Field(default_factory=dict)


Event = Annotated[
    Union[RunStarted, ActionInvoked, ActionCompleted, VariableChanged, RunCompleted, ErrorOccurred],
    Field(discriminator="kind"),
]

_EVENT_ADAPTER = TypeAdapter(Event)


def parse_event(raw: str) -> Event:
    """Decode one persisted JSON line into its event variant."""
    return _EVENT_ADAPTER.validate_json(raw)


# ---------------------------------------------------------------------------
# Derived state
# ---------------------------------------------------------------------------


class ActionStats(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class RunState(BaseModel):
    """Run state computed by folding over the event sequence."""

    status: Literal["running", "completed", "failed"] = "running"
    task: str = ""
    start_time: float | None = None
    end_time: float | None = None
    iterations: int = 0
    actions: ActionStats = Field(default_factory=ActionStats)
    by_action: dict[str, ActionStats] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    result: str | None = None


def derive_state(events: list[Event]) -> RunState:
    """
    Fold the event sequence into a RunState.

    Pure: the same sequence always yields an equal state, and the input
    list is never mutated.
    """
    state = RunState()

    for event in events:
        if isinstance(event, RunStarted):
            state.status = "running"
            state.task = event.task
            state.start_time = event.timestamp
            state.end_time = None
            state.result = None

        elif isinstance(event, ActionInvoked):
            state.actions.total += 1
            state.by_action.setdefault(event.name, ActionStats()).total += 1

        elif isinstance(event, ActionCompleted):
            per_action = state.by_action.setdefault(event.name, ActionStats())
            if event.success:
                state.actions.succeeded += 1
                per_action.succeeded += 1
            else:
                state.actions.failed += 1
                per_action.failed += 1

        elif isinstance(event, VariableChanged):
            state.variables[event.key] = event.new_value

        elif isinstance(event, RunCompleted):
            state.status = "completed" if event.success else "failed"
            state.end_time = event.timestamp
            state.iterations = event.iterations
            state.result = event.result

        elif isinstance(event, ErrorOccurred):
            state.errors.append(event.message)
            if not event.recoverable:
                state.status = "failed"

        else:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")

    return state


# ---------------------------------------------------------------------------
# EventLog
# ---------------------------------------------------------------------------


_PATH_LOCKS: dict[Path, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """One lock per resolved file, shared by every EventLog over that file."""
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(path.resolve(), threading.Lock())


class EventLog:
    """
    Append-only event store with optional JSONL persistence.

    Without a path the store is the in-memory list. With a path the file is
    the store: every handle over the same file reads it back before reading
    or appending, so appends from one handle are visible to all of them.

    Example:
        log = EventLog("./events.jsonl")
        log.append(RunStarted(task="Find a laptop", actions=["search_products"]))
        print(log.summary())
    """

    def __init__(self, persist_path: str | os.PathLike | None = None) -> None:
        self._path = Path(persist_path) if persist_path else None
        self._events: list[Event] = []
        self._lock = _lock_for(self._path) if self._path is not None else threading.Lock()
        self._last_timestamp = 0.0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, event: Event) -> Event:
        """
        Stamp and append one event. With a persist path configured, the file
        is rewritten before this returns; if the write fails nothing is kept.
        """
        with self._lock:
            self._sync()
            timestamp = max(time.time(), self._last_timestamp)
            stamped = event.model_copy(update={"timestamp": timestamp})
            events = [*self._events, stamped]
            if self._path is not None:
                self._write(events)
            self._events = events
            self._last_timestamp = timestamp
        return stamped

    def set_variable(self, key: str, value: Any) -> Event:
        """Record a variable change, taking the old value from derived state."""
        old_value = self.derive().variables.get(key)
        return self.append(VariableChanged(key=key, old_value=old_value, new_value=value))

    def clear(self) -> None:
        with self._lock:
            if self._path is not None:
                self._write([])
            self._events = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[Event]:
        with self._lock:
            self._sync()
            return list(self._events)

    def since(self, timestamp: float) -> list[Event]:
        """Events stamped strictly after `timestamp`, in append order."""
        return [e for e in self.all() if e.timestamp is not None and e.timestamp > timestamp]

    def filter(self, kind: str) -> list[Event]:
        return [e for e in self.all() if e.kind == kind]

    def derive(self) -> RunState:
        return derive_state(self.all())

    @property
    def state(self) -> RunState:
        return self.derive()

    def __len__(self) -> int:
        return len(self.all())

    def summary(self) -> str:
        """Human-readable digest of the derived state."""
        state = self.derive()
        if state.start_time is None:
            duration_ms = 0
        else:
            end = state.end_time if state.end_time is not None else time.time()
            duration_ms = int((end - state.start_time) * 1000)

        lines = [
            f"Status: {state.status}",
            f"Task: {state.task}",
            f"Iterations: {state.iterations}",
            f"Action Calls: {state.actions.total} "
            f"({state.actions.succeeded} ok, {state.actions.failed} failed)",
            f"Duration: {duration_ms}ms",
        ]
        if state.errors:
            lines.append(f"Errors: {', '.join(state.errors)}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist(self) -> None:
        if self._path is None:
            return
        with self._lock:
            self._sync()
            self._write(self._events)

    def load(self) -> None:
        """Replace in-memory events with the persisted ones. Missing file = empty log."""
        with self._lock:
            self._sync()

    def _sync(self) -> None:
        """Refresh from the file. Caller holds the lock; no-op for in-memory logs."""
        if self._path is None:
            return
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            content = ""

        self._events = [parse_event(line) for line in content.splitlines() if line.strip()]
        self._last_timestamp = max(
            [self._last_timestamp, *(e.timestamp for e in self._events if e.timestamp is not None)]
        )

    def _write(self, events: list[Event]) -> None:
        """Atomic full rewrite: temp file in the same directory, then rename."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{self._path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                for event in events:
                    fh.write(event.model_dump_json())
                    fh.write("\n")
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
