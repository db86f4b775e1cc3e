# display.py
# All terminal output for the agent loop and the coordinator.
#
# This module owns presentation entirely. loop.py and coordinator.py never
# format strings for the operator: they call named functions here, and only
# when tracing is enabled in their config.
#
# Colour language:
#   cyan   : loop / coordinator scaffolding
#   blue   : decision backend responses
#   magenta: action calls and results
#   green  : success / completion
#   yellow : degraded or budget-limited outcomes
#   red    : failures and halts

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from agent_loop.events import RunState
from agent_loop.models import Recommendation, Subtask, WorkerOutcome

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _first_line(value: str) -> str:
    return value.split("\n", 1)[0]


# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------


def banner(title: str, task: str, action_names: list[str]) -> None:
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{title}[/bold cyan]\n\n"
            f"[dim]Task    :[/dim] [white]{escape(task)}[/white]\n"
            f"[dim]Actions :[/dim] [white]{', '.join(action_names) or '—'}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def iteration_start(iteration: int, max_iterations: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]ITERATION {iteration}/{max_iterations}[/cyan]", style="cyan"))


def backend_text(content: str) -> None:
    console.print(
        _label("BACKEND", "blue"),
        f"[blue] No action requested:[/blue] [white]{_mono(content, 100)}[/white]",
    )


def action_call(name: str, arguments: dict) -> None:
    console.print(
        f"  [magenta]→[/magenta] [bold white]{name}[/bold white]"
        f"  [dim]{_mono(json.dumps(arguments, default=str), 100)}[/dim]"
    )


def action_result(name: str, text: str, success: bool) -> None:
    colour = "green" if success else "red"
    mark = "←" if success else "✗"
    console.print(
        f"  [{colour}]{mark}[/{colour}] [dim]{name}:[/dim] "
        f"[white]{_mono(_first_line(text), 100)}[/white]"
    )


def unknown_action(name: str) -> None:
    console.print(
        f"  [bold red]✗ Unknown action[/bold red] [white]{name!r}[/white]"
        "  [dim]reported back to the backend; run continues.[/dim]"
    )


def terminated(result: str) -> None:
    console.print()
    console.print(
        _label("LOOP", "green"),
        f"[green] Terminator called — run completed.[/green] [dim]{_mono(result, 80)}[/dim]",
    )


def budget_exhausted(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold yellow]{escape(message)}[/bold yellow]",
            title=_label("BUDGET EXHAUSTED", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


def backend_failure(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]Decision backend failed.[/bold red]\n\n[white]{escape(message)}[/white]",
            title=_label("BACKEND FAILURE ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


def coordinator_phase(phase: str, detail: str = "") -> None:
    console.print()
    console.print(Rule(f"[cyan]{phase.upper()}[/cyan]", style="cyan"))
    if detail:
        console.print(f"[dim]  {detail}[/dim]")


def subtask_dispatched(subtask: Subtask) -> None:
    console.print(
        f"  [cyan]↳[/cyan] [bold white]{subtask.id}[/bold white]"
        f"  [dim]{subtask.kind} {_mono(json.dumps(subtask.parameters, default=str), 80)}[/dim]"
    )


def outcomes_table(outcomes: list[WorkerOutcome]) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Subtask", style="white")
    table.add_column("Kind", width=8)
    table.add_column("OK", justify="center", width=4)
    table.add_column("ms", justify="right", width=6)
    table.add_column("Output", style="dim white")

    for outcome in outcomes:
        ok = "[bold green]✓[/bold green]" if outcome.success else "[bold red]✗[/bold red]"
        table.add_row(
            outcome.subtask_id,
            outcome.kind or "—",
            ok,
            str(outcome.duration_ms),
            _mono(_first_line(outcome.output), 60),
        )

    console.print(
        Panel(table, title="[dim]SUBTASK RESULTS[/dim]", border_style="dim", padding=(0, 1))
    )


def recommendation(rec: Recommendation, product_name: str | None = None) -> None:
    colour = "yellow" if rec.degraded else "green"
    lines = [
        f"[bold white]Recommended:[/bold white] {product_name or rec.recommendation or '—'}",
        f"[dim]Confidence:[/dim] {rec.confidence * 100:.0f}%",
        f"[dim]Reasoning:[/dim] {escape(rec.reasoning)}",
    ]
    for alt in rec.alternatives:
        lines.append(f"  [dim]- {alt.id}: {alt.reason}[/dim]")
    if rec.degraded:
        lines.append("[yellow]No candidate could be identified — low-confidence result.[/yellow]")

    console.print()
    console.print(
        Panel(
            "\n".join(lines),
            title=_label("RECOMMENDATION", colour),
            border_style=colour,
            padding=(1, 2),
        )
    )


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------


def event_summary(state: RunState, summary: str) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold dim", padding=(0, 1))
    table.add_column("Action", style="white")
    table.add_column("Calls", justify="right")
    table.add_column("OK", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")

    for name, stats in sorted(state.by_action.items()):
        table.add_row(name, str(stats.total), str(stats.succeeded), str(stats.failed))

    colour = {"completed": "green", "failed": "red"}.get(state.status, "cyan")
    console.print(
        Panel(
            f"[white]{escape(summary)}[/white]",
            title=_label("EVENT LOG SUMMARY", colour),
            border_style=colour,
            padding=(0, 2),
        )
    )
    if state.by_action:
        console.print(table)


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result)}[/white]",
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
