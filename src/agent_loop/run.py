# run.py
# Entry point. Config and wiring only, no logic lives here.
#
#   agent-loop "Find me a laptop under $1500 for programming"
#   agent-loop --coordinator "Find me a laptop under $1500 for programming"
#
# Backend, model and scenario come from the environment (see config.py).
# https://openrouter.ai/models

import asyncio
import sys

from agent_loop import display
from agent_loop.backends import BackendError, create_backend
from agent_loop.catalog import get_product
from agent_loop.config import load_config
from agent_loop.coordinator import Coordinator
from agent_loop.events import ErrorOccurred, EventLog
from agent_loop.loop import PURCHASE_ADVISOR_PROMPT, AgentLoop
from agent_loop.tools import TOOLS, parse_recommendation

DEFAULT_TASK = (
    "Find me a laptop under $1500 for programming. "
    "I need a good keyboard and at least 16GB RAM."
)


def _product_name(product_id: str | None) -> str | None:
    product = get_product(product_id) if product_id else None
    return product["name"] if product else None


async def _run_loop(task: str, config, event_log: EventLog) -> None:
    if config.system_prompt is None:
        config = config.model_copy(update={"system_prompt": PURCHASE_ADVISOR_PROMPT})
    loop = AgentLoop(create_backend(config), TOOLS, config, event_log)

    result = await loop.run(task)
    display.final_result(result)

    rec = parse_recommendation(result)
    if rec is not None:
        display.recommendation(rec, _product_name(rec.recommendation))


async def _run_coordinator(task: str, config, event_log: EventLog) -> None:
    coordinator = Coordinator(TOOLS, event_log=event_log, config=config)

    outcome = await coordinator.coordinate(task)
    display.final_result(outcome.summary)
    display.recommendation(outcome.result, _product_name(outcome.result.recommendation))


def main() -> None:
    args = sys.argv[1:]
    coordinator_mode = "--coordinator" in args
    args = [a for a in args if a != "--coordinator"]
    task = " ".join(args) or DEFAULT_TASK

    config = load_config()
    event_log = EventLog(config.event_log_path)
    # each invocation starts a fresh event file
    event_log.clear()

    try:
        if coordinator_mode:
            asyncio.run(_run_coordinator(task, config, event_log))
        else:
            asyncio.run(_run_loop(task, config, event_log))
    except BackendError as exc:
        if not event_log.filter("error_occurred"):
            event_log.append(ErrorOccurred(message=str(exc), recoverable=False))
        display.halt(str(exc))
        display.event_summary(event_log.state, event_log.summary())
        sys.exit(1)

    display.event_summary(event_log.state, event_log.summary())


if __name__ == "__main__":
    main()
