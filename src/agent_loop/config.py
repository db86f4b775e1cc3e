# config.py
# Explicit run configuration. The environment is read once, in load_config(),
# and never consulted again: engines and coordinators receive a value.

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODEL = "anthropic/claude-sonnet-4"


class AgentConfig(BaseModel):
    """Settings shared by the agent loop, the coordinator and the entry point."""

    max_iterations: int = Field(default=15, ge=1, description="Loop budget per run.")
    system_prompt: str | None = None
    verbose: bool = False

    backend: Literal["mock", "openrouter"] = "mock"
    model: str = DEFAULT_MODEL
    api_key: str | None = Field(default=None, repr=False)
    mock_scenario: str = "basic_search"

    event_log_path: str | None = None
    result_preview_chars: int = Field(
        default=500, ge=1, description="Action results are truncated to this in events."
    )

    terminator: str = Field(default="done", description="Name of the terminating action.")
    max_reviews: int = Field(default=3, ge=0)
    max_compare: int = Field(default=4, ge=2)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config(**overrides) -> AgentConfig:
    """
    Build an AgentConfig from .env, .env.local and the process environment.

    Recognised variables:
        USE_MOCK              "true" selects the scripted backend
        MOCK_SCENARIO         scenario name for the scripted backend
        OPENROUTER_API_KEY    API key for the OpenRouter backend
        OPENROUTER_MODEL      model string for the OpenRouter backend
        AGENT_MAX_ITERATIONS  loop budget
        AGENT_VERBOSE         "true" enables terminal tracing
        AGENT_EVENT_LOG       JSONL path for event persistence

    Keyword overrides win over the environment.
    """
    load_dotenv()
    load_dotenv(".env.local", override=True)

    values: dict = {
        "backend": "mock" if _env_flag("USE_MOCK") else "openrouter",
        "mock_scenario": os.getenv("MOCK_SCENARIO", "basic_search"),
        "api_key": os.getenv("OPENROUTER_API_KEY"),
        "model": os.getenv("OPENROUTER_MODEL") or DEFAULT_MODEL,
        "verbose": _env_flag("AGENT_VERBOSE", default=True),
        "event_log_path": os.getenv("AGENT_EVENT_LOG") or None,
    }
    max_iterations = os.getenv("AGENT_MAX_ITERATIONS")
    if max_iterations:
        values["max_iterations"] = int(max_iterations)

    values.update(overrides)
    return AgentConfig.model_validate(values)
