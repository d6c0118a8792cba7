"""Reference ACP agent with scripted scenarios."""

from .agent import (
    AGENT_INFO,
    PERMISSION_OPTIONS,
    SIMPLE_CHUNKS,
    TOOL_CALL_ID,
    MockAgent,
    Scenario,
    Turn,
    resolve_scenario,
)
from .stdio import configure_stderr_logging, run_stdio_agent

__all__ = [
    "AGENT_INFO",
    "PERMISSION_OPTIONS",
    "SIMPLE_CHUNKS",
    "TOOL_CALL_ID",
    "MockAgent",
    "Scenario",
    "Turn",
    "configure_stderr_logging",
    "resolve_scenario",
    "run_stdio_agent",
]
