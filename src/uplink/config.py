"""Server configuration.

Values come from the environment and can be overridden by CLI options:

    UPLINK_HOST       bind address (default 127.0.0.1)
    UPLINK_PORT       bind port (default 4096)
    UPLINK_CWD        working directory handed to the agent (default: cwd)
    UPLINK_TOKEN_TTL  seconds a session token stays valid (default: no expiry)
    COPILOT_COMMAND   agent executable and leading arguments (shell syntax)
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field

from .process import DEFAULT_KILL_TIMEOUT, LaunchConfig

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4096
DEFAULT_AGENT_EXECUTABLE = "copilot"
AGENT_PROTOCOL_ARGS = ["--acp", "--stdio"]


def parse_agent_command(value: str | None) -> list[str]:
    """Split an agent command and append the ACP stdio arguments.

    Arguments already present are not repeated.
    """
    command = shlex.split(value) if value and value.strip() else [DEFAULT_AGENT_EXECUTABLE]
    return command + [arg for arg in AGENT_PROTOCOL_ARGS if arg not in command]


@dataclass
class ServerConfig:
    """Configuration of one uplink server."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cwd: str = field(default_factory=os.getcwd)
    agent_command: list[str] = field(default_factory=lambda: parse_agent_command(None))
    agent_env: dict[str, str] = field(default_factory=dict)
    token_ttl: float | None = None
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Build a config from environment variables.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ

        port = env.get("UPLINK_PORT")
        ttl = env.get("UPLINK_TOKEN_TTL")
        return cls(
            host=env.get("UPLINK_HOST", DEFAULT_HOST),
            port=int(port) if port else DEFAULT_PORT,
            cwd=env.get("UPLINK_CWD") or os.getcwd(),
            agent_command=parse_agent_command(env.get("COPILOT_COMMAND")),
            token_ttl=float(ttl) if ttl else None,
        )

    def launch_config(self) -> LaunchConfig:
        """How the bridge should start the agent for a new client."""
        return LaunchConfig(
            command=list(self.agent_command),
            cwd=self.cwd,
            env=dict(self.agent_env),
        )
