"""Uplink CLI.

Usage:
    uplink serve                          # Relay server on 127.0.0.1:4096
    uplink serve --port 8080 --cwd ~/src  # Custom port and agent working dir
    uplink serve --agent-command "python -m uplink.mock_agent"

    uplink mock-agent                     # Reference agent on stdio
    uplink prompt "simple"                # One prompt through a running server
    uplink prompt "permission" --deny     # Answer permission requests with reject
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import httpx

from .acp.conversation import PermissionRequest
from .config import ServerConfig, parse_agent_command
from .mock_agent.stdio import configure_stderr_logging, run_stdio_agent

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@click.group()
@click.option("--log-level", default="INFO", help="Logging level (stderr)")
def main(log_level: str) -> None:
    """Uplink - WebSocket relay between a chat UI and an ACP agent process."""
    logging.basicConfig(stream=sys.stderr, level=log_level.upper(), format=LOG_FORMAT)


@main.command()
@click.option("--host", default=None, help="Host to bind to [env: UPLINK_HOST]")
@click.option("--port", default=None, type=int, help="Port to bind to [env: UPLINK_PORT]")
@click.option(
    "--cwd",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Working directory for the agent [env: UPLINK_CWD]",
)
@click.option("--agent-command", default=None, help="Agent command line [env: COPILOT_COMMAND]")
def serve(host: str | None, port: int | None, cwd: str | None, agent_command: str | None) -> None:
    """Run the relay server."""
    import uvicorn

    from .app import create_app

    config = ServerConfig.from_env()
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if cwd is not None:
        config.cwd = cwd
    if agent_command is not None:
        config.agent_command = parse_agent_command(agent_command)

    click.echo(f"Starting uplink on http://{config.host}:{config.port}", err=True)
    click.echo(f"  Agent: {' '.join(config.agent_command)}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(create_app(config), host=config.host, port=config.port)


@click.command("mock-agent")
@click.option("--stream-interval", default=0.1, type=float, help="Seconds between stream chunks")
@click.option("--chunk-delay", default=0.0, type=float, help="Seconds before each chunk")
@click.option("--acp", is_flag=True, hidden=True)
@click.option("--stdio", is_flag=True, hidden=True)
def mock_agent(stream_interval: float, chunk_delay: float, acp: bool, stdio: bool) -> None:
    """Run the reference agent on stdin/stdout."""
    configure_stderr_logging()
    try:
        asyncio.run(run_stdio_agent(chunk_delay=chunk_delay, stream_interval=stream_interval))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


main.add_command(mock_agent)


@main.command()
@click.argument("text")
@click.option("--url", default="http://127.0.0.1:4096", help="Server URL")
@click.option(
    "--allow/--deny",
    default=True,
    help="Answer permission requests with the first allow (or reject) option",
)
def prompt(text: str, url: str, allow: bool) -> None:
    """Send one prompt through a running server and print the reply."""
    try:
        stop_reason = asyncio.run(_run_prompt(text, url, allow))
    except httpx.ConnectError:
        click.echo(f"Cannot connect to server at {url}", err=True)
        sys.exit(1)
    click.echo(f"\n[{stop_reason}]", err=True)


async def _run_prompt(text: str, url: str, allow: bool) -> str:
    from .sdk import UplinkClient

    def answer(request: PermissionRequest) -> None:
        wanted = "allow" if allow else "reject"
        option = next((o for o in request.options if o.kind.startswith(wanted)), None)
        click.echo(f"\n[permission] {request.title}: {option.name if option else 'cancelled'}", err=True)
        if option is None:
            client.acp.cancel_permissions()
        else:
            client.select_permission(request.request_id, option.optionId)

    client = UplinkClient(url, on_permission=answer)

    async with client:
        printed = 0

        def echo_new_text() -> None:
            nonlocal printed
            agent_text = client.conversation.agent_text
            click.echo(agent_text[printed:], nl=False)
            printed = len(agent_text)

        await client.initialize()
        await client.new_session()
        unsubscribe = client.conversation.on_change(echo_new_text)
        try:
            return await client.prompt(text)
        finally:
            unsubscribe()


if __name__ == "__main__":
    main()
