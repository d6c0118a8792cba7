"""Run the reference agent over stdin/stdout.

stdout carries protocol lines only; all logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import BinaryIO

from ..acp.codec import read_frames
from ..errors import TransportClosed
from .agent import MockAgent

logger = logging.getLogger(__name__)


def configure_stderr_logging(level: int = logging.INFO) -> None:
    """Send all logging to stderr so stdout stays clean for JSON-RPC."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(level)


async def run_stdio_agent(
    *,
    chunk_delay: float = 0.0,
    stream_interval: float = 0.1,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> None:
    """Serve one ACP connection on stdio until stdin closes."""
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, stdin)

    transport, proto = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
    writer = asyncio.StreamWriter(transport, proto, None, loop)

    async def write_line(line: str) -> None:
        if writer.is_closing():
            raise TransportClosed("stdout closed")
        try:
            writer.write(line.encode("utf-8") + b"\n")
            await writer.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportClosed(f"stdout closed: {e}") from e

    agent = MockAgent(write_line, chunk_delay=chunk_delay, stream_interval=stream_interval)
    logger.info("Mock agent ready (stdio)")

    try:
        async for frame in read_frames(reader):
            await agent.connection.dispatch(frame.envelope)
        logger.info("stdin closed, shutting down")
        await agent.connection.drain()
    finally:
        await agent.close()
        writer.close()
        with contextlib.suppress(Exception):
            await writer.wait_closed()
        logger.info("Shutdown complete")
