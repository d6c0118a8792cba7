"""External agent process handle.

Launches the agent as a subprocess with piped stdio and exposes its stdout as
a stream of protocol frames.

Wire format:
- Client lines: one JSON-RPC envelope + newline to the process stdin
- Agent lines: one JSON-RPC envelope + newline from the process stdout
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .acp.codec import READ_CHUNK_SIZE, Frame, read_frames
from .errors import SpawnError, TransportClosed

logger = logging.getLogger(__name__)

DEFAULT_KILL_TIMEOUT = 5.0


@dataclass
class LaunchConfig:
    """How to start the agent process."""

    command: list[str]
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)

    def build_env(self) -> dict[str, str] | None:
        """Environment for the child: the overlay merged over ``os.environ``."""
        if not self.env:
            return None
        return {**os.environ, **self.env}


class AgentProcess:
    """A running agent subprocess.

    Usage:
        process = await AgentProcess.spawn(LaunchConfig(["copilot", "--acp", "--stdio"]))
        async for frame in process.frames():
            ...
        await process.terminate()
    """

    def __init__(self, process: asyncio.subprocess.Process, launch: LaunchConfig) -> None:
        self._process = process
        self.launch = launch
        self._stderr_task: asyncio.Task[None] | None = None
        self._terminated = False

        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._read_stderr())

    @classmethod
    async def spawn(cls, launch: LaunchConfig) -> AgentProcess:
        """Start the process.

        Raises:
            SpawnError: If the executable is missing, not executable, or the
                working directory is invalid.
        """
        if not launch.command:
            raise SpawnError(launch.command, "empty command")

        try:
            process = await asyncio.create_subprocess_exec(
                *launch.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=launch.cwd,
                env=launch.build_env(),
            )
        except OSError as e:
            raise SpawnError(launch.command, e.strerror or str(e)) from e

        logger.info(f"Launched agent: {' '.join(launch.command)} (pid={process.pid})")
        return cls(process, launch)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return not self._terminated and self._process.returncode is None

    async def send_line(self, line: str) -> None:
        """Write one protocol line to the process stdin.

        Raises:
            TransportClosed: If the process is gone or its stdin is closed.
        """
        stdin = self._process.stdin
        if not self.running or stdin is None or stdin.is_closing():
            raise TransportClosed(f"Agent process {self.pid} is not running")

        try:
            stdin.write(line.encode("utf-8") + b"\n")
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportClosed(f"Agent process {self.pid} stdin closed: {e}") from e

    async def frames(self) -> AsyncIterator[Frame]:
        """Yield protocol frames from stdout until the process closes it."""
        if self._process.stdout is None:
            raise TransportClosed("Agent process has no stdout")
        async for frame in read_frames(self._process.stdout):
            yield frame

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate(self, timeout: float = DEFAULT_KILL_TIMEOUT) -> None:
        """Stop the process: terminate, then kill after ``timeout``.

        Safe to call more than once; never blocks longer than about twice
        ``timeout``.
        """
        if self._terminated:
            return
        self._terminated = True

        if self._process.stdin is not None and not self._process.stdin.is_closing():
            self._process.stdin.close()

        if self._process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Agent process {self.pid} ignored SIGTERM, killing")
                with contextlib.suppress(ProcessLookupError):
                    self._process.kill()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    logger.error(f"Agent process {self.pid} did not exit after SIGKILL")

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._stderr_task

        logger.info(f"Agent process terminated (pid={self.pid}, returncode={self.returncode})")

    async def _read_stderr(self) -> None:
        """Drain stderr in chunks and log it line by line.

        Reading in chunks keeps the pipe drained however long a line is; an
        unterminated tail longer than one chunk is logged as it stands.
        """
        stderr = self._process.stderr
        if stderr is None:
            return

        pending = b""
        while True:
            chunk = await stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            if len(pending) > READ_CHUNK_SIZE:
                lines.append(pending)
                pending = b""
            for line in lines:
                _log_stderr(line)
        if pending:
            _log_stderr(pending)


def _log_stderr(line: bytes) -> None:
    text = line.decode("utf-8", errors="replace").rstrip()
    if text:
        logger.debug(f"[agent stderr] {text[:500]}")
