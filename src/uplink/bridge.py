"""Transport bridge between one network client and one agent process.

The bridge owns at most one binding at a time. Attaching a new client
preempts the current one: the old client is closed with 4000 and its
process terminated before the new process is spawned. Lines travel verbatim
in both directions, but only for the binding that is still current; a
late line from a preempted binding is dropped.

State transitions (attach, detach, shutdown) are serialised by one
``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .errors import SpawnError, TransportClosed
from .process import DEFAULT_KILL_TIMEOUT, AgentProcess, LaunchConfig

logger = logging.getLogger(__name__)

# WebSocket close codes
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011
CLOSE_REPLACED = 4000
CLOSE_UNAUTHORIZED = 4001

# Close reasons must fit in a control frame.
MAX_CLOSE_REASON = 123

SpawnFunc = Callable[[LaunchConfig], Awaitable[AgentProcess]]


class BridgeState(str, Enum):
    """Whether a client is currently bound to a process."""

    IDLE = "idle"
    BOUND = "bound"


class ClientConnection(Protocol):
    """What the bridge needs from a network client."""

    async def send_text(self, text: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass(eq=False)
class Binding:
    """One client paired with the process spawned for it."""

    client: ClientConnection
    process: AgentProcess
    relay_task: asyncio.Task[None] | None = None
    closed: bool = False


class Bridge:
    """Pairs the current network client with an agent process."""

    def __init__(
        self,
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        spawn: SpawnFunc | None = None,
    ) -> None:
        self.kill_timeout = kill_timeout
        self._spawn = spawn or AgentProcess.spawn
        self._binding: Binding | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> BridgeState:
        return BridgeState.BOUND if self._binding is not None else BridgeState.IDLE

    @property
    def current(self) -> Binding | None:
        return self._binding

    def is_current(self, binding: Binding) -> bool:
        return self._binding is binding and not binding.closed

    # =========================================================================
    # Transitions
    # =========================================================================

    async def attach(self, client: ClientConnection, launch: LaunchConfig) -> Binding:
        """Bind ``client`` to a freshly spawned process.

        Raises:
            SpawnError: If the process could not be started. The client has
                been closed with 1011 and the bridge is left idle.
        """
        async with self._lock:
            previous = self._binding
            if previous is not None:
                logger.info("New client connected, replacing the current one")
                await self._teardown(previous, CLOSE_REPLACED, "Replaced by new connection")

            try:
                process = await self._spawn(launch)
            except SpawnError as e:
                logger.error(f"Spawn failed: {e}")
                await self._close_client(client, CLOSE_INTERNAL_ERROR, str(e))
                raise

            binding = Binding(client=client, process=process)
            self._binding = binding
            binding.relay_task = asyncio.create_task(self._relay(binding))
            logger.info(f"Client bound to agent process {process.pid}")
            return binding

    async def detach(self, binding: Binding, reason: str = "", *, fatal: bool = False) -> None:
        """Tear down ``binding``. Safe to call more than once.

        With ``fatal`` the client is closed with 1011 (process exit or stream
        failure); otherwise the client is assumed to be gone already.
        """
        async with self._lock:
            if binding.closed:
                return
            logger.info(f"Detaching client: {reason or 'client disconnected'}")
            close_code = CLOSE_INTERNAL_ERROR if fatal else None
            await self._teardown(binding, close_code, reason)

    async def shutdown(self) -> None:
        """Terminate any live process and close any live client."""
        async with self._lock:
            binding = self._binding
            if binding is not None:
                await self._teardown(binding, CLOSE_GOING_AWAY, "Server shutting down")
        logger.info("Bridge shut down")

    async def _teardown(self, binding: Binding, close_code: int | None, reason: str) -> None:
        binding.closed = True
        if self._binding is binding:
            self._binding = None

        task = binding.relay_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if close_code is not None:
            await self._close_client(binding.client, close_code, reason)
        await binding.process.terminate(self.kill_timeout)

    async def _close_client(self, client: ClientConnection, code: int, reason: str) -> None:
        try:
            await client.close(code, reason[:MAX_CLOSE_REASON])
        except Exception as e:
            logger.debug(f"Closing client failed (already gone?): {e}")

    # =========================================================================
    # Relay
    # =========================================================================

    async def forward_to_process(self, binding: Binding, line: str) -> bool:
        """Write a client line to the binding's process if it is still current.

        Returns:
            False if the line was dropped.
        """
        if not self.is_current(binding):
            logger.debug("Dropping line from a client that is no longer bound")
            return False

        try:
            await binding.process.send_line(line)
        except TransportClosed as e:
            logger.warning(f"Agent process unavailable: {e}")
            await self.detach(binding, str(e), fatal=True)
            return False
        return True

    async def _relay(self, binding: Binding) -> None:
        """Copy process frames to the client until the stream ends."""
        reason = "Agent process exited"
        try:
            async for frame in binding.process.frames():
                if not self.is_current(binding):
                    logger.debug("Dropping agent line for a replaced client")
                    continue
                await binding.client.send_text(frame.line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Relay failed: {e}")
            reason = f"Agent stream failed: {e}"

        await self.detach(binding, reason, fatal=True)
