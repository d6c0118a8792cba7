"""Remote client for a running uplink server.

Fetches a session token over HTTP, opens the WebSocket relay and drives an
``AcpClient`` over it.

Usage:
    async with UplinkClient("http://127.0.0.1:4096") as client:
        await client.initialize()
        await client.new_session()
        stop_reason = await client.prompt("hello")
        print(client.conversation.agent_text)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from ..acp.client import AcpClient, PermissionCallback
from ..acp.conversation import Conversation
from ..acp.types import InitializeResponse, RequestId
from ..errors import TransportClosed

logger = logging.getLogger(__name__)


class UplinkClient:
    """ACP client connected through the uplink WebSocket relay."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:4096",
        *,
        timeout: float = 30.0,
        on_permission: PermissionCallback | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cwd: str | None = None
        self._on_permission = on_permission
        self._ws: Any = None  # websockets ClientConnection
        self._reader_task: asyncio.Task[None] | None = None
        self._acp: AcpClient | None = None

    @property
    def acp(self) -> AcpClient:
        if self._acp is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._acp

    @property
    def conversation(self) -> Conversation:
        return self.acp.conversation

    @property
    def ws_url(self) -> str:
        return self.base_url.replace("http://", "ws://").replace("https://", "wss://") + "/ws"

    # =========================================================================
    # Connection
    # =========================================================================

    async def fetch_token(self) -> str:
        """Request a single-use session token."""
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as http:
            response = await http.post("/api/token")
            response.raise_for_status()
            data = response.json()
        self.cwd = data.get("cwd")
        return data["token"]

    async def connect(self) -> None:
        """Fetch a token and open the WebSocket."""
        token = await self.fetch_token()
        self._ws = await websockets.connect(
            f"{self.ws_url}?token={token}",
            ping_interval=30,
            ping_timeout=10,
        )
        self._acp = AcpClient(self._send, on_permission=self._on_permission)
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to {self.ws_url}")

    async def disconnect(self) -> None:
        """Close the WebSocket and expire pending requests."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

        if self._acp is not None:
            await self._acp.close()

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def __aenter__(self) -> UplinkClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()

    async def _send(self, line: str) -> None:
        if self._ws is None:
            raise TransportClosed("WebSocket not connected")
        try:
            await self._ws.send(line)
        except ConnectionClosed as e:
            raise TransportClosed(f"WebSocket closed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            async for message in self._ws:
                text = message if isinstance(message, str) else message.decode("utf-8")
                await self.acp.feed_line(text)
        except ConnectionClosed as e:
            logger.info(f"WebSocket closed by server: {e}")
        finally:
            # Fail anything still waiting on the server.
            if self._acp is not None:
                await self._acp.close()

    # =========================================================================
    # ACP operations
    # =========================================================================

    async def initialize(self) -> InitializeResponse:
        return await self.acp.initialize()

    async def new_session(self, cwd: str | None = None) -> str:
        return await self.acp.new_session(cwd or self.cwd or ".")

    async def load_session(self, session_id: str, cwd: str | None = None) -> Any:
        return await self.acp.load_session(session_id, cwd or self.cwd or ".")

    async def prompt(self, text: str) -> str:
        return await self.acp.prompt(text)

    async def cancel(self) -> None:
        await self.acp.cancel()

    def select_permission(self, request_id: RequestId, option_id: str) -> bool:
        return self.acp.select_permission(request_id, option_id)
