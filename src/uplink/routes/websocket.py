"""WebSocket endpoint relaying ACP lines between the browser and the agent.

The connection must present a session token from ``POST /api/token`` as the
``token`` query parameter. Each text frame carries exactly one JSON-RPC
envelope and is forwarded verbatim; the agent's lines come back the same way.
Binary frames are read as UTF-8 text; undecodable frames are dropped.
"""

from __future__ import annotations

import asyncio
import logging

from starlette.routing import WebSocketRoute
from starlette.types import Message
from starlette.websockets import WebSocket, WebSocketState

from ..bridge import CLOSE_UNAUTHORIZED
from ..errors import SpawnError, Unauthorized

logger = logging.getLogger(__name__)


class WebSocketClient:
    """Adapts a Starlette WebSocket to the bridge's client interface."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._send_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return (
            self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    async def send_text(self, text: str) -> None:
        async with self._send_lock:
            if self.is_connected:
                await self._websocket.send_text(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        async with self._send_lock:
            if self.is_connected:
                await self._websocket.close(code=code, reason=reason)


async def websocket_endpoint(websocket: WebSocket) -> None:
    """Authenticate, attach to the bridge and pump client lines to the agent."""
    state = websocket.app.state
    await websocket.accept()

    try:
        issued = state.tokens.consume(websocket.query_params.get("token"))
    except Unauthorized as e:
        logger.warning(f"Rejected WebSocket connection: {e}")
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason=str(e))
        return

    client = WebSocketClient(websocket)
    launch = state.config.launch_config()
    launch.cwd = issued.cwd

    try:
        binding = await state.bridge.attach(client, launch)
    except SpawnError:
        return

    logger.info("WebSocket client connected")
    try:
        while client.is_connected:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket client disconnected")
                break
            line = _message_text(message)
            if line is None:
                continue
            await state.bridge.forward_to_process(binding, line)
    finally:
        await state.bridge.detach(binding, "client disconnected")


def _message_text(message: Message) -> str | None:
    """Text of a received frame; binary frames must be UTF-8. Anything else is dropped."""
    text = message.get("text")
    if text is not None:
        return text

    data = message.get("bytes")
    if data is None:
        logger.warning(f"Dropping unexpected WebSocket message: {message.get('type')}")
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        logger.warning(f"Dropping binary frame that is not UTF-8 ({len(data)} bytes)")
        return None


websocket_routes = [
    WebSocketRoute("/ws", websocket_endpoint),
]
