"""JSON-RPC endpoint over a line transport.

Both sides of the protocol use this: the ACP client (which sends prompts and
answers permission requests) and the reference agent (which answers prompts
and issues permission requests). The transport is just an async callable
that writes one line; inbound lines are pushed in with ``dispatch_line``.

Routing:
- responses resolve the matching waiter in the correlation table
- notifications are handled in arrival order
- requests each run in their own task, so a long prompt turn never blocks a
  ``session/cancel`` notification or a permission response behind it
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..errors import JsonRpcErrorCode, JsonRpcProtocolError, ProtocolParseError, TransportClosed
from .codec import encode_envelope, parse_envelope
from .correlation import CorrelationTable
from .types import (
    Envelope,
    RequestId,
    make_error_response,
    make_notification,
    make_request,
    make_response,
)

logger = logging.getLogger(__name__)

# Type aliases
SendLine = Callable[[str], Awaitable[None]]
RequestHandler = Callable[[str, dict[str, Any], RequestId], Coroutine[Any, Any, Any]]
NotificationHandler = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class JsonRpcConnection:
    """Processes JSON-RPC messages and routes them to handlers."""

    def __init__(self, send: SendLine, *, name: str = "acp") -> None:
        self.name = name
        self.correlation = CorrelationTable()
        self._send = send
        self._write_lock = asyncio.Lock()
        self._request_handler: RequestHandler | None = None
        self._notification_handler: NotificationHandler | None = None
        self._next_id = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_request(self, handler: RequestHandler) -> None:
        """Register the handler for incoming requests."""
        self._request_handler = handler

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register the handler for incoming notifications."""
        self._notification_handler = handler

    # =========================================================================
    # Inbound
    # =========================================================================

    async def dispatch_line(self, line: str) -> None:
        """Parse and route one inbound line. Malformed lines are dropped."""
        try:
            envelope = parse_envelope(line)
        except ProtocolParseError as e:
            logger.debug(f"[{self.name}] Dropping malformed line: {e}")
            return
        await self.dispatch(envelope)

    async def dispatch(self, envelope: Envelope) -> None:
        """Route one inbound envelope."""
        if self._closed:
            logger.debug(f"[{self.name}] Connection closed, ignoring {envelope.kind.value}")
            return

        if envelope.is_response:
            self.correlation.resolve_response(envelope)
            return

        if envelope.is_notification:
            await self._handle_notification(envelope)
            return

        task = asyncio.create_task(self._handle_request(envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # Run the handler up to its first suspension before the next line is
        # dispatched, so it sees messages in arrival order.
        await asyncio.sleep(0)

    async def _handle_notification(self, envelope: Envelope) -> None:
        method = envelope.method or ""
        if self._notification_handler is None:
            logger.warning(f"[{self.name}] Unhandled notification: {method}")
            return

        try:
            await self._notification_handler(method, envelope.params or {})
        except Exception as e:
            logger.exception(f"[{self.name}] Error handling notification {method}: {e}")

    async def _handle_request(self, envelope: Envelope) -> None:
        method = envelope.method or ""
        request_id = envelope.id

        if self._request_handler is None:
            response = make_error_response(
                request_id,
                JsonRpcErrorCode.METHOD_NOT_FOUND,
                f"No handler for method: {method}",
            )
        else:
            try:
                result = await self._request_handler(method, envelope.params or {}, request_id)
                response = make_response(request_id, result)
            except JsonRpcProtocolError as e:
                response = make_error_response(request_id, e.code, e.message, e.data)
            except Exception as e:
                logger.exception(f"[{self.name}] Error handling request {method}: {e}")
                response = make_error_response(
                    request_id, JsonRpcErrorCode.INTERNAL_ERROR, str(e) or type(e).__name__
                )

        try:
            await self._write(response)
        except TransportClosed:
            logger.debug(f"[{self.name}] Response to {method} not sent, connection closed")

    # =========================================================================
    # Outbound
    # =========================================================================

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its result.

        Raises:
            JsonRpcProtocolError: If the peer answered with an error.
            TransportClosed: If the connection closed before the response.
        """
        if self._closed:
            raise TransportClosed(f"Cannot send {method}: connection closed")

        self._next_id += 1
        request_id = self._next_id
        future = self.correlation.expect_response(request_id)

        try:
            await self._write(make_request(request_id, method, params))
            return await future
        finally:
            # No-op when the response already popped the entry.
            self.correlation.discard(request_id)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (fire-and-forget)."""
        await self._write(make_notification(method, params))

    async def _write(self, envelope: Envelope) -> None:
        if self._closed:
            raise TransportClosed("Connection closed")
        line = encode_envelope(envelope)
        async with self._write_lock:
            await self._send(line)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def drain(self) -> None:
        """Wait until every in-flight request handler has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop handling requests and expire every pending waiter."""
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

        self.correlation.close(TransportClosed(f"{self.name} connection closed"))
