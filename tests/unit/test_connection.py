"""Unit tests for the JSON-RPC connection endpoint."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from uplink.acp.connection import JsonRpcConnection
from uplink.errors import JsonRpcErrorCode, JsonRpcProtocolError, TransportClosed


class WireRecorder:
    """Collects lines written by a connection."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.written = asyncio.Event()

    async def send(self, line: str) -> None:
        self.lines.append(line)
        self.written.set()

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.lines]


class TestOutbound:
    """Tests for requests and notifications we send."""

    @pytest.mark.asyncio
    async def test_request_ids_increase(self) -> None:
        """Each request gets the next integer id."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        first = asyncio.create_task(connection.request("a"))
        second = asyncio.create_task(connection.request("b"))
        await asyncio.sleep(0)

        assert [m["id"] for m in wire.messages] == [1, 2]
        await connection.dispatch_line('{"jsonrpc":"2.0","id":2,"result":"B"}')
        await connection.dispatch_line('{"jsonrpc":"2.0","id":1,"result":"A"}')
        assert await first == "A"
        assert await second == "B"

    @pytest.mark.asyncio
    async def test_error_response_raises(self) -> None:
        """An error response raises JsonRpcProtocolError to the caller."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        task = asyncio.create_task(connection.request("session/load", {"sessionId": "s"}))
        await wire.written.wait()
        await connection.dispatch_line(
            '{"jsonrpc":"2.0","id":1,"error":{"code":-32003,"message":"Session s is already loaded"}}'
        )

        with pytest.raises(JsonRpcProtocolError) as exc_info:
            await task
        assert exc_info.value.code == JsonRpcErrorCode.SESSION_ALREADY_ACTIVE

    @pytest.mark.asyncio
    async def test_notification_has_no_id(self) -> None:
        """notify() writes an envelope without id."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        await connection.notify("session/cancel", {"sessionId": "s"})

        assert wire.messages == [
            {"jsonrpc": "2.0", "method": "session/cancel", "params": {"sessionId": "s"}}
        ]

    @pytest.mark.asyncio
    async def test_cancelled_request_leaves_no_entry(self) -> None:
        """A caller that stops waiting does not leak its waiter."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        task = asyncio.create_task(connection.request("slow"))
        await wire.written.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(connection.correlation) == 0

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self) -> None:
        """Closing expires waiters with TransportClosed."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        task = asyncio.create_task(connection.request("x"))
        await wire.written.wait()
        await connection.close()

        with pytest.raises(TransportClosed):
            await task
        with pytest.raises(TransportClosed):
            await connection.request("y")


class TestInbound:
    """Tests for requests and notifications we receive."""

    @pytest.mark.asyncio
    async def test_request_response_echoes_id_type(self) -> None:
        """Responses echo the request id with the same JSON type."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)
        connection.on_request(AsyncMock(return_value={"ok": True}))

        await connection.dispatch_line('{"jsonrpc":"2.0","id":"req-1","method":"m"}')
        await connection.dispatch_line('{"jsonrpc":"2.0","id":7,"method":"m"}')
        await connection.drain()

        by_id = {m["id"]: m for m in wire.messages}
        assert by_id["req-1"]["result"] == {"ok": True}
        assert by_id[7]["result"] == {"ok": True}
        assert all(m["jsonrpc"] == "2.0" for m in wire.messages)

    @pytest.mark.asyncio
    async def test_protocol_error_becomes_error_response(self) -> None:
        """JsonRpcProtocolError from a handler is sent as an error response."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)
        connection.on_request(
            AsyncMock(side_effect=JsonRpcProtocolError(code=-32602, message="bad params"))
        )

        await connection.dispatch_line('{"jsonrpc":"2.0","id":1,"method":"m"}')
        await connection.drain()

        assert wire.messages[0]["error"] == {"code": -32602, "message": "bad params"}

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_internal_error(self) -> None:
        """Other exceptions become -32603."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)
        connection.on_request(AsyncMock(side_effect=RuntimeError("boom")))

        await connection.dispatch_line('{"jsonrpc":"2.0","id":1,"method":"m"}')
        await connection.drain()

        assert wire.messages[0]["error"]["code"] == JsonRpcErrorCode.INTERNAL_ERROR

    @pytest.mark.asyncio
    async def test_no_handler_is_method_not_found(self) -> None:
        """Requests without a handler get -32601."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        await connection.dispatch_line('{"jsonrpc":"2.0","id":1,"method":"m"}')
        await connection.drain()

        assert wire.messages[0]["error"]["code"] == JsonRpcErrorCode.METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_notification_handled_without_response(self) -> None:
        """Notifications reach the handler and produce no output."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)
        handler = AsyncMock()
        connection.on_notification(handler)

        await connection.dispatch_line('{"jsonrpc":"2.0","method":"session/update","params":{"a":1}}')

        handler.assert_awaited_once_with("session/update", {"a": 1})
        assert wire.lines == []

    @pytest.mark.asyncio
    async def test_malformed_line_is_dropped(self) -> None:
        """Garbage input is ignored without a response."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)

        await connection.dispatch_line("this is not json")
        await connection.dispatch_line('{"jsonrpc":"2.0","id":99,"result":{}}')

        assert wire.lines == []

    @pytest.mark.asyncio
    async def test_long_request_does_not_block_notifications(self) -> None:
        """A notification is handled while a request is still running."""
        wire = WireRecorder()
        connection = JsonRpcConnection(wire.send)
        release = asyncio.Event()
        seen: list[str] = []

        async def slow_request(method: str, params: dict[str, Any], request_id: Any) -> str:
            await release.wait()
            return "done"

        async def on_notification(method: str, params: dict[str, Any]) -> None:
            seen.append(method)
            release.set()

        connection.on_request(slow_request)
        connection.on_notification(on_notification)

        await connection.dispatch_line('{"jsonrpc":"2.0","id":1,"method":"slow"}')
        await connection.dispatch_line('{"jsonrpc":"2.0","method":"session/cancel"}')
        await asyncio.wait_for(connection.drain(), timeout=1)

        assert seen == ["session/cancel"]
        assert wire.messages[0] == {"jsonrpc": "2.0", "id": 1, "result": "done"}
