"""Error taxonomy for the bridge and the ACP session protocol.

Only process/stream failures and spawn failures terminate a client
connection. Everything shaped like a protocol anomaly is recovered from:
malformed lines are dropped, unmatched responses are logged, and session
reuse is answered with a JSON-RPC error response.
"""

from __future__ import annotations

from typing import Any


class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # ACP-specific error codes
    AUTH_REQUIRED = -32000
    SESSION_NOT_FOUND = -32001
    PERMISSION_DENIED = -32002
    SESSION_ALREADY_ACTIVE = -32003


class UplinkError(Exception):
    """Base class for all uplink errors."""


class SpawnError(UplinkError):
    """The external agent process could not be started."""

    def __init__(self, command: list[str], reason: str) -> None:
        super().__init__(f"Failed to spawn {' '.join(command)!r}: {reason}")
        self.command = command
        self.reason = reason


class TransportClosed(UplinkError):
    """The process exited or its stream failed; the connection is gone."""


class ProtocolParseError(UplinkError):
    """A line could not be parsed as a JSON-RPC envelope."""

    def __init__(self, message: str, line: str = "") -> None:
        super().__init__(message)
        self.line = line


class UnknownCorrelation(UplinkError):
    """A response arrived for an id with no pending waiter."""

    def __init__(self, request_id: Any) -> None:
        super().__init__(f"No pending request for id {request_id!r}")
        self.request_id = request_id


class Unauthorized(UplinkError):
    """A duplex connection presented a missing or invalid session token."""


class JsonRpcProtocolError(UplinkError):
    """Exception for JSON-RPC protocol errors.

    Raised by request handlers to produce an error response, and raised to
    callers awaiting a request whose response carried an ``error`` member.
    """

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class SessionAlreadyActive(JsonRpcProtocolError):
    """``session/load`` targeted the session that is currently active."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            code=JsonRpcErrorCode.SESSION_ALREADY_ACTIVE,
            message=f"Session {session_id} is already loaded",
            data={"sessionId": session_id},
        )
        self.session_id = session_id
