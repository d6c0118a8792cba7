"""Uplink - relay between a chat interface and an ACP agent process.

The agent speaks the Agent Client Protocol (newline-delimited JSON-RPC 2.0)
on stdio. Uplink spawns it, relays its lines over a WebSocket and provides
the client-side conversation state machine that consumes them.
"""

from .errors import (
    JsonRpcErrorCode,
    JsonRpcProtocolError,
    ProtocolParseError,
    SessionAlreadyActive,
    SpawnError,
    TransportClosed,
    Unauthorized,
    UnknownCorrelation,
    UplinkError,
)

__version__ = "0.1.0"

__all__ = [
    "JsonRpcErrorCode",
    "JsonRpcProtocolError",
    "ProtocolParseError",
    "SessionAlreadyActive",
    "SpawnError",
    "TransportClosed",
    "Unauthorized",
    "UnknownCorrelation",
    "UplinkError",
    "__version__",
]
