"""Agent Client Protocol (ACP) support.

Protocol: JSON-RPC 2.0, one envelope per newline-terminated line.
See: https://agentclientprotocol.com
"""

from .client import AcpClient, parse_permission_request
from .codec import Frame, FrameDecoder, encode_envelope, parse_envelope, read_frames
from .connection import JsonRpcConnection
from .conversation import (
    Conversation,
    Message,
    PermissionRequest,
    ResolvedPermission,
    ToolCall,
)
from .correlation import CorrelationTable
from .types import (
    PROTOCOL_VERSION,
    AcpMethod,
    Envelope,
    EnvelopeKind,
    StopReason,
)

__all__ = [
    "PROTOCOL_VERSION",
    "AcpClient",
    "AcpMethod",
    "Conversation",
    "CorrelationTable",
    "Envelope",
    "EnvelopeKind",
    "Frame",
    "FrameDecoder",
    "JsonRpcConnection",
    "Message",
    "PermissionRequest",
    "ResolvedPermission",
    "StopReason",
    "ToolCall",
    "encode_envelope",
    "parse_envelope",
    "parse_permission_request",
    "read_frames",
]
