"""ACP type definitions.

Defines the JSON-RPC envelope and the ACP payload types for the verb set
this bridge speaks (initialize, session lifecycle, prompt turns, session
updates and permission requests).

Note: Field names use camelCase to match the ACP protocol specification.
This is required for protocol compatibility - do not change to snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    TypeAdapter,
    model_validator,
)

# Protocol version advertised by initialize
PROTOCOL_VERSION = 1

# Request ids keep their JSON type: 1 and "1" are different ids.
RequestId = Union[StrictInt, StrictFloat, StrictStr]


class AcpMethod:
    """Method names of the ACP verb set."""

    INITIALIZE = "initialize"
    SESSION_NEW = "session/new"
    SESSION_LOAD = "session/load"
    SESSION_PROMPT = "session/prompt"
    SESSION_CANCEL = "session/cancel"
    SESSION_UPDATE = "session/update"
    SESSION_REQUEST_PERMISSION = "session/request_permission"


class AcpModel(BaseModel):
    """Base model for ACP payload types."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict, omitting unset optional members."""
        return self.model_dump(mode="json", exclude_none=True, by_alias=True)


# =============================================================================
# JSON-RPC 2.0 Envelope
# =============================================================================


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class EnvelopeKind(str, Enum):
    """The three shapes a JSON-RPC envelope can take."""

    REQUEST = "request"
    NOTIFICATION = "notification"
    RESPONSE = "response"


class Envelope(BaseModel):
    """One JSON-RPC 2.0 message.

    Exactly one of ``method`` or (``result`` | ``error``) is present. The
    presence of ``id`` separates requests from notifications; a response
    always carries the id of the request it answers.
    """

    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None = None
    method: str | None = None
    params: dict[str, Any] | None = None
    result: Any | None = None
    error: JsonRpcError | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> Envelope:
        fields = self.model_fields_set
        has_method = self.method is not None
        has_outcome = "result" in fields or self.error is not None

        if has_method and has_outcome:
            raise ValueError("envelope carries both 'method' and a result/error")
        if not has_method and not has_outcome:
            raise ValueError("envelope carries neither 'method' nor a result/error")
        if has_outcome and "id" not in fields:
            raise ValueError("response without 'id'")
        return self

    @property
    def has_id(self) -> bool:
        return "id" in self.model_fields_set

    @property
    def kind(self) -> EnvelopeKind:
        if self.method is None:
            return EnvelopeKind.RESPONSE
        if self.has_id:
            return EnvelopeKind.REQUEST
        return EnvelopeKind.NOTIFICATION

    @property
    def is_request(self) -> bool:
        return self.kind is EnvelopeKind.REQUEST

    @property
    def is_notification(self) -> bool:
        return self.kind is EnvelopeKind.NOTIFICATION

    @property
    def is_response(self) -> bool:
        return self.kind is EnvelopeKind.RESPONSE

    def to_wire(self) -> dict[str, Any]:
        """Dump only the members that were set, always leading with jsonrpc."""
        data = self.model_dump(mode="json", exclude_unset=True)
        data.pop("jsonrpc", None)
        return {"jsonrpc": "2.0", **data}


def make_request(request_id: RequestId, method: str, params: dict[str, Any] | None = None) -> Envelope:
    """Create a JSON-RPC request."""
    if params is None:
        return Envelope(id=request_id, method=method)
    return Envelope(id=request_id, method=method, params=params)


def make_notification(method: str, params: dict[str, Any] | None = None) -> Envelope:
    """Create a JSON-RPC notification (never carries an id)."""
    if params is None:
        return Envelope(method=method)
    return Envelope(method=method, params=params)


def make_response(request_id: RequestId | None, result: Any) -> Envelope:
    """Create a JSON-RPC success response echoing ``request_id``."""
    return Envelope(id=request_id, result=result)


def make_error_response(
    request_id: RequestId | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> Envelope:
    """Create a JSON-RPC error response."""
    if data is None:
        error = JsonRpcError(code=code, message=message)
    else:
        error = JsonRpcError(code=code, message=message, data=data)
    return Envelope(id=request_id, error=error)


# =============================================================================
# Content Blocks
# =============================================================================


class TextContentBlock(AcpModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str


class ImageContentBlock(AcpModel):
    """Base64 image content."""

    type: Literal["image"] = "image"
    data: str
    mimeType: str


class ResourceLinkContentBlock(AcpModel):
    """Reference to a resource the agent can access."""

    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str


ContentBlock = Annotated[
    Union[TextContentBlock, ImageContentBlock, ResourceLinkContentBlock],
    Field(discriminator="type"),
]


def text_block(text: str) -> TextContentBlock:
    return TextContentBlock(text=text)


# =============================================================================
# Tool Calls
# =============================================================================

ToolKind = Literal["read", "edit", "delete", "move", "search", "execute", "think", "fetch", "other"]
ToolCallStatus = Literal["pending", "in_progress", "completed", "failed"]

# Position of each status in the forward-only lifecycle.
TOOL_CALL_STATUS_ORDER: dict[str, int] = {
    "pending": 0,
    "in_progress": 1,
    "completed": 2,
    "failed": 2,
}
TERMINAL_TOOL_CALL_STATUSES = frozenset({"completed", "failed"})


class ContentToolCallContent(AcpModel):
    """A content block produced by a tool call."""

    type: Literal["content"] = "content"
    content: ContentBlock


class DiffToolCallContent(AcpModel):
    """A file modification produced by a tool call."""

    type: Literal["diff"] = "diff"
    path: str
    oldText: str | None = None
    newText: str


class TerminalToolCallContent(AcpModel):
    """A reference to a terminal owned by the client."""

    type: Literal["terminal"] = "terminal"
    terminalId: str


ToolCallContent = Annotated[
    Union[ContentToolCallContent, DiffToolCallContent, TerminalToolCallContent],
    Field(discriminator="type"),
]


# =============================================================================
# Plans
# =============================================================================

PlanEntryPriority = Literal["high", "medium", "low"]
PlanEntryStatus = Literal["pending", "in_progress", "completed"]


class PlanEntry(AcpModel):
    """One step of the agent's execution plan."""

    content: str
    priority: PlanEntryPriority = "medium"
    status: PlanEntryStatus = "pending"


# =============================================================================
# Session Updates
# =============================================================================


class AgentMessageChunk(AcpModel):
    """A streamed chunk of the agent's reply."""

    sessionUpdate: Literal["agent_message_chunk"] = "agent_message_chunk"
    content: ContentBlock


class UserMessageChunk(AcpModel):
    """A chunk of a user message (replayed history)."""

    sessionUpdate: Literal["user_message_chunk"] = "user_message_chunk"
    content: ContentBlock


class ToolCallStart(AcpModel):
    """Announces a new tool call."""

    sessionUpdate: Literal["tool_call"] = "tool_call"
    toolCallId: str
    title: str
    kind: ToolKind = "other"
    status: ToolCallStatus = "pending"
    content: list[ToolCallContent] = Field(default_factory=list)
    rawInput: Any | None = None


class ToolCallProgress(AcpModel):
    """Updates fields of an existing tool call."""

    sessionUpdate: Literal["tool_call_update"] = "tool_call_update"
    toolCallId: str
    title: str | None = None
    kind: ToolKind | None = None
    status: ToolCallStatus | None = None
    content: list[ToolCallContent] | None = None
    rawOutput: Any | None = None


class AgentPlanUpdate(AcpModel):
    """Replaces the whole plan."""

    sessionUpdate: Literal["plan"] = "plan"
    entries: list[PlanEntry] = Field(default_factory=list)


SessionUpdate = Annotated[
    Union[AgentMessageChunk, UserMessageChunk, ToolCallStart, ToolCallProgress, AgentPlanUpdate],
    Field(discriminator="sessionUpdate"),
]

SESSION_UPDATE_KINDS = frozenset(
    {"agent_message_chunk", "user_message_chunk", "tool_call", "tool_call_update", "plan"}
)

session_update_adapter: TypeAdapter[Any] = TypeAdapter(SessionUpdate)


class SessionNotification(AcpModel):
    """Params of a ``session/update`` notification."""

    sessionId: str
    update: SessionUpdate


# =============================================================================
# Permissions
# =============================================================================

PermissionOptionKind = Literal["allow_once", "allow_always", "reject_once", "reject_always"]


class PermissionOption(AcpModel):
    """One choice offered to the user."""

    optionId: str
    name: str
    kind: PermissionOptionKind

    @property
    def is_allow(self) -> bool:
        return self.kind.startswith("allow")


class SelectedPermissionOutcome(AcpModel):
    """The user picked one of the offered options."""

    outcome: Literal["selected"] = "selected"
    optionId: str


class CancelledPermissionOutcome(AcpModel):
    """The request was withdrawn before the user decided."""

    outcome: Literal["cancelled"] = "cancelled"


PermissionOutcome = Annotated[
    Union[SelectedPermissionOutcome, CancelledPermissionOutcome],
    Field(discriminator="outcome"),
]

permission_outcome_adapter: TypeAdapter[Any] = TypeAdapter(PermissionOutcome)


class RequestPermissionResponse(AcpModel):
    """Result of ``session/request_permission``."""

    outcome: PermissionOutcome


# =============================================================================
# Initialize
# =============================================================================


class Implementation(AcpModel):
    """Name and version of a protocol participant."""

    name: str
    title: str | None = None
    version: str


class PromptCapabilities(AcpModel):
    """Agent prompt capabilities."""

    audio: bool = False
    embeddedContext: bool = False
    image: bool = False


class McpCapabilities(AcpModel):
    """Agent MCP capabilities."""

    http: bool = False
    sse: bool = False


class AgentCapabilities(AcpModel):
    """Capabilities supported by the agent."""

    loadSession: bool = False
    promptCapabilities: PromptCapabilities = Field(default_factory=PromptCapabilities)
    mcpCapabilities: McpCapabilities = Field(default_factory=McpCapabilities)


class InitializeRequest(AcpModel):
    """Request parameters for the initialize method."""

    protocolVersion: int = PROTOCOL_VERSION
    clientCapabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: Implementation | None = None


class InitializeResponse(AcpModel):
    """Response to the initialize method."""

    protocolVersion: int
    agentCapabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    agentInfo: Implementation | None = None
    authMethods: list[dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Session lifecycle
# =============================================================================


class NewSessionRequest(AcpModel):
    """Request parameters for session/new."""

    cwd: str
    mcpServers: list[dict[str, Any]] = Field(default_factory=list)


class NewSessionResponse(AcpModel):
    """Response to session/new."""

    sessionId: str


class LoadSessionRequest(AcpModel):
    """Request parameters for session/load."""

    sessionId: str
    cwd: str = "."
    mcpServers: list[dict[str, Any]] = Field(default_factory=list)


class StopReason(str, Enum):
    """Why a prompt turn ended."""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    MAX_TURN_REQUESTS = "max_turn_requests"
    REFUSAL = "refusal"
    CANCELLED = "cancelled"


class PromptRequest(AcpModel):
    """Request parameters for session/prompt."""

    sessionId: str
    prompt: list[ContentBlock] = Field(default_factory=list)

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks in the prompt."""
        return "\n".join(block.text for block in self.prompt if isinstance(block, TextContentBlock))


class PromptResponse(AcpModel):
    """Response to session/prompt."""

    stopReason: StopReason


class CancelNotification(AcpModel):
    """Params of the session/cancel notification."""

    sessionId: str
