"""ACP client.

Drives the conversation state machine from the client side of the
protocol: sends requests, folds ``session/update`` notifications into the
``Conversation`` and turns ``session/request_permission`` requests into
pending ``PermissionRequest`` entries that the UI resolves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from ..errors import JsonRpcErrorCode, JsonRpcProtocolError
from .connection import JsonRpcConnection, SendLine
from .conversation import Conversation, PermissionRequest
from .correlation import PermissionResolution
from .types import (
    PROTOCOL_VERSION,
    AcpMethod,
    CancelNotification,
    Implementation,
    InitializeRequest,
    InitializeResponse,
    LoadSessionRequest,
    NewSessionRequest,
    NewSessionResponse,
    PermissionOption,
    PromptRequest,
    PromptResponse,
    RequestId,
    RequestPermissionResponse,
    text_block,
)

logger = logging.getLogger(__name__)

PermissionCallback = Callable[[PermissionRequest], None]

CLIENT_INFO = Implementation(name="uplink", version="0.1.0")


def parse_permission_request(request_id: RequestId, params: dict[str, Any]) -> PermissionRequest:
    """Build a PermissionRequest from ``session/request_permission`` params.

    ``toolCallId`` and ``title`` are accepted at the top level or nested in a
    ``toolCall`` object.
    """
    tool_call = params.get("toolCall") or {}
    tool_call_id = params.get("toolCallId") or tool_call.get("toolCallId")
    title = params.get("title") or tool_call.get("title") or ""

    if not tool_call_id:
        raise JsonRpcProtocolError(
            code=JsonRpcErrorCode.INVALID_PARAMS,
            message="Permission request without toolCallId",
        )

    try:
        options = [PermissionOption.model_validate(o) for o in params.get("options", [])]
    except ValidationError as e:
        raise JsonRpcProtocolError(
            code=JsonRpcErrorCode.INVALID_PARAMS,
            message=f"Invalid permission options: {e.error_count()} error(s)",
        ) from e

    return PermissionRequest(
        request_id=request_id,
        tool_call_id=tool_call_id,
        title=title,
        options=options,
        session_id=params.get("sessionId"),
    )


class AcpClient:
    """Client side of one ACP connection.

    Usage:
        client = AcpClient(send=websocket.send)
        # feed every inbound line:  await client.feed_line(line)
        await client.initialize()
        await client.new_session(cwd="/project")
        stop_reason = await client.prompt("hello")
    """

    def __init__(
        self,
        send: SendLine,
        *,
        conversation: Conversation | None = None,
        on_permission: PermissionCallback | None = None,
    ) -> None:
        self.conversation = conversation or Conversation()
        self.session_id: str | None = None
        self.agent_info: InitializeResponse | None = None
        self._on_permission = on_permission
        self._connection = JsonRpcConnection(send, name="client")
        self._connection.on_request(self._handle_request)
        self._connection.on_notification(self._handle_notification)

    @property
    def connection(self) -> JsonRpcConnection:
        return self._connection

    async def feed_line(self, line: str) -> None:
        """Hand one inbound protocol line to the client."""
        await self._connection.dispatch_line(line)

    # =========================================================================
    # Requests
    # =========================================================================

    async def initialize(self) -> InitializeResponse:
        """Perform the initialize handshake."""
        params = InitializeRequest(
            protocolVersion=PROTOCOL_VERSION,
            clientCapabilities={"fs": {"readTextFile": False, "writeTextFile": False}},
            clientInfo=CLIENT_INFO,
        )
        result = await self._connection.request(AcpMethod.INITIALIZE, params.to_wire())
        self.agent_info = InitializeResponse.model_validate(result)
        logger.info(f"ACP initialized with agent {self.agent_info.agentInfo}")
        return self.agent_info

    async def new_session(self, cwd: str, mcp_servers: list[dict[str, Any]] | None = None) -> str:
        """Create a session and make it the current one."""
        params = NewSessionRequest(cwd=cwd, mcpServers=mcp_servers or [])
        result = await self._connection.request(AcpMethod.SESSION_NEW, params.to_wire())
        self.session_id = NewSessionResponse.model_validate(result).sessionId
        logger.info(f"Created ACP session: {self.session_id}")
        return self.session_id

    async def load_session(
        self,
        session_id: str,
        cwd: str,
        mcp_servers: list[dict[str, Any]] | None = None,
    ) -> Any:
        """Load an existing session and make it the current one."""
        params = LoadSessionRequest(sessionId=session_id, cwd=cwd, mcpServers=mcp_servers or [])
        result = await self._connection.request(AcpMethod.SESSION_LOAD, params.to_wire())
        self.session_id = session_id
        return result

    async def prompt(self, text: str) -> str:
        """Send a prompt and wait for the turn to end.

        Returns:
            The turn's stop reason.
        """
        session_id = self._require_session()
        params = PromptRequest(sessionId=session_id, prompt=[text_block(text)])

        self.conversation.add_user_message(text)
        self.conversation.begin_turn()
        stop_reason: str | None = None
        try:
            result = await self._connection.request(AcpMethod.SESSION_PROMPT, params.to_wire())
            try:
                stop_reason = PromptResponse.model_validate(result).stopReason.value
            except ValidationError as e:
                raise JsonRpcProtocolError(
                    code=JsonRpcErrorCode.INTERNAL_ERROR,
                    message=f"Malformed prompt response: {e.error_count()} error(s)",
                    data=result,
                ) from e
            return stop_reason
        finally:
            self.conversation.end_turn(stop_reason)

    async def cancel(self) -> None:
        """Cancel the current turn and withdraw pending permission requests."""
        session_id = self._require_session()
        self.cancel_permissions()
        await self._connection.notify(AcpMethod.SESSION_CANCEL, CancelNotification(sessionId=session_id).to_wire())

    def _require_session(self) -> str:
        if self.session_id is None:
            raise RuntimeError("No active session. Call new_session() first.")
        return self.session_id

    # =========================================================================
    # Permissions
    # =========================================================================

    def select_permission(self, request_id: RequestId, option_id: str) -> bool:
        """Answer a pending permission request with the chosen option."""
        return self._connection.correlation.select_permission(request_id, option_id)

    def cancel_permissions(self) -> list[RequestId]:
        """Answer every pending permission request with ``cancelled``."""
        return self._connection.correlation.cancel_all()

    # =========================================================================
    # Inbound handlers
    # =========================================================================

    async def _handle_request(self, method: str, params: dict[str, Any], request_id: RequestId) -> Any:
        if method != AcpMethod.SESSION_REQUEST_PERMISSION:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.METHOD_NOT_FOUND,
                message=f"Unknown method: {method}",
            )
        return await self._request_permission(request_id, params)

    async def _request_permission(self, request_id: RequestId, params: dict[str, Any]) -> dict[str, Any]:
        request = parse_permission_request(request_id, params)
        decided: asyncio.Future[PermissionResolution] = asyncio.get_running_loop().create_future()

        def continuation(outcome: PermissionResolution) -> None:
            self.conversation.resolve_permission(request_id, outcome)
            if not decided.done():
                decided.set_result(outcome)

        self._connection.correlation.register_permission(request_id, continuation)
        self.conversation.track_permission(request)

        if self._on_permission is not None:
            try:
                self._on_permission(request)
            except Exception:
                logger.exception("Error in permission callback")

        try:
            outcome = await decided
        except asyncio.CancelledError:
            # Connection closing: withdraw the request from the registry.
            self._connection.correlation.cancel_permission(request_id)
            raise

        return RequestPermissionResponse(outcome=outcome).to_wire()

    async def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method == AcpMethod.SESSION_UPDATE:
            update = params.get("update")
            if not isinstance(update, dict):
                logger.warning("Protocol error: session/update without an update object")
                return
            self.conversation.apply_update(update)
        else:
            logger.debug(f"Ignoring notification: {method}")

    async def close(self) -> None:
        """Close the connection, cancelling pending permissions and requests."""
        await self._connection.close()
