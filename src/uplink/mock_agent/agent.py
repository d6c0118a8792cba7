"""Reference ACP agent driven by a fixed scenario table.

The agent has no reasoning. Each prompt is matched once against a table of
trigger words and the matching scenario produces a deterministic sequence of
session updates and a stop reason. It is used by the test suite and for
local development when no real agent is installed.

Usage:
    agent = MockAgent(send=write_line)
    # feed every inbound line:  await agent.feed_line(line)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from ..acp.connection import JsonRpcConnection, SendLine
from ..acp.types import (
    PROTOCOL_VERSION,
    AcpMethod,
    AgentCapabilities,
    AgentMessageChunk,
    CancelNotification,
    ContentToolCallContent,
    DiffToolCallContent,
    Implementation,
    InitializeResponse,
    McpCapabilities,
    PermissionOption,
    PromptCapabilities,
    PromptRequest,
    PromptResponse,
    SelectedPermissionOutcome,
    SessionNotification,
    StopReason,
    ToolCallProgress,
    ToolCallStart,
    permission_outcome_adapter,
    text_block,
)
from ..errors import (
    JsonRpcErrorCode,
    JsonRpcProtocolError,
    SessionAlreadyActive,
    TransportClosed,
)

logger = logging.getLogger(__name__)

AGENT_INFO = Implementation(name="mock-agent", version="0.1.0")

SIMPLE_CHUNKS = ("Hello ", "from ", "mock agent!")
PERMISSION_DENIED_TEXT = "Permission denied."
REFUSAL_TEXT = "I cannot do that."
CLEARED_TEXT = "Conversation cleared."

TOOL_CALL_ID = "tc1"

PERMISSION_OPTIONS = [
    PermissionOption(optionId="allow", name="Allow", kind="allow_once"),
    PermissionOption(optionId="reject", name="Reject", kind="reject_once"),
]


class Scenario(str, Enum):
    """Behaviours selectable by the prompt text."""

    SIMPLE = "simple"
    TOOL = "tool"
    PERMISSION = "permission"
    REFUSE = "refuse"
    STREAM = "stream"
    CLEAR = "/clear"
    ECHO = "echo"


# Trigger words in matching order. ECHO is the fallback, not a trigger.
TRIGGERS: tuple[Scenario, ...] = (
    Scenario.SIMPLE,
    Scenario.TOOL,
    Scenario.PERMISSION,
    Scenario.REFUSE,
    Scenario.STREAM,
    Scenario.CLEAR,
)


def resolve_scenario(text: str) -> Scenario:
    """Pick the scenario for a prompt.

    An exact match on the stripped text wins; otherwise the first trigger the
    text starts with (case-sensitive); otherwise ECHO.
    """
    stripped = text.strip()
    for scenario in TRIGGERS:
        if stripped == scenario.value:
            return scenario
    for scenario in TRIGGERS:
        if stripped.startswith(scenario.value):
            return scenario
    return Scenario.ECHO


@dataclass(eq=False)
class Turn:
    """One running prompt turn."""

    session_id: str
    scenario: Scenario
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()


class MockAgent:
    """Agent side of one ACP connection, answering from the scenario table."""

    def __init__(
        self,
        send: SendLine,
        *,
        chunk_delay: float = 0.0,
        stream_interval: float = 0.1,
    ) -> None:
        self.chunk_delay = chunk_delay
        self.stream_interval = stream_interval
        self.active_session_id: str | None = None
        self._turns: dict[str, list[Turn]] = {}
        self._connection = JsonRpcConnection(send, name="mock-agent")
        self._connection.on_request(self._handle_request)
        self._connection.on_notification(self._handle_notification)

    @property
    def connection(self) -> JsonRpcConnection:
        return self._connection

    async def feed_line(self, line: str) -> None:
        """Hand one inbound protocol line to the agent."""
        await self._connection.dispatch_line(line)

    # =========================================================================
    # Request handlers
    # =========================================================================

    async def _handle_request(self, method: str, params: dict[str, Any], request_id: Any) -> Any:
        if method == AcpMethod.INITIALIZE:
            return self._initialize(params)
        if method == AcpMethod.SESSION_NEW:
            return self._new_session(params)
        if method == AcpMethod.SESSION_LOAD:
            return self._load_session(params)
        if method == AcpMethod.SESSION_PROMPT:
            return await self._prompt(params)
        raise JsonRpcProtocolError(
            code=JsonRpcErrorCode.METHOD_NOT_FOUND,
            message=f"Unknown method: {method}",
        )

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        client = (params.get("clientInfo") or {}).get("name", "unknown")
        logger.info(f"Initialize from client={client}")
        return InitializeResponse(
            protocolVersion=PROTOCOL_VERSION,
            agentInfo=AGENT_INFO,
            agentCapabilities=AgentCapabilities(
                loadSession=True,
                mcpCapabilities=McpCapabilities(http=False, sse=False),
                promptCapabilities=PromptCapabilities(
                    audio=False,
                    embeddedContext=False,
                    image=False,
                ),
            ),
            authMethods=[],
        ).to_wire()

    def _new_session(self, params: dict[str, Any]) -> dict[str, Any]:
        session_id = f"mock-session-{secrets.token_hex(8)}"
        self.active_session_id = session_id
        logger.info(f"Created session {session_id} (cwd={params.get('cwd')})")
        return {"sessionId": session_id}

    def _load_session(self, params: dict[str, Any]) -> dict[str, Any]:
        session_id = params.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message="session/load requires a sessionId",
            )
        if session_id == self.active_session_id:
            raise SessionAlreadyActive(session_id)

        self.active_session_id = session_id
        logger.info(f"Loaded session {session_id}")
        return {}

    async def _prompt(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            request = PromptRequest.model_validate(params)
        except ValidationError as e:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Invalid prompt: {e.error_count()} error(s)",
            ) from e

        turn = Turn(session_id=request.sessionId, scenario=resolve_scenario(request.text))
        self._turns.setdefault(turn.session_id, []).append(turn)
        logger.info(f"Prompt on {turn.session_id}: scenario={turn.scenario.value}")

        try:
            stop_reason = await self._run(turn, request.text)
        finally:
            turns = self._turns.get(turn.session_id, [])
            if turn in turns:
                turns.remove(turn)
            if not turns:
                self._turns.pop(turn.session_id, None)

        if turn.is_cancelled:
            stop_reason = StopReason.CANCELLED
        return PromptResponse(stopReason=stop_reason).to_wire()

    # =========================================================================
    # Notification handlers
    # =========================================================================

    async def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method != AcpMethod.SESSION_CANCEL:
            logger.debug(f"Ignoring notification: {method}")
            return

        try:
            session_id = CancelNotification.model_validate(params).sessionId
        except ValidationError:
            logger.warning(f"Protocol error: malformed session/cancel {params!r}")
            return

        turns = self._turns.get(session_id, [])
        if not turns:
            logger.debug(f"Cancel for {session_id} with no running turn")
            return

        for turn in turns:
            turn.cancelled.set()
        logger.info(f"Cancelled {len(turns)} turn(s) on {session_id}")

    # =========================================================================
    # Scenarios
    # =========================================================================

    async def _run(self, turn: Turn, text: str) -> StopReason:
        if turn.scenario is Scenario.SIMPLE:
            return await self._simple(turn)
        if turn.scenario is Scenario.TOOL:
            return await self._tool(turn)
        if turn.scenario is Scenario.PERMISSION:
            return await self._permission(turn)
        if turn.scenario is Scenario.REFUSE:
            if not await self._chunk(turn, REFUSAL_TEXT):
                return StopReason.CANCELLED
            return StopReason.REFUSAL
        if turn.scenario is Scenario.STREAM:
            return await self._stream(turn)
        if turn.scenario is Scenario.CLEAR:
            return await self._reply(turn, CLEARED_TEXT)
        return await self._reply(turn, f"Echo: {text}")

    async def _simple(self, turn: Turn) -> StopReason:
        for text in SIMPLE_CHUNKS:
            if not await self._chunk(turn, text):
                return StopReason.CANCELLED
        return StopReason.END_TURN

    async def _reply(self, turn: Turn, text: str) -> StopReason:
        if not await self._chunk(turn, text):
            return StopReason.CANCELLED
        return StopReason.END_TURN

    async def _tool(self, turn: Turn) -> StopReason:
        await self._update(
            turn,
            ToolCallStart(toolCallId=TOOL_CALL_ID, title="Reading file", kind="read", status="pending"),
        )
        await self._pause(self.chunk_delay, turn)
        await self._update(turn, ToolCallProgress(toolCallId=TOOL_CALL_ID, status="in_progress"))
        await self._pause(self.chunk_delay, turn)

        if turn.is_cancelled:
            await self._update(turn, ToolCallProgress(toolCallId=TOOL_CALL_ID, status="failed"))
            return StopReason.CANCELLED

        await self._update(
            turn,
            ToolCallProgress(
                toolCallId=TOOL_CALL_ID,
                status="completed",
                content=[ContentToolCallContent(content=text_block("File contents: hello world"))],
            ),
        )
        return StopReason.END_TURN

    async def _permission(self, turn: Turn) -> StopReason:
        await self._update(
            turn,
            ToolCallStart(toolCallId=TOOL_CALL_ID, title="Write file", kind="edit", status="pending"),
        )

        params = {
            "sessionId": turn.session_id,
            "toolCallId": TOOL_CALL_ID,
            "title": "Write file",
            "toolCall": {"toolCallId": TOOL_CALL_ID, "title": "Write file"},
            "options": [option.to_wire() for option in PERMISSION_OPTIONS],
        }
        outcome = await self._ask_permission(turn, params)

        if outcome is None or turn.is_cancelled:
            await self._update(turn, ToolCallProgress(toolCallId=TOOL_CALL_ID, status="failed"))
            return StopReason.CANCELLED

        if outcome.optionId == "allow":
            await self._update(turn, ToolCallProgress(toolCallId=TOOL_CALL_ID, status="in_progress"))
            await self._update(
                turn,
                ToolCallProgress(
                    toolCallId=TOOL_CALL_ID,
                    status="completed",
                    content=[DiffToolCallContent(path="hello.txt", oldText=None, newText="hello world\n")],
                ),
            )
            return StopReason.END_TURN

        await self._update(turn, ToolCallProgress(toolCallId=TOOL_CALL_ID, status="failed"))
        return await self._reply(turn, PERMISSION_DENIED_TEXT)

    async def _ask_permission(
        self, turn: Turn, params: dict[str, Any]
    ) -> SelectedPermissionOutcome | None:
        """Send session/request_permission and wait for the answer or a cancel.

        Returns:
            The selected outcome, or None if the request was cancelled.
        """
        request = asyncio.create_task(
            self._connection.request(AcpMethod.SESSION_REQUEST_PERMISSION, params)
        )
        cancel = asyncio.create_task(turn.cancelled.wait())
        try:
            await asyncio.wait({request, cancel}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # Turn cancelled from outside; collect the request task too.
            request.cancel()
            with contextlib.suppress(asyncio.CancelledError, TransportClosed, JsonRpcProtocolError):
                await request
            raise
        finally:
            cancel.cancel()

        if not request.done():
            request.cancel()
            with contextlib.suppress(asyncio.CancelledError, TransportClosed, JsonRpcProtocolError):
                await request
            return None

        try:
            result = request.result()
        except JsonRpcProtocolError as e:
            logger.warning(f"Permission request failed: {e.message}")
            return None

        try:
            outcome = permission_outcome_adapter.validate_python((result or {}).get("outcome"))
        except ValidationError:
            logger.warning(f"Protocol error: malformed permission outcome {result!r}")
            return None

        if isinstance(outcome, SelectedPermissionOutcome):
            return outcome
        return None

    async def _stream(self, turn: Turn) -> StopReason:
        count = 0
        while True:
            count += 1
            if not await self._chunk(turn, f"chunk {count} "):
                return StopReason.CANCELLED
            await self._pause(self.stream_interval, turn)

    # =========================================================================
    # Emission
    # =========================================================================

    async def _pause(self, delay: float, turn: Turn) -> None:
        """Sleep up to ``delay`` seconds, waking early on cancel."""
        if delay <= 0:
            await asyncio.sleep(0)
            return
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(turn.cancelled.wait(), timeout=delay)

    async def _chunk(self, turn: Turn, text: str) -> bool:
        """Emit one agent message chunk unless the turn was cancelled.

        Returns:
            False if the turn was cancelled and nothing was sent.
        """
        await self._pause(self.chunk_delay, turn)
        if turn.is_cancelled:
            return False
        await self._update(turn, AgentMessageChunk(content=text_block(text)))
        return True

    async def _update(self, turn: Turn, update: Any) -> None:
        notification = SessionNotification(sessionId=turn.session_id, update=update)
        await self._connection.notify(AcpMethod.SESSION_UPDATE, notification.to_wire())

    async def close(self) -> None:
        """Cancel running turns and close the connection."""
        for turns in self._turns.values():
            for turn in turns:
                turn.cancelled.set()
        await self._connection.close()
