"""Conversation state machine (client side).

Folds ACP ``session/update`` notifications into a consistent conversation
view: the ordered message log, the tool-call table, the current plan, the
registry of pending permission requests and the ``prompting`` flag.

The conversation is the only writer of these collections. Every mutation is
synchronous and runs on the event loop thread, so an update is applied
atomically and observers see it only after it is complete.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError

from .types import (
    SESSION_UPDATE_KINDS,
    TERMINAL_TOOL_CALL_STATUSES,
    TOOL_CALL_STATUS_ORDER,
    AgentMessageChunk,
    AgentPlanUpdate,
    CancelledPermissionOutcome,
    ContentBlock,
    ContentToolCallContent,
    DiffToolCallContent,
    ImageContentBlock,
    PermissionOption,
    PlanEntry,
    RequestId,
    ResourceLinkContentBlock,
    SelectedPermissionOutcome,
    TerminalToolCallContent,
    TextContentBlock,
    ToolCallContent,
    ToolCallProgress,
    ToolCallStart,
    ToolCallStatus,
    ToolKind,
    UserMessageChunk,
    session_update_adapter,
)

logger = logging.getLogger(__name__)

Role = Literal["user", "agent"]
ChangeCallback = Callable[[], None]


def block_text(block: ContentBlock) -> str:
    """Plain-text rendering of a content block."""
    if isinstance(block, TextContentBlock):
        return block.text
    if isinstance(block, ImageContentBlock):
        return f"[image {block.mimeType}]"
    if isinstance(block, ResourceLinkContentBlock):
        return f"[{block.name}]({block.uri})"
    raise TypeError(f"Unknown content block: {block!r}")


def tool_content_text(item: ToolCallContent) -> str:
    """Plain-text rendering of a tool-call content item."""
    if isinstance(item, ContentToolCallContent):
        return block_text(item.content)
    if isinstance(item, DiffToolCallContent):
        old = f"-{item.oldText}\n" if item.oldText else ""
        return f"{item.path}\n{old}+{item.newText}"
    if isinstance(item, TerminalToolCallContent):
        return f"Terminal: {item.terminalId}"
    raise TypeError(f"Unknown tool call content: {item!r}")


@dataclass
class Message:
    """One message of the conversation, built from streamed chunks."""

    role: Role
    chunks: list[ContentBlock] = field(default_factory=list)
    closed: bool = False

    @property
    def text(self) -> str:
        return "".join(block_text(chunk) for chunk in self.chunks)


@dataclass
class ToolCall:
    """Tracked state of one tool call."""

    tool_call_id: str
    title: str
    kind: ToolKind = "other"
    status: ToolCallStatus = "pending"
    content: list[ToolCallContent] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TOOL_CALL_STATUSES


@dataclass
class PermissionRequest:
    """A pending ``session/request_permission`` surfaced to the UI."""

    request_id: RequestId
    tool_call_id: str
    title: str
    options: list[PermissionOption]
    session_id: str | None = None

    def option(self, option_id: str) -> PermissionOption | None:
        return next((o for o in self.options if o.optionId == option_id), None)


@dataclass
class ResolvedPermission:
    """A permission request after its single resolution."""

    request: PermissionRequest
    outcome: SelectedPermissionOutcome | CancelledPermissionOutcome

    @property
    def approved(self) -> bool:
        if not isinstance(self.outcome, SelectedPermissionOutcome):
            return False
        option = self.request.option(self.outcome.optionId)
        return option is not None and option.is_allow

    @property
    def label(self) -> str:
        if isinstance(self.outcome, CancelledPermissionOutcome):
            return "Cancelled"
        return "Approved" if self.approved else "Denied"


class Conversation:
    """Client-side view of one ACP session."""

    def __init__(self) -> None:
        self.messages: list[Message] = []
        self.tool_calls: dict[str, ToolCall] = {}
        self.plan: list[PlanEntry] | None = None
        self.permissions: dict[RequestId, PermissionRequest] = {}
        self.resolved_permissions: list[ResolvedPermission] = []
        self.prompting = False
        self.last_stop_reason: str | None = None
        self._subscribers: list[ChangeCallback] = []

    # =========================================================================
    # Change notification
    # =========================================================================

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Subscribe to changes.

        Returns:
            Unsubscribe function (safe to call more than once).
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("Error in conversation change subscriber")

    # =========================================================================
    # Session updates
    # =========================================================================

    def apply_update(self, update: dict[str, Any] | Any) -> bool:
        """Apply one ``session/update`` payload.

        Returns:
            True if the conversation changed (and subscribers were notified).
        """
        if isinstance(update, dict):
            kind = update.get("sessionUpdate")
            if kind not in SESSION_UPDATE_KINDS:
                logger.debug(f"Ignoring unsupported session update: {kind}")
                return False
            try:
                update = session_update_adapter.validate_python(update)
            except ValidationError as e:
                logger.warning(f"Protocol error: malformed {kind} update ({e.error_count()} errors)")
                return False

        if isinstance(update, AgentMessageChunk):
            changed = self._append_chunk("agent", update.content)
        elif isinstance(update, UserMessageChunk):
            changed = self._append_chunk("user", update.content)
        elif isinstance(update, ToolCallStart):
            changed = self._start_tool_call(update)
        elif isinstance(update, ToolCallProgress):
            changed = self._update_tool_call(update)
        elif isinstance(update, AgentPlanUpdate):
            self.plan = list(update.entries)
            changed = True
        else:
            raise TypeError(f"Unknown session update: {update!r}")

        if changed:
            self._notify()
        return changed

    def _append_chunk(self, role: Role, content: ContentBlock) -> bool:
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role == role and not last.closed:
            last.chunks.append(content)
            return True

        if last is not None and not last.closed:
            last.closed = True
        self.messages.append(Message(role=role, chunks=[content]))
        return True

    def _start_tool_call(self, update: ToolCallStart) -> bool:
        if update.toolCallId in self.tool_calls:
            logger.warning(f"Protocol error: duplicate tool call id {update.toolCallId}")
            return False

        tool_call = ToolCall(
            tool_call_id=update.toolCallId,
            title=update.title,
            kind=update.kind,
            content=list(update.content),
        )
        self.tool_calls[update.toolCallId] = tool_call

        if update.status != "pending":
            # Created pending, then moved forward in the same step.
            self._advance_status(tool_call, update.status)
        return True

    def _update_tool_call(self, update: ToolCallProgress) -> bool:
        tool_call = self.tool_calls.get(update.toolCallId)
        if tool_call is None:
            logger.warning(f"Protocol error: update for unknown tool call {update.toolCallId}")
            return False

        if update.title is not None:
            tool_call.title = update.title
        if update.kind is not None:
            tool_call.kind = update.kind
        if update.content is not None:
            tool_call.content = list(update.content)
        if update.status is not None:
            self._advance_status(tool_call, update.status)
        return True

    def _advance_status(self, tool_call: ToolCall, status: ToolCallStatus) -> None:
        if status == tool_call.status:
            return
        if tool_call.is_terminal or (
            TOOL_CALL_STATUS_ORDER[status] < TOOL_CALL_STATUS_ORDER[tool_call.status]
        ):
            logger.warning(
                f"Protocol error: tool call {tool_call.tool_call_id} cannot move "
                f"from {tool_call.status} to {status}"
            )
            return
        tool_call.status = status

    # =========================================================================
    # Local actions
    # =========================================================================

    def add_user_message(self, text: str) -> Message:
        """Record a prompt the user sent."""
        if self.messages and not self.messages[-1].closed:
            self.messages[-1].closed = True
        message = Message(role="user", chunks=[TextContentBlock(text=text)], closed=True)
        self.messages.append(message)
        self._notify()
        return message

    def begin_turn(self) -> None:
        """Mark a ``session/prompt`` request as in flight."""
        self.prompting = True
        self._notify()

    def end_turn(self, stop_reason: str | None) -> None:
        """Mark the in-flight prompt as answered (any stop reason)."""
        self.prompting = False
        self.last_stop_reason = stop_reason
        if self.messages and self.messages[-1].role == "agent":
            self.messages[-1].closed = True
        self._notify()

    def clear(self) -> None:
        """Forget messages, tool calls and plan."""
        self.messages.clear()
        self.tool_calls.clear()
        self.plan = None
        self._notify()

    # =========================================================================
    # Permission registry
    # =========================================================================

    def track_permission(self, request: PermissionRequest) -> None:
        """Register a pending permission request."""
        self.permissions[request.request_id] = request
        self._notify()

    def resolve_permission(
        self,
        request_id: RequestId,
        outcome: SelectedPermissionOutcome | CancelledPermissionOutcome,
    ) -> bool:
        """Remove a permission request from the registry, recording its outcome."""
        request = self.permissions.pop(request_id, None)
        if request is None:
            return False
        self.resolved_permissions.append(ResolvedPermission(request=request, outcome=outcome))
        self._notify()
        return True

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def agent_text(self) -> str:
        """Text of all agent messages, in order."""
        return "".join(m.text for m in self.messages if m.role == "agent")
