"""Unit tests for the client-side conversation state machine."""

from __future__ import annotations

from typing import Any

import pytest

from uplink.acp.conversation import (
    Conversation,
    PermissionRequest,
    block_text,
    tool_content_text,
)
from uplink.acp.types import (
    AgentMessageChunk,
    CancelledPermissionOutcome,
    ContentToolCallContent,
    DiffToolCallContent,
    ImageContentBlock,
    PermissionOption,
    ResourceLinkContentBlock,
    SelectedPermissionOutcome,
    TerminalToolCallContent,
    text_block,
)


def agent_chunk(text: str) -> dict[str, Any]:
    return {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": text}}


def user_chunk(text: str) -> dict[str, Any]:
    return {"sessionUpdate": "user_message_chunk", "content": {"type": "text", "text": text}}


def tool_call(tool_call_id: str = "tc1", **fields: Any) -> dict[str, Any]:
    return {"sessionUpdate": "tool_call", "toolCallId": tool_call_id, "title": "Read", **fields}


def tool_update(tool_call_id: str = "tc1", **fields: Any) -> dict[str, Any]:
    return {"sessionUpdate": "tool_call_update", "toolCallId": tool_call_id, **fields}


def permission_request(request_id: Any = 1) -> PermissionRequest:
    return PermissionRequest(
        request_id=request_id,
        tool_call_id="tc1",
        title="Write file",
        options=[
            PermissionOption(optionId="allow", name="Allow", kind="allow_once"),
            PermissionOption(optionId="reject", name="Reject", kind="reject_once"),
        ],
    )


# =============================================================================
# Messages
# =============================================================================


class TestMessages:
    """Tests for message chunk accumulation."""

    def test_chunks_concatenate_in_order(self) -> None:
        """Consecutive agent chunks build one message."""
        conversation = Conversation()
        for text in ("Hello ", "from ", "mock agent!"):
            conversation.apply_update(agent_chunk(text))

        assert len(conversation.messages) == 1
        assert conversation.messages[0].role == "agent"
        assert conversation.messages[0].text == "Hello from mock agent!"

    def test_role_change_opens_new_message(self) -> None:
        """A chunk of the other role closes the open message."""
        conversation = Conversation()
        conversation.apply_update(agent_chunk("a"))
        conversation.apply_update(user_chunk("b"))
        conversation.apply_update(agent_chunk("c"))

        assert [m.role for m in conversation.messages] == ["agent", "user", "agent"]
        assert conversation.messages[0].closed
        assert conversation.messages[1].closed
        assert not conversation.messages[2].closed

    def test_end_turn_closes_agent_message(self) -> None:
        """Chunks after a finished turn start a new message."""
        conversation = Conversation()
        conversation.begin_turn()
        conversation.apply_update(agent_chunk("first"))
        conversation.end_turn("end_turn")
        conversation.begin_turn()
        conversation.apply_update(agent_chunk("second"))

        assert [m.text for m in conversation.messages] == ["first", "second"]
        assert conversation.last_stop_reason == "end_turn"

    def test_add_user_message(self) -> None:
        """A sent prompt becomes a closed user message."""
        conversation = Conversation()
        conversation.apply_update(agent_chunk("earlier"))

        message = conversation.add_user_message("hi")

        assert message.closed
        assert conversation.messages[0].closed
        assert conversation.messages[-1].text == "hi"

    def test_accepts_models(self) -> None:
        """Typed update models are applied like dicts."""
        conversation = Conversation()

        assert conversation.apply_update(AgentMessageChunk(content=text_block("typed")))
        assert conversation.agent_text == "typed"

    def test_prompting_flag(self) -> None:
        """prompting is set by begin_turn and cleared by end_turn."""
        conversation = Conversation()

        conversation.begin_turn()
        assert conversation.prompting
        conversation.end_turn("cancelled")
        assert not conversation.prompting
        assert conversation.last_stop_reason == "cancelled"


# =============================================================================
# Tool calls
# =============================================================================


class TestToolCalls:
    """Tests for the tool call lifecycle."""

    def test_created_pending_by_default(self) -> None:
        """A tool call without status starts pending."""
        conversation = Conversation()
        conversation.apply_update(tool_call(kind="read"))

        call = conversation.tool_calls["tc1"]
        assert call.status == "pending"
        assert call.kind == "read"

    def test_forward_transitions(self) -> None:
        """Status moves pending -> in_progress -> completed."""
        conversation = Conversation()
        conversation.apply_update(tool_call())
        conversation.apply_update(tool_update(status="in_progress"))
        conversation.apply_update(tool_update(status="completed"))

        assert conversation.tool_calls["tc1"].status == "completed"
        assert conversation.tool_calls["tc1"].is_terminal

    def test_regression_is_ignored(self) -> None:
        """A backward status change is ignored."""
        conversation = Conversation()
        conversation.apply_update(tool_call(status="in_progress"))
        conversation.apply_update(tool_update(status="pending"))

        assert conversation.tool_calls["tc1"].status == "in_progress"

    def test_terminal_status_is_final(self) -> None:
        """No status change after completed or failed."""
        conversation = Conversation()
        conversation.apply_update(tool_call())
        conversation.apply_update(tool_update(status="failed"))
        conversation.apply_update(tool_update(status="completed"))
        conversation.apply_update(tool_update(status="in_progress"))

        assert conversation.tool_calls["tc1"].status == "failed"

    def test_fields_merge_even_when_status_rejected(self) -> None:
        """Title and content merge although the status is ignored."""
        conversation = Conversation()
        conversation.apply_update(tool_call())
        conversation.apply_update(tool_update(status="completed"))
        conversation.apply_update(tool_update(status="pending", title="Renamed"))

        call = conversation.tool_calls["tc1"]
        assert call.title == "Renamed"
        assert call.status == "completed"

    def test_content_is_replaced(self) -> None:
        """Each update with content replaces the previous content."""
        conversation = Conversation()
        conversation.apply_update(tool_call())
        conversation.apply_update(
            tool_update(content=[{"type": "content", "content": {"type": "text", "text": "one"}}])
        )
        conversation.apply_update(
            tool_update(content=[{"type": "diff", "path": "a.txt", "newText": "two"}])
        )

        content = conversation.tool_calls["tc1"].content
        assert len(content) == 1
        assert isinstance(content[0], DiffToolCallContent)

    def test_duplicate_id_is_ignored(self) -> None:
        """A second tool_call with the same id does not replace the first."""
        conversation = Conversation()
        conversation.apply_update(tool_call(title="First"))

        assert conversation.apply_update(tool_call(title="Second")) is False
        assert conversation.tool_calls["tc1"].title == "First"

    def test_update_for_unknown_id_is_ignored(self) -> None:
        """Updates for unknown tool calls change nothing."""
        conversation = Conversation()

        assert conversation.apply_update(tool_update("missing", status="completed")) is False
        assert conversation.tool_calls == {}

    def test_insertion_order(self) -> None:
        """Tool calls are kept in arrival order."""
        conversation = Conversation()
        for tool_call_id in ("b", "a", "c"):
            conversation.apply_update(tool_call(tool_call_id))

        assert list(conversation.tool_calls) == ["b", "a", "c"]


# =============================================================================
# Plans and unknown updates
# =============================================================================


class TestPlansAndUnknownUpdates:
    """Tests for plan replacement and tolerance of unknown payloads."""

    def test_plan_replaces_entries(self) -> None:
        """Each plan update replaces the whole plan."""
        conversation = Conversation()
        conversation.apply_update(
            {
                "sessionUpdate": "plan",
                "entries": [
                    {"content": "one", "priority": "high", "status": "pending"},
                    {"content": "two", "priority": "low", "status": "pending"},
                ],
            }
        )
        conversation.apply_update(
            {"sessionUpdate": "plan", "entries": [{"content": "three", "status": "completed"}]}
        )

        assert conversation.plan is not None
        assert [e.content for e in conversation.plan] == ["three"]
        assert conversation.plan[0].priority == "medium"

    def test_unknown_kind_is_ignored_without_event(self) -> None:
        """Unknown update kinds do not notify subscribers."""
        conversation = Conversation()
        events: list[None] = []
        conversation.on_change(lambda: events.append(None))

        assert conversation.apply_update({"sessionUpdate": "available_commands_update"}) is False
        assert events == []

    def test_malformed_update_is_ignored(self) -> None:
        """A known kind with a bad payload is dropped."""
        conversation = Conversation()

        assert conversation.apply_update({"sessionUpdate": "tool_call", "title": "no id"}) is False
        assert conversation.tool_calls == {}

    def test_clear(self) -> None:
        """clear() forgets messages, tool calls and plan."""
        conversation = Conversation()
        conversation.apply_update(agent_chunk("x"))
        conversation.apply_update(tool_call())
        conversation.apply_update({"sessionUpdate": "plan", "entries": []})

        conversation.clear()

        assert conversation.messages == []
        assert conversation.tool_calls == {}
        assert conversation.plan is None


# =============================================================================
# Change notification
# =============================================================================


class TestSubscribers:
    """Tests for on_change delivery."""

    def test_each_update_notifies(self) -> None:
        """Subscribers are called once per applied update."""
        conversation = Conversation()
        events: list[str] = []
        conversation.on_change(lambda: events.append(conversation.agent_text))

        conversation.apply_update(agent_chunk("a"))
        conversation.apply_update(agent_chunk("b"))

        assert events == ["a", "ab"]

    def test_unsubscribe_is_idempotent(self) -> None:
        """Unsubscribed callbacks are no longer called."""
        conversation = Conversation()
        events: list[None] = []
        unsubscribe = conversation.on_change(lambda: events.append(None))

        unsubscribe()
        unsubscribe()
        conversation.apply_update(agent_chunk("a"))

        assert events == []

    def test_failing_subscriber_does_not_block_others(self) -> None:
        """An exception in one subscriber is logged and delivery continues."""
        conversation = Conversation()
        events: list[None] = []

        def broken() -> None:
            raise RuntimeError("boom")

        conversation.on_change(broken)
        conversation.on_change(lambda: events.append(None))
        conversation.apply_update(agent_chunk("a"))

        assert events == [None]


# =============================================================================
# Permission registry
# =============================================================================


class TestPermissions:
    """Tests for the pending permission registry."""

    def test_resolve_removes_and_records(self) -> None:
        """Resolving moves the request to the history."""
        conversation = Conversation()
        conversation.track_permission(permission_request(1))

        assert conversation.resolve_permission(1, SelectedPermissionOutcome(optionId="allow"))
        assert conversation.permissions == {}
        resolved = conversation.resolved_permissions[0]
        assert resolved.approved
        assert resolved.label == "Approved"

    def test_reject_label(self) -> None:
        """Selecting a reject option is reported as denied."""
        conversation = Conversation()
        conversation.track_permission(permission_request(1))
        conversation.resolve_permission(1, SelectedPermissionOutcome(optionId="reject"))

        assert conversation.resolved_permissions[0].label == "Denied"

    def test_cancelled_label(self) -> None:
        """A cancelled request is neither approved nor denied."""
        conversation = Conversation()
        conversation.track_permission(permission_request(1))
        conversation.resolve_permission(1, CancelledPermissionOutcome())

        resolved = conversation.resolved_permissions[0]
        assert not resolved.approved
        assert resolved.label == "Cancelled"

    def test_second_resolution_is_noop(self) -> None:
        """A request is resolved at most once."""
        conversation = Conversation()
        conversation.track_permission(permission_request(1))
        conversation.resolve_permission(1, CancelledPermissionOutcome())

        assert conversation.resolve_permission(1, SelectedPermissionOutcome(optionId="allow")) is False
        assert len(conversation.resolved_permissions) == 1


# =============================================================================
# Rendering
# =============================================================================


class TestRendering:
    """Every content variant has a text rendering."""

    @pytest.mark.parametrize(
        ("block", "expected"),
        [
            (text_block("hi"), "hi"),
            (ImageContentBlock(data="AAAA", mimeType="image/png"), "[image image/png]"),
            (ResourceLinkContentBlock(uri="file:///a.txt", name="a.txt"), "[a.txt](file:///a.txt)"),
        ],
    )
    def test_block_text(self, block: Any, expected: str) -> None:
        assert block_text(block) == expected

    def test_tool_content_text(self) -> None:
        assert tool_content_text(ContentToolCallContent(content=text_block("out"))) == "out"
        assert tool_content_text(DiffToolCallContent(path="a", newText="new")) == "a\n+new"
        assert tool_content_text(TerminalToolCallContent(terminalId="t1")) == "Terminal: t1"
