"""Correlation table for JSON-RPC request ids.

One map from request id to a single-use waiter. Two kinds of entries live in
it:

- ``ResponseWaiter``: we sent a request and await the counterpart's
  response. Resolved by the first response with a matching id.
- ``PermissionContinuation``: the agent sent ``session/request_permission``
  and awaits *our* response. Resolved by a user selection or by bulk
  cancellation, which invokes the continuation exactly once.

Ids of the two directions come from different peers and may collide, so
each entry is keyed by direction as well as by the id's JSON type and value.

Every method is synchronous. Entries are popped before their waiter is
resolved, so two racing resolutions of one id (a user selection against a
bulk cancel, or a duplicate response) resolve it once: the first wins and
the second is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from ..errors import JsonRpcProtocolError, TransportClosed, UnknownCorrelation
from .types import (
    CancelledPermissionOutcome,
    Envelope,
    RequestId,
    SelectedPermissionOutcome,
)

logger = logging.getLogger(__name__)

PermissionResolution = Union[SelectedPermissionOutcome, CancelledPermissionOutcome]
Continuation = Callable[[PermissionResolution], None]


class Direction(str, Enum):
    """Which peer allocated the id."""

    OUTBOUND = "outbound"  # we issued the request
    INBOUND = "inbound"  # the peer issued the request


@dataclass
class ResponseWaiter:
    """Pending outbound request awaiting its response."""

    request_id: RequestId
    future: asyncio.Future[Any]


@dataclass
class PermissionContinuation:
    """Pending inbound permission request awaiting a user decision."""

    request_id: RequestId
    resolve: Continuation


CorrelationEntry = Union[ResponseWaiter, PermissionContinuation]

_Key = tuple[str, str, RequestId]


def _key(direction: Direction, request_id: RequestId) -> _Key:
    return (direction.value, type(request_id).__name__, request_id)


class CorrelationTable:
    """Maps request ids to single-use waiters."""

    def __init__(self) -> None:
        self._entries: dict[_Key, CorrelationEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_requests(self) -> list[RequestId]:
        """Ids of outbound requests still awaiting a response."""
        return [e.request_id for e in self._entries.values() if isinstance(e, ResponseWaiter)]

    @property
    def pending_permissions(self) -> list[RequestId]:
        """Ids of permission requests still awaiting a decision."""
        return [
            e.request_id for e in self._entries.values() if isinstance(e, PermissionContinuation)
        ]

    # =========================================================================
    # Outbound requests
    # =========================================================================

    def expect_response(self, request_id: RequestId) -> asyncio.Future[Any]:
        """Register a waiter for the response to an outbound request."""
        key = _key(Direction.OUTBOUND, request_id)
        if key in self._entries:
            raise ValueError(f"Request id {request_id!r} is already pending")

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._entries[key] = ResponseWaiter(request_id=request_id, future=future)
        return future

    def resolve_response(self, envelope: Envelope) -> bool:
        """Resolve the waiter matching a response envelope.

        Returns False (and logs) when no waiter matches, which covers both
        unknown ids and excess responses for an id already resolved.
        """
        request_id = envelope.id
        entry = None
        if request_id is not None:
            entry = self._entries.get(_key(Direction.OUTBOUND, request_id))

        if not isinstance(entry, ResponseWaiter):
            logger.warning(f"Protocol error: {UnknownCorrelation(request_id)}")
            return False

        del self._entries[_key(Direction.OUTBOUND, entry.request_id)]

        if entry.future.done():
            # The caller gave up (cancelled) before the response arrived.
            logger.debug(f"Response for abandoned request {request_id!r} ignored")
            return False

        if envelope.error is not None:
            entry.future.set_exception(
                JsonRpcProtocolError(
                    code=envelope.error.code,
                    message=envelope.error.message,
                    data=envelope.error.data,
                )
            )
        else:
            entry.future.set_result(envelope.result)
        return True

    def discard(self, request_id: RequestId) -> None:
        """Forget an outbound waiter whose caller stopped waiting."""
        self._entries.pop(_key(Direction.OUTBOUND, request_id), None)

    # =========================================================================
    # Inbound permission requests
    # =========================================================================

    def register_permission(self, request_id: RequestId, continuation: Continuation) -> None:
        """Store the continuation that answers an inbound permission request."""
        key = _key(Direction.INBOUND, request_id)
        if key in self._entries:
            logger.warning(f"Permission request {request_id!r} re-issued; cancelling the old one")
            self.cancel_permission(request_id)
        self._entries[key] = PermissionContinuation(request_id=request_id, resolve=continuation)

    def select_permission(self, request_id: RequestId, option_id: str) -> bool:
        """Resolve a permission request with the user's chosen option.

        Returns False if the request was already resolved or never existed.
        """
        return self._resolve_permission(request_id, SelectedPermissionOutcome(optionId=option_id))

    def cancel_permission(self, request_id: RequestId) -> bool:
        """Resolve a single permission request as cancelled."""
        return self._resolve_permission(request_id, CancelledPermissionOutcome())

    def cancel_all(self) -> list[RequestId]:
        """Resolve every pending permission request as cancelled.

        Each continuation is invoked exactly once. Calling again is a no-op.

        Returns:
            The ids that were cancelled by this call.
        """
        cancelled: list[RequestId] = []
        for request_id in self.pending_permissions:
            if self.cancel_permission(request_id):
                cancelled.append(request_id)
        return cancelled

    def _resolve_permission(self, request_id: RequestId, outcome: PermissionResolution) -> bool:
        entry = self._entries.pop(_key(Direction.INBOUND, request_id), None)
        if not isinstance(entry, PermissionContinuation):
            logger.debug(f"Permission request {request_id!r} already resolved")
            return False

        try:
            entry.resolve(outcome)
        except Exception:
            logger.exception(f"Permission continuation for {request_id!r} failed")
        return True

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self, exc: BaseException | None = None) -> None:
        """Expire every entry so no waiter outlives the connection.

        Outbound waiters fail with ``exc`` (``TransportClosed`` by default);
        permission requests are cancelled.
        """
        error = exc or TransportClosed("Connection closed")
        for key, entry in list(self._entries.items()):
            if isinstance(entry, ResponseWaiter):
                del self._entries[key]
                if not entry.future.done():
                    entry.future.set_exception(error)
        self.cancel_all()
