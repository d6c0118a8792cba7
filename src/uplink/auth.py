"""Single-use session tokens for the WebSocket handshake."""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from .errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionToken:
    """A token issued by ``POST /api/token``."""

    token: str
    cwd: str
    issued_at: float


class TokenStore:
    """Issues tokens and redeems each one at most once."""

    def __init__(self, ttl: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._tokens: dict[str, SessionToken] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def issue(self, cwd: str) -> SessionToken:
        self._expire()
        token = SessionToken(token=secrets.token_urlsafe(32), cwd=cwd, issued_at=self._clock())
        self._tokens[token.token] = token
        return token

    def consume(self, token: str | None) -> SessionToken:
        """Redeem a token.

        Raises:
            Unauthorized: If the token is missing, unknown, already used or
                expired.
        """
        self._expire()
        if not token:
            raise Unauthorized("Missing session token")

        issued = self._tokens.pop(token, None)
        if issued is None:
            raise Unauthorized("Invalid or already used session token")
        return issued

    def _expire(self) -> None:
        if self.ttl is None:
            return
        cutoff = self._clock() - self.ttl
        expired = [t for t, issued in self._tokens.items() if issued.issued_at < cutoff]
        for t in expired:
            del self._tokens[t]
        if expired:
            logger.debug(f"Expired {len(expired)} session token(s)")
