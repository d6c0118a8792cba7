"""Session token bootstrap endpoint."""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

logger = logging.getLogger(__name__)


async def issue_token(request: Request) -> JSONResponse:
    """Issue a single-use token for the next WebSocket connection."""
    state = request.app.state
    issued = state.tokens.issue(state.config.cwd)
    logger.info("Issued session token")
    return JSONResponse({"token": issued.token, "cwd": issued.cwd})


token_routes = [
    Route("/api/token", issue_token, methods=["POST"]),
]
