"""Uplink Server Application.

Creates the Starlette ASGI application with all routes.

Routes:
- /health - Health check with bridge state
- /api/token - Single-use session token for the WebSocket handshake
- /ws - WebSocket relay to the agent process
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import BaseRoute

from .auth import TokenStore
from .bridge import Bridge
from .config import ServerConfig
from .routes import health_routes, token_routes, websocket_routes

logger = logging.getLogger(__name__)


def create_app(config: ServerConfig | None = None, *, bridge: Bridge | None = None) -> Starlette:
    """Create the uplink application.

    Args:
        config: Server configuration (defaults to ``ServerConfig.from_env()``)
        bridge: Bridge to use instead of a fresh one

    Returns:
        Configured Starlette application
    """
    config = config or ServerConfig.from_env()
    bridge = bridge or Bridge(kill_timeout=config.kill_timeout)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(f"Agent command: {' '.join(config.agent_command)} (cwd={config.cwd})")
        yield
        await bridge.shutdown()

    routes: list[BaseRoute] = []
    routes.extend(health_routes)
    routes.extend(token_routes)
    routes.extend(websocket_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.config = config
    app.state.bridge = bridge
    app.state.tokens = TokenStore(ttl=config.token_ttl)
    return app
