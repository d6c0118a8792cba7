"""HTTP and WebSocket routes."""

from .health import health_routes
from .token import token_routes
from .websocket import WebSocketClient, websocket_routes

__all__ = [
    "WebSocketClient",
    "health_routes",
    "token_routes",
    "websocket_routes",
]
