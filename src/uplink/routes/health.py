"""Health check endpoint."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint, with the bridge state."""
    bridge = request.app.state.bridge
    return JSONResponse({"status": "ok", "bridge": bridge.state.value})


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
