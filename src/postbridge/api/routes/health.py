"""Health check endpoint for the control API."""

from aiohttp import web

from postbridge import __version__


async def handle_health(request: web.Request) -> web.Response:
    """GET /api/v1/health: no auth required."""
    manager = request.app.get("queue_manager")
    return web.json_response(
        {
            "status": "healthy",
            "version": __version__,
            "queue_running": bool(manager and manager.is_running),
        }
    )
