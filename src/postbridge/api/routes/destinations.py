"""Destination endpoints: listing and connection tests."""

from __future__ import annotations

from aiohttp import web

from postbridge.logging import get_logger

log = get_logger("postbridge.api.routes.destinations")


async def handle_list_destinations(request: web.Request) -> web.Response:
    """GET /api/v1/destinations: configured destinations, secrets masked."""
    destinations = await request.app["destination_store"].list_destinations()
    return web.json_response(
        {"destinations": [d.to_dict(include_secrets=False) for d in destinations]}
    )


async def handle_test_destination(request: web.Request) -> web.Response:
    """POST /api/v1/destinations/{destination_id}/test: check connectivity."""
    destination_id = request.match_info["destination_id"]
    destination = await request.app["destination_store"].get_destination(destination_id)
    if destination is None:
        return web.json_response({"error": "Destination not found"}, status=404)

    ok, message = await request.app["publisher_factory"].test_destination(destination)
    return web.json_response({"destination_id": destination_id, "ok": ok, "message": message})


def register_destination_routes(app: web.Application) -> None:
    """Attach destination routes to *app*."""
    app.router.add_get("/api/v1/destinations", handle_list_destinations)
    app.router.add_post(
        "/api/v1/destinations/{destination_id}/test", handle_test_destination
    )
