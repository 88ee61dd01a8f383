"""Queue control endpoints.

Domain errors raised by the queue manager are mapped to HTTP statuses by
the error middleware.
"""

from __future__ import annotations

from typing import Any

from aiohttp import web

from postbridge.logging import get_logger
from postbridge.queue.models import JobPriority

log = get_logger("postbridge.api.routes.queue")


def _parse_priority(value: Any) -> JobPriority:
    """Accept a priority name (``"high"``) or its integer value."""
    if value is None:
        return JobPriority.NORMAL
    if isinstance(value, bool) or not isinstance(value, str | int):
        raise ValueError(f"Invalid priority: {value!r}")
    if isinstance(value, str) and not value.isdigit():
        try:
            return JobPriority[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown priority: {value}") from None
    return JobPriority(int(value))


def _is_id_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) and v for v in value)


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def handle_queue_status(request: web.Request) -> web.Response:
    """GET /api/v1/queue/status: counts, progress and scheduler state."""
    report = await request.app["queue_manager"].get_status()
    return web.json_response(report.to_dict())


async def handle_enqueue(request: web.Request) -> web.Response:
    """POST /api/v1/queue/jobs: enqueue one item for delivery.

    Body: ``content_item_id`` plus either ``destination_id`` or
    ``destination_ids`` (omit both to use the default destination), and
    an optional ``priority``.
    """
    manager = request.app["queue_manager"]
    data = await _read_json(request)

    content_item_id = data.get("content_item_id")
    if not content_item_id or not isinstance(content_item_id, str):
        return web.json_response({"error": "content_item_id is required"}, status=400)
    try:
        priority = _parse_priority(data.get("priority"))
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)

    destination_id = data.get("destination_id")
    if destination_id is not None and not isinstance(destination_id, str):
        return web.json_response({"error": "destination_id must be a string"}, status=400)
    if destination_id:
        job_id = await manager.enqueue(content_item_id, destination_id, priority)
        return web.json_response({"job_id": job_id}, status=201)

    destination_ids = data.get("destination_ids")
    if destination_ids is not None and not _is_id_list(destination_ids):
        return web.json_response(
            {"error": "destination_ids must be a list of destination ids"}, status=400
        )
    job_ids = await manager.enqueue_for_destinations(content_item_id, destination_ids, priority)
    return web.json_response({"job_ids": job_ids}, status=201)


async def handle_get_job(request: web.Request) -> web.Response:
    """GET /api/v1/queue/jobs/{job_id}: job details."""
    job = await request.app["job_store"].get_job(request.match_info["job_id"])
    if job is None:
        return web.json_response({"error": "Job not found"}, status=404)
    return web.json_response(job.to_dict())


async def handle_cancel_job(request: web.Request) -> web.Response:
    """DELETE /api/v1/queue/jobs/{job_id}: cancel a pending job."""
    job_id = request.match_info["job_id"]
    await request.app["queue_manager"].cancel(job_id)
    return web.json_response({"job_id": job_id, "status": "cancelled"})


async def handle_retry_job(request: web.Request) -> web.Response:
    """POST /api/v1/queue/jobs/{job_id}/retry: retry a failed job."""
    job_id = request.match_info["job_id"]
    await request.app["queue_manager"].retry_item(job_id)
    return web.json_response({"job_id": job_id, "status": "pending"})


async def handle_retry_failed(request: web.Request) -> web.Response:
    """POST /api/v1/queue/retry-failed: retry every failed job."""
    count = await request.app["queue_manager"].retry_all_failed()
    return web.json_response({"count": count})


async def handle_pause(request: web.Request) -> web.Response:
    """POST /api/v1/queue/pause."""
    manager = request.app["queue_manager"]
    manager.pause()
    return web.json_response({"paused": manager.is_paused})


async def handle_resume(request: web.Request) -> web.Response:
    """POST /api/v1/queue/resume."""
    manager = request.app["queue_manager"]
    manager.resume()
    return web.json_response({"paused": manager.is_paused})


def register_queue_routes(app: web.Application) -> None:
    """Attach queue routes to *app*."""
    app.router.add_get("/api/v1/queue/status", handle_queue_status)
    app.router.add_post("/api/v1/queue/jobs", handle_enqueue)
    app.router.add_get("/api/v1/queue/jobs/{job_id}", handle_get_job)
    app.router.add_delete("/api/v1/queue/jobs/{job_id}", handle_cancel_job)
    app.router.add_post("/api/v1/queue/jobs/{job_id}/retry", handle_retry_job)
    app.router.add_post("/api/v1/queue/retry-failed", handle_retry_failed)
    app.router.add_post("/api/v1/queue/pause", handle_pause)
    app.router.add_post("/api/v1/queue/resume", handle_resume)
