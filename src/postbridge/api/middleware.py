"""Middleware for the control API server.

Provides shared-secret authentication and translation of domain errors
into JSON error responses.
"""

from __future__ import annotations

import hmac
from typing import Any

from aiohttp import web

from postbridge.errors import JobNotFoundError, QueueError, ValidationError
from postbridge.logging import get_logger

log = get_logger("postbridge.api.middleware")

# Paths that don't require authentication
PUBLIC_PATHS = frozenset({"/api/v1/health"})


def create_auth_middleware(api_secret: str | None) -> Any:
    """Create X-API-Key authentication middleware.

    With no secret configured every request is allowed; the server binds
    to localhost by default.
    """

    @web.middleware
    async def auth_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        if api_secret is None or request.path in PUBLIC_PATHS:
            return await handler(request)  # type: ignore[no-any-return]

        api_key = request.headers.get("X-API-Key")
        if not api_key:
            return web.json_response({"error": "Missing X-API-Key header"}, status=401)
        if not hmac.compare_digest(api_key.encode(), api_secret.encode()):
            log.warning("api_key_rejected", path=request.path)
            return web.json_response({"error": "Invalid API key"}, status=401)

        return await handler(request)  # type: ignore[no-any-return]

    return auth_middleware


def create_error_middleware() -> Any:
    """Map queue and validation errors onto HTTP statuses."""

    @web.middleware
    async def error_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)  # type: ignore[no-any-return]
        except JobNotFoundError as e:
            return web.json_response({"error": str(e)}, status=404)
        except QueueError as e:
            return web.json_response({"error": str(e)}, status=409)
        except ValidationError as e:
            return web.json_response({"error": str(e)}, status=400)

    return error_middleware
