"""Control API server.

A small aiohttp application for operating the delivery queue: status,
enqueue, pause/resume, retry, cancel and destination connection tests.
"""

from __future__ import annotations

import asyncio
from typing import Any

from aiohttp import web

from postbridge.api.middleware import create_auth_middleware, create_error_middleware
from postbridge.api.routes.destinations import register_destination_routes
from postbridge.api.routes.health import handle_health
from postbridge.api.routes.queue import register_queue_routes
from postbridge.logging import get_logger
from postbridge.publishers.factory import PublisherFactory
from postbridge.queue.manager import QueueManager
from postbridge.stores import DestinationStore, JobStore

log = get_logger("postbridge.api.server")


class ControlAPIServer:
    """REST API for controlling the delivery queue."""

    def __init__(
        self,
        queue_manager: QueueManager,
        destinations: DestinationStore,
        jobs: JobStore,
        publisher_factory: PublisherFactory,
        *,
        host: str = "127.0.0.1",
        port: int = 8080,
        api_secret: str | None = None,
    ) -> None:
        self._queue_manager = queue_manager
        self._destinations = destinations
        self._jobs = jobs
        self._publisher_factory = publisher_factory
        self._host = host
        self._port = port
        self._api_secret = api_secret
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

        log.info("control_api_initialized", host=host, port=port, auth=api_secret is not None)

    def create_app(self) -> web.Application:
        """Create and configure the aiohttp application."""
        middlewares: list[Any] = [
            # Error mapping (outermost)
            create_error_middleware(),
            create_auth_middleware(self._api_secret),
        ]

        app = web.Application(middlewares=middlewares)

        # Shared state for handlers
        app["queue_manager"] = self._queue_manager
        app["destination_store"] = self._destinations
        app["job_store"] = self._jobs
        app["publisher_factory"] = self._publisher_factory

        app.router.add_get("/api/v1/health", handle_health)
        register_queue_routes(app)
        register_destination_routes(app)

        self._app = app
        return app

    async def start(self) -> None:
        """Start the server."""
        if self._app is None:
            self.create_app()

        if self._app is None:  # pragma: no cover
            raise RuntimeError("create_app() must be called first")

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

        log.info("control_api_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            log.info("control_api_stopped")


async def run_server(server: ControlAPIServer, stop_event: asyncio.Event) -> None:
    """Serve until *stop_event* is set."""
    await server.start()
    try:
        await stop_event.wait()
    finally:
        await server.stop()
