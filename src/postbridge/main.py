"""Main entry point for Postbridge."""

import asyncio
import contextlib
import signal

import asyncpg

from postbridge.api.server import ControlAPIServer, run_server
from postbridge.config import get_settings
from postbridge.content.storage import ContentStorage
from postbridge.destinations.storage import DestinationStorage
from postbridge.logging import get_logger, setup_logging
from postbridge.notifications.channels import LogChannel, WebhookChannel
from postbridge.notifications.dispatcher import NotificationDispatcher
from postbridge.publishers.factory import PublisherFactory
from postbridge.queue.manager import QueueManager
from postbridge.queue.storage import JobStorage


async def main() -> None:
    """Main application entry point."""
    setup_logging()
    log = get_logger("postbridge.main")

    settings = get_settings()
    log.info(
        "starting_postbridge",
        environment=settings.environment,
        max_concurrent=settings.queue_max_concurrent,
    )

    pool = await asyncpg.create_pool(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    log.info("postgres_pool_created")

    jobs = JobStorage(pool)
    content = ContentStorage(pool)
    destinations = DestinationStorage(pool)
    for storage in (content, destinations, jobs):
        await storage.ensure_schema()
    log.info("schema_ready")

    # Notifications
    notifier = NotificationDispatcher(enabled=settings.notifications_enabled)
    notifier.register_channel(LogChannel())
    webhook_channel: WebhookChannel | None = None
    if settings.notification_webhook_url:
        webhook_channel = WebhookChannel(settings.notification_webhook_url)
        notifier.register_channel(webhook_channel)

    publishers = PublisherFactory(
        timeout=settings.publish_timeout_seconds,
        export_directory=settings.local_export_directory,
    )
    manager = QueueManager.from_settings(jobs, content, destinations, publishers, notifier)

    api_secret = settings.api_secret.get_secret_value() if settings.api_secret else None
    server = ControlAPIServer(
        manager,
        destinations,
        jobs,
        publishers,
        host=settings.api_host,
        port=settings.api_port,
        api_secret=api_secret,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform; KeyboardInterrupt still applies.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await manager.start()
        await run_server(server, stop_event)
    finally:
        log.info("shutdown_requested")
        await manager.stop()
        await publishers.close()
        await notifier.drain()
        if webhook_channel is not None:
            await webhook_channel.close()
        await pool.close()
        log.info("postbridge_stopped")


def run() -> None:
    """Run the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
