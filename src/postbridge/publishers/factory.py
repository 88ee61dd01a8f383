"""Maps destination type tags to publisher implementations."""

from __future__ import annotations

import httpx

from postbridge.destinations.models import Destination, DestinationType, validate_destination
from postbridge.errors import ValidationError
from postbridge.logging import get_logger
from postbridge.publishers.activitypub import ActivityPubPublisher
from postbridge.publishers.base import DEFAULT_TIMEOUT, Publisher
from postbridge.publishers.drupal import DrupalJsonApiPublisher
from postbridge.publishers.local import LocalFilePublisher, LocalStorePublisher
from postbridge.publishers.micropub import MicropubPublisher
from postbridge.publishers.webhook import WebhookPublisher
from postbridge.publishers.wordpress import WordPressRestPublisher, WordPressXmlRpcPublisher

log = get_logger("postbridge.publishers.factory")

HTTP_PUBLISHERS: dict[DestinationType, type[Publisher]] = {
    DestinationType.WORDPRESS_REST: WordPressRestPublisher,
    DestinationType.WORDPRESS_XMLRPC: WordPressXmlRpcPublisher,
    DestinationType.DRUPAL_JSONAPI: DrupalJsonApiPublisher,
    DestinationType.MICROPUB: MicropubPublisher,
    DestinationType.ACTIVITYPUB: ActivityPubPublisher,
    DestinationType.WEBHOOK: WebhookPublisher,
    DestinationType.CUSTOM_REST: WebhookPublisher,
}


class PublisherFactory:
    """Builds publishers that share one HTTP client.

    Args:
        timeout: Per-request timeout in seconds.
        export_directory: Default directory for ``local-file`` destinations.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        export_directory: str = "exports",
    ) -> None:
        self._timeout = timeout
        self._export_directory = export_directory
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        """Close the shared HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def create(self, destination: Destination) -> Publisher:
        """Return the publisher for *destination*.

        Raises:
            ValidationError: If the destination is unsupported or misconfigured.
        """
        return create_publisher(
            destination,
            client=await self._get_client(),
            timeout=self._timeout,
            export_directory=self._export_directory,
        )

    async def test_destination(self, destination: Destination) -> tuple[bool, str]:
        """Check connectivity to *destination*.

        Returns:
            ``(ok, message)`` suitable for showing to a user.
        """
        try:
            publisher = await self.create(destination)
        except ValidationError as e:
            return False, str(e)
        ok = await publisher.test_connection()
        log.info(
            "destination_tested",
            destination_id=destination.id,
            destination_type=destination.to_dict()["type"],
            ok=ok,
        )
        if ok:
            return True, f"Connected to {destination.name or destination.id}"
        return False, f"Could not connect to {destination.name or destination.id}"


def create_publisher(
    destination: Destination,
    client: httpx.AsyncClient | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    export_directory: str = "exports",
) -> Publisher:
    """Return a standalone publisher for *destination*.

    Raises:
        ValidationError: If the destination type is not supported or its
            configuration is incomplete.
    """
    errors = validate_destination(destination)
    if errors:
        raise ValidationError(f"Invalid destination {destination.id}: {'; '.join(errors)}")
    destination_type = DestinationType(destination.type)

    if destination_type == DestinationType.LOCAL_STORE:
        return LocalStorePublisher(destination)
    if destination_type == DestinationType.LOCAL_FILE:
        return LocalFilePublisher(destination, export_directory=export_directory)
    return HTTP_PUBLISHERS[destination_type](destination, client=client, timeout=timeout)
