"""Publisher contract and helpers shared by every destination protocol.

A publisher turns a :class:`ContentItem` into one remote post. HTTP
publishers share an ``httpx.AsyncClient``; transport failures and timeouts
come back as unsuccessful results without a status code, which the retry
strategy treats as retryable.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from postbridge.content.models import ContentItem
from postbridge.destinations.models import AuthType, Destination, DestinationConfig
from postbridge.errors import DeliveryError, TransientError, error_for_status
from postbridge.logging import get_logger

log = get_logger("postbridge.publishers.base")

DEFAULT_TIMEOUT = 30.0
DEFAULT_API_KEY_HEADER = "X-API-Key"
MAX_TITLE_LENGTH = 200
_ERROR_BODY_LIMIT = 500


@dataclass
class PublishResult:
    """Outcome of one publish attempt."""

    success: bool
    published_url: str | None = None
    remote_id: str | None = None
    error: str | None = None
    status_code: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_error(self) -> DeliveryError:
        """Convert a failed result into the matching delivery error."""
        message = self.error or "Publish failed"
        if self.status_code is not None:
            return error_for_status(self.status_code, message)
        return TransientError(message)


def build_auth_headers(config: DestinationConfig) -> dict[str, str]:
    """Build Authorization or API-key headers from a destination config.

    Custom headers are merged last and win over computed ones.
    """
    headers: dict[str, str] = {}
    auth_type = AuthType(config.auth_type)

    if auth_type in (AuthType.BEARER, AuthType.OAUTH):
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
    elif auth_type == AuthType.BASIC:
        if config.username and config.password:
            raw = f"{config.username}:{config.password}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"
    elif auth_type == AuthType.API_KEY and config.api_key:
        headers[config.api_key_header or DEFAULT_API_KEY_HEADER] = config.api_key

    headers.update(config.custom_headers)
    return headers


def derive_title(item: ContentItem) -> str:
    """First line of the text body, or ``"<author> on <platform>"``."""
    first_line = item.body.text.split("\n")[0].strip()
    if first_line and len(first_line) <= MAX_TITLE_LENGTH:
        return first_line
    return f"{item.author.name or 'Unknown'} on {item.platform}"


def html_body(item: ContentItem) -> str:
    """Best available HTML representation of the body."""
    return item.body.html or item.body.text or item.body.markdown or ""


def normalize_base_url(url: str) -> str:
    """Strip trailing slashes from a site URL."""
    return url.rstrip("/")


def resolve_path(data: Any, path: str) -> str | None:
    """Walk a dot-separated *path* through nested dicts.

    Returns:
        The leaf as a string, or ``None`` if any step is missing.
    """
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return None if current is None else str(current)


class Publisher(ABC):
    """Delivers content items to one destination.

    Subclasses implement :meth:`_publish` and :meth:`_test_connection`;
    the public wrappers turn transport failures into results.

    Args:
        destination: Destination to publish to.
        client: Shared HTTP client. When omitted the publisher creates and
            owns one.
        timeout: Timeout for a client created by the publisher.
    """

    def __init__(
        self,
        destination: Destination,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._destination = destination
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def destination(self) -> Destination:
        return self._destination

    @property
    def config(self) -> DestinationConfig:
        return self._destination.config

    def base_url(self) -> str:
        return normalize_base_url(self.config.site_url)

    def auth_headers(self) -> dict[str, str]:
        return build_auth_headers(self.config)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this publisher created it."""
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def publish(self, item: ContentItem) -> PublishResult:
        """Publish *item*; never raises for transport-level failures."""
        try:
            return await self._publish(item)
        except httpx.TimeoutException as e:
            log.warning("publish_timeout", destination_id=self._destination.id, error=str(e))
            return PublishResult(success=False, error=f"Request timed out: {e}")
        except httpx.HTTPError as e:
            log.warning(
                "publish_transport_error", destination_id=self._destination.id, error=str(e)
            )
            return PublishResult(success=False, error=f"Request failed: {e}")

    async def test_connection(self) -> bool:
        """Check the destination is reachable and accepts our credentials."""
        try:
            return await self._test_connection()
        except (httpx.HTTPError, ValueError) as e:
            log.debug(
                "connection_test_failed", destination_id=self._destination.id, error=str(e)
            )
            return False

    @abstractmethod
    async def _publish(self, item: ContentItem) -> PublishResult:
        """Protocol-specific publish."""

    @abstractmethod
    async def _test_connection(self) -> bool:
        """Protocol-specific connection check."""

    @staticmethod
    def _failure(label: str, response: httpx.Response) -> PublishResult:
        """Build a failed result from an error response."""
        return PublishResult(
            success=False,
            error=f"{label} {response.status_code}: {response.text[:_ERROR_BODY_LIMIT]}",
            status_code=response.status_code,
        )
