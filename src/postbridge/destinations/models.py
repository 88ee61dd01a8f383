"""Destination models.

A destination is a configured remote endpoint. Its ``type`` tag selects
the publisher implementation; ``config`` carries the protocol-specific
settings and credentials.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import HttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class DestinationType(str, Enum):
    """Protocol families a destination can speak."""

    WORDPRESS_REST = "wordpress-rest"
    WORDPRESS_XMLRPC = "wordpress-xmlrpc"
    DRUPAL_JSONAPI = "drupal-jsonapi"
    MICROPUB = "micropub"
    ACTIVITYPUB = "activitypub"
    WEBHOOK = "webhook"
    CUSTOM_REST = "custom-rest"
    LOCAL_STORE = "local-store"
    LOCAL_FILE = "local-file"

    @property
    def is_local(self) -> bool:
        return self in (DestinationType.LOCAL_STORE, DestinationType.LOCAL_FILE)


class AuthType(str, Enum):
    """How requests to a destination are authenticated."""

    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    OAUTH = "oauth"
    API_KEY = "api-key"


@dataclass
class ResponseMapping:
    """Dot-separated paths used to pull the remote id and URL from a JSON reply."""

    id_path: str = ""
    url_path: str = ""


@dataclass
class DestinationConfig:
    """Protocol-specific settings for a destination."""

    site_url: str = ""
    endpoint: str | None = None
    auth_type: str = AuthType.NONE
    username: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    api_key_header: str | None = None
    custom_headers: dict[str, str] = field(default_factory=dict)
    payload_template: str | None = None
    response_mapping: ResponseMapping | None = None
    post_type: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_url": self.site_url,
            "endpoint": self.endpoint,
            "auth_type": str(self.auth_type.value)
            if isinstance(self.auth_type, AuthType)
            else self.auth_type,
            "username": self.username,
            "password": self.password,
            "token": self.token,
            "api_key": self.api_key,
            "api_key_header": self.api_key_header,
            "custom_headers": dict(self.custom_headers),
            "payload_template": self.payload_template,
            "response_mapping": {
                "id_path": self.response_mapping.id_path,
                "url_path": self.response_mapping.url_path,
            }
            if self.response_mapping
            else None,
            "post_type": self.post_type,
            "category": self.category,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DestinationConfig:
        mapping = data.get("response_mapping")
        return cls(
            site_url=data.get("site_url", ""),
            endpoint=data.get("endpoint"),
            auth_type=data.get("auth_type", AuthType.NONE),
            username=data.get("username"),
            password=data.get("password"),
            token=data.get("token"),
            api_key=data.get("api_key"),
            api_key_header=data.get("api_key_header"),
            custom_headers=dict(data.get("custom_headers") or {}),
            payload_template=data.get("payload_template"),
            response_mapping=ResponseMapping(**mapping) if mapping else None,
            post_type=data.get("post_type"),
            category=data.get("category"),
            tags=list(data.get("tags") or []),
        )


@dataclass
class DestinationStats:
    """Running delivery counters for a destination."""

    total_published: int = 0
    failed_count: int = 0
    last_success: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_published": self.total_published,
            "failed_count": self.failed_count,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DestinationStats:
        return cls(
            total_published=data.get("total_published", 0),
            failed_count=data.get("failed_count", 0),
            last_success=_parse_dt(data.get("last_success")),
            last_error=data.get("last_error"),
        )


@dataclass
class Destination:
    """A configured publishing endpoint.

    Attributes:
        id: Unique identifier.
        name: Display name.
        type: Protocol tag; selects the publisher.
        config: Protocol-specific settings and credentials.
        enabled: Disabled destinations refuse new jobs.
        is_default: Used when an item is routed without explicit destinations.
        stats: Delivery counters.
        last_sync: Time of the last successful delivery.
    """

    id: str = field(default_factory=lambda: uuid4().hex)
    name: str = ""
    type: str = DestinationType.LOCAL_STORE
    config: DestinationConfig = field(default_factory=DestinationConfig)
    enabled: bool = True
    is_default: bool = False
    stats: DestinationStats = field(default_factory=DestinationStats)
    last_sync: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def destination_type(self) -> DestinationType:
        """The type tag as an enum member (raises ValueError if unknown)."""
        return DestinationType(self.type)

    def to_dict(self, *, include_secrets: bool = True) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        config = self.config.to_dict()
        if not include_secrets:
            for key in ("password", "token", "api_key"):
                if config.get(key):
                    config[key] = "***"
        return {
            "id": self.id,
            "name": self.name,
            "type": str(self.type.value) if isinstance(self.type, DestinationType) else self.type,
            "config": config,
            "enabled": self.enabled,
            "is_default": self.is_default,
            "stats": self.stats.to_dict(),
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Destination:
        """Create a Destination from a dictionary."""
        return cls(
            id=data.get("id") or uuid4().hex,
            name=data.get("name", ""),
            type=data.get("type", DestinationType.LOCAL_STORE),
            config=DestinationConfig.from_dict(data.get("config") or {}),
            enabled=data.get("enabled", True),
            is_default=data.get("is_default", False),
            stats=DestinationStats.from_dict(data.get("stats") or {}),
            last_sync=_parse_dt(data.get("last_sync")),
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or _utcnow(),
        )


_HTTP_URL: TypeAdapter[HttpUrl] = TypeAdapter(HttpUrl)


def validate_destination(destination: Destination) -> list[str]:
    """Check that *destination* is configured well enough to publish to.

    Remote destinations need an absolute ``https`` site URL, and the
    credentials their auth type calls for. An API-key header name is
    optional; publishers fall back to ``X-API-Key``.

    Returns:
        Human-readable problems; empty when the destination is usable.
    """
    try:
        destination_type = DestinationType(destination.type)
    except ValueError:
        return [f"Unsupported destination type: {destination.type}"]

    errors: list[str] = []
    config = destination.config
    if not destination_type.is_local:
        try:
            url = _HTTP_URL.validate_python(config.site_url)
        except PydanticValidationError:
            errors.append("A valid site URL is required")
        else:
            if url.scheme != "https":
                errors.append("HTTPS is required for remote destinations")

    try:
        auth_type = AuthType(config.auth_type)
    except ValueError:
        errors.append(f"Unsupported auth type: {config.auth_type}")
        return errors

    if auth_type == AuthType.BASIC:
        if not config.username:
            errors.append("Username is required for basic auth")
        if not config.password:
            errors.append("Password is required for basic auth")
    elif auth_type in (AuthType.BEARER, AuthType.OAUTH) and not config.token:
        errors.append(f"Token is required for {auth_type.value} auth")
    elif auth_type == AuthType.API_KEY and not config.api_key:
        errors.append("API key is required")
    return errors
