"""Content item models.

A content item is produced once by the extraction layer. The delivery
queue only ever touches its outcome fields (status, destination_id,
published_url, remote_id, error).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class ContentStatus(str, Enum):
    """Delivery state of a saved content item."""

    PENDING = "pending"
    SYNCING = "syncing"
    PUBLISHED = "published"
    FAILED = "failed"
    LOCAL = "local"


class MediaType(str, Enum):
    """Kinds of media attached to a content item."""

    IMAGE = "image"
    VIDEO = "video"
    GIF = "gif"
    AUDIO = "audio"


@dataclass
class AuthorInfo:
    """Author of the captured post."""

    id: str = ""
    name: str = ""
    username: str | None = None
    profile_url: str = ""
    avatar_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "profile_url": self.profile_url,
            "avatar_url": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorInfo:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            username=data.get("username"),
            profile_url=data.get("profile_url", ""),
            avatar_url=data.get("avatar_url"),
        )


@dataclass
class ContentFormats:
    """The same body rendered as text, HTML and markdown."""

    text: str = ""
    html: str = ""
    markdown: str = ""


@dataclass
class MediaItem:
    """A media reference; ``cached_url`` points at a locally cached copy."""

    type: str = MediaType.IMAGE
    url: str = ""
    thumbnail_url: str | None = None
    alt: str | None = None
    cached_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type.value) if isinstance(self.type, MediaType) else self.type,
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "alt": self.alt,
            "cached_url": self.cached_url,
        }


@dataclass
class PostMetadata:
    """Context extracted alongside the post body."""

    timestamp: datetime | None = None
    hashtags: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=list)
    location: str | None = None
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "hashtags": list(self.hashtags),
            "mentions": list(self.mentions),
            "location": self.location,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostMetadata:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else None,
            hashtags=list(data.get("hashtags", [])),
            mentions=list(data.get("mentions", [])),
            location=data.get("location"),
            language=data.get("language"),
        )


@dataclass
class ContentItem:
    """A captured unit of saved material awaiting optional delivery.

    Attributes:
        id: Unique identifier.
        platform: Source platform tag (``twitter``, ``reddit``, ...).
        url: Source URL of the original post.
        author: Author information.
        body: Text, HTML and markdown renderings of the post.
        media: Attached media references.
        metadata: Hashtags, mentions and other extracted context.
        status: Delivery state.
        destination_id: Destination the item was last published to.
        published_url: Remote URL returned by the destination.
        remote_id: Remote identifier returned by the destination.
        error: Last delivery error surfaced to the user.
    """

    id: str = field(default_factory=lambda: uuid4().hex)
    platform: str = "custom"
    url: str = ""
    author: AuthorInfo = field(default_factory=AuthorInfo)
    body: ContentFormats = field(default_factory=ContentFormats)
    media: list[MediaItem] = field(default_factory=list)
    metadata: PostMetadata = field(default_factory=PostMetadata)
    extracted_at: datetime = field(default_factory=_utcnow)
    status: str = ContentStatus.PENDING
    destination_id: str | None = None
    published_url: str | None = None
    remote_id: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_published(self) -> bool:
        return self.status == ContentStatus.PUBLISHED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "platform": self.platform,
            "url": self.url,
            "author": self.author.to_dict(),
            "body": {
                "text": self.body.text,
                "html": self.body.html,
                "markdown": self.body.markdown,
            },
            "media": [m.to_dict() for m in self.media],
            "metadata": self.metadata.to_dict(),
            "extracted_at": self.extracted_at.isoformat(),
            "status": str(self.status.value)
            if isinstance(self.status, ContentStatus)
            else self.status,
            "destination_id": self.destination_id,
            "published_url": self.published_url,
            "remote_id": self.remote_id,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentItem:
        """Create a ContentItem from a dictionary."""
        body = data.get("body") or {}
        return cls(
            id=data.get("id") or uuid4().hex,
            platform=data.get("platform", "custom"),
            url=data.get("url", ""),
            author=AuthorInfo.from_dict(data.get("author") or {}),
            body=ContentFormats(
                text=body.get("text", ""),
                html=body.get("html", ""),
                markdown=body.get("markdown", ""),
            ),
            media=[MediaItem(**m) for m in data.get("media", [])],
            metadata=PostMetadata.from_dict(data.get("metadata") or {}),
            extracted_at=datetime.fromisoformat(data["extracted_at"])
            if data.get("extracted_at")
            else _utcnow(),
            status=data.get("status", ContentStatus.PENDING),
            destination_id=data.get("destination_id"),
            published_url=data.get("published_url"),
            remote_id=data.get("remote_id"),
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utcnow(),
            updated_at=datetime.fromisoformat(data["updated_at"])
            if data.get("updated_at")
            else _utcnow(),
        )
