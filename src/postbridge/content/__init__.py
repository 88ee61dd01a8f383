"""Captured content items and their storage."""

from postbridge.content.models import (
    AuthorInfo,
    ContentFormats,
    ContentItem,
    ContentStatus,
    MediaItem,
    MediaType,
    PostMetadata,
)

__all__ = [
    "AuthorInfo",
    "ContentFormats",
    "ContentItem",
    "ContentStatus",
    "MediaItem",
    "MediaType",
    "PostMetadata",
]
