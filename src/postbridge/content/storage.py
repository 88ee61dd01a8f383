"""PostgreSQL storage for captured content items."""

from __future__ import annotations

import json
from typing import Any

import asyncpg  # type: ignore[import-not-found,import-untyped]

from postbridge.content.models import (
    AuthorInfo,
    ContentFormats,
    ContentItem,
    MediaItem,
    PostMetadata,
)
from postbridge.logging import get_logger
from postbridge.stores import build_set_clause, decode_jsonb

log = get_logger("postbridge.content.storage")

CONTENT_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS content_items (
    id                  TEXT         PRIMARY KEY,
    platform            TEXT         NOT NULL,
    url                 TEXT         NOT NULL DEFAULT '',
    author              JSONB        NOT NULL DEFAULT '{}'::jsonb,
    body                JSONB        NOT NULL DEFAULT '{}'::jsonb,
    media               JSONB        NOT NULL DEFAULT '[]'::jsonb,
    metadata            JSONB        NOT NULL DEFAULT '{}'::jsonb,
    extracted_at        TIMESTAMPTZ  NOT NULL DEFAULT now(),
    status              TEXT         NOT NULL DEFAULT 'pending',
    destination_id      TEXT,
    published_url       TEXT,
    remote_id           TEXT,
    error               TEXT,
    created_at          TIMESTAMPTZ  NOT NULL DEFAULT now(),
    updated_at          TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_content_items_status
    ON content_items (status);
"""

# Outcome fields the delivery queue is allowed to touch.
_UPDATABLE_COLUMNS = (
    "status",
    "destination_id",
    "published_url",
    "remote_id",
    "error",
)


def _row_to_item(row: asyncpg.Record) -> ContentItem:
    body = decode_jsonb(row["body"], {})
    return ContentItem(
        id=row["id"],
        platform=row["platform"],
        url=row["url"],
        author=AuthorInfo.from_dict(decode_jsonb(row["author"], {})),
        body=ContentFormats(
            text=body.get("text", ""),
            html=body.get("html", ""),
            markdown=body.get("markdown", ""),
        ),
        media=[MediaItem(**m) for m in decode_jsonb(row["media"], [])],
        metadata=PostMetadata.from_dict(decode_jsonb(row["metadata"], {})),
        extracted_at=row["extracted_at"],
        status=row["status"],
        destination_id=row["destination_id"],
        published_url=row["published_url"],
        remote_id=row["remote_id"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class ContentStorage:
    """PostgreSQL-backed content item store.

    Shares the process-wide asyncpg pool with the job and destination
    stores.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        self._pool: asyncpg.Pool = pool  # type: ignore[type-arg]

    async def ensure_schema(self) -> None:
        """Create the content table if it doesn't exist."""
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(CONTENT_SCHEMA_SQL)
            log.info("content_schema_ensured")
        except asyncpg.PostgresError as exc:
            log.error("content_schema_creation_failed", error=str(exc))
            raise

    async def get_item(self, item_id: str) -> ContentItem | None:
        """Fetch a content item, or ``None`` if not found."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM content_items WHERE id = $1", item_id)
        if row is None:
            return None
        return _row_to_item(row)

    async def update_item(self, item_id: str, **fields: Any) -> bool:
        """Update outcome fields of a content item.

        Returns:
            ``True`` if a row was updated.
        """
        if not fields:
            return False
        clause, args = build_set_clause(fields, _UPDATABLE_COLUMNS)
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                f"UPDATE content_items SET {clause}, updated_at = now() WHERE id = $1",
                item_id,
                *args,
            )
        updated = result == "UPDATE 1"
        if updated:
            log.debug("content_item_updated", item_id=item_id, fields=sorted(fields))
        return updated

    async def save_item(self, item: ContentItem) -> str:
        """Insert or replace a content item."""
        data = item.to_dict()
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO content_items
                    (id, platform, url, author, body, media, metadata,
                     extracted_at, status, destination_id, published_url,
                     remote_id, error, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6::jsonb, $7::jsonb,
                        $8, $9, $10, $11, $12, $13, $14, now())
                ON CONFLICT (id) DO UPDATE SET
                    platform = EXCLUDED.platform,
                    url = EXCLUDED.url,
                    author = EXCLUDED.author,
                    body = EXCLUDED.body,
                    media = EXCLUDED.media,
                    metadata = EXCLUDED.metadata,
                    status = EXCLUDED.status,
                    destination_id = EXCLUDED.destination_id,
                    published_url = EXCLUDED.published_url,
                    remote_id = EXCLUDED.remote_id,
                    error = EXCLUDED.error,
                    updated_at = now()
                """,
                item.id,
                item.platform,
                item.url,
                json.dumps(data["author"]),
                json.dumps(data["body"]),
                json.dumps(data["media"]),
                json.dumps(data["metadata"]),
                item.extracted_at,
                data["status"],
                item.destination_id,
                item.published_url,
                item.remote_id,
                item.error,
                item.created_at,
            )
        log.info("content_item_saved", item_id=item.id, platform=item.platform)
        return item.id
