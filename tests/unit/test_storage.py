"""Tests for the content and destination PostgreSQL stores and SQL helpers."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from postbridge.content.models import ContentItem, ContentStatus
from postbridge.content.storage import ContentStorage
from postbridge.destinations.models import Destination, DestinationStats, DestinationType
from postbridge.destinations.storage import DestinationStorage
from postbridge.queue.models import JobStatus
from postbridge.stores import build_set_clause, decode_jsonb


def _make_pool() -> tuple[MagicMock, AsyncMock]:
    """Build a mock asyncpg.Pool and return ``(pool, conn)``."""
    pool = MagicMock()
    conn = AsyncMock()

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = ctx

    tx_ctx = MagicMock()
    tx_ctx.__aenter__ = AsyncMock(return_value=conn)
    tx_ctx.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=tx_ctx)

    conn.fetch.return_value = []
    conn.execute.return_value = "UPDATE 0"
    return pool, conn


def _content_row(**overrides: Any) -> dict[str, Any]:
    now = datetime.now(tz=UTC)
    row: dict[str, Any] = {
        "id": "item-1",
        "platform": "twitter",
        "url": "https://twitter.com/a/status/1",
        "author": json.dumps({"id": "u1", "name": "Alice", "profile_url": ""}),
        "body": json.dumps({"text": "hi", "html": "<p>hi</p>", "markdown": "hi"}),
        "media": json.dumps([{"type": "image", "url": "https://img/1.png"}]),
        "metadata": json.dumps({"hashtags": ["a"]}),
        "extracted_at": now,
        "status": "published",
        "destination_id": "dest-1",
        "published_url": "https://blog/1",
        "remote_id": "1",
        "error": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def _destination_row(**overrides: Any) -> dict[str, Any]:
    now = datetime.now(tz=UTC)
    row: dict[str, Any] = {
        "id": "dest-1",
        "name": "Blog",
        "type": "wordpress-rest",
        "config": json.dumps({"site_url": "https://blog", "auth_type": "bearer", "token": "t"}),
        "enabled": True,
        "is_default": True,
        "stats": json.dumps({"total_published": 4}),
        "last_sync": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


class TestSqlHelpers:
    def test_build_set_clause(self) -> None:
        clause, args = build_set_clause(
            {"status": JobStatus.FAILED, "metadata": {"a": 1}, "last_error": None},
            ("status", "metadata", "last_error"),
            jsonb=("metadata",),
        )
        assert clause == "status = $2, metadata = $3::jsonb, last_error = $4"
        assert args == ["failed", '{"a": 1}', None]

    def test_build_set_clause_start(self) -> None:
        clause, _ = build_set_clause({"name": "x"}, ("name",), start=1)
        assert clause == "name = $1"

    def test_build_set_clause_unknown(self) -> None:
        with pytest.raises(ValueError, match="drop"):
            build_set_clause({"drop": 1}, ("name",))

    def test_decode_jsonb(self) -> None:
        assert decode_jsonb('{"a": 1}') == {"a": 1}
        assert decode_jsonb({"a": 1}) == {"a": 1}
        assert decode_jsonb(None, []) == []


class TestContentStorage:
    @pytest.mark.asyncio
    async def test_ensure_schema(self) -> None:
        pool, conn = _make_pool()
        await ContentStorage(pool).ensure_schema()
        assert "CREATE TABLE IF NOT EXISTS content_items" in conn.execute.await_args.args[0]

    @pytest.mark.asyncio
    async def test_get_item(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = _content_row()
        item = await ContentStorage(pool).get_item("item-1")
        assert item is not None
        assert item.author.name == "Alice"
        assert item.body.html == "<p>hi</p>"
        assert item.media[0].url == "https://img/1.png"
        assert item.metadata.hashtags == ["a"]
        assert item.status == ContentStatus.PUBLISHED
        assert item.remote_id == "1"

    @pytest.mark.asyncio
    async def test_get_missing_item(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = None
        assert await ContentStorage(pool).get_item("nope") is None

    @pytest.mark.asyncio
    async def test_update_item(self) -> None:
        pool, conn = _make_pool()
        conn.execute.return_value = "UPDATE 1"
        ok = await ContentStorage(pool).update_item(
            "item-1", status=ContentStatus.FAILED, error="boom"
        )
        assert ok is True
        sql, *args = conn.execute.await_args.args
        assert sql == (
            "UPDATE content_items SET status = $2, error = $3, updated_at = now() WHERE id = $1"
        )
        assert args == ["item-1", "failed", "boom"]

    @pytest.mark.asyncio
    async def test_update_rejects_body(self) -> None:
        pool, _ = _make_pool()
        with pytest.raises(ValueError):
            await ContentStorage(pool).update_item("item-1", body={})

    @pytest.mark.asyncio
    async def test_save_item(self) -> None:
        pool, conn = _make_pool()
        item = ContentItem(id="item-9", platform="reddit")
        assert await ContentStorage(pool).save_item(item) == "item-9"
        sql, *args = conn.execute.await_args.args
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert args[0] == "item-9"
        assert args[8] == "pending"


class TestDestinationStorage:
    @pytest.mark.asyncio
    async def test_get_destination(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = _destination_row()
        destination = await DestinationStorage(pool).get_destination("dest-1")
        assert destination is not None
        assert destination.destination_type == DestinationType.WORDPRESS_REST
        assert destination.config.token == "t"
        assert destination.stats.total_published == 4

    @pytest.mark.asyncio
    async def test_get_default_none(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = None
        assert await DestinationStorage(pool).get_default() is None
        assert "is_default AND enabled" in conn.fetchrow.await_args.args[0]

    @pytest.mark.asyncio
    async def test_list_destinations(self) -> None:
        pool, conn = _make_pool()
        conn.fetch.return_value = [_destination_row(), _destination_row(id="dest-2")]
        destinations = await DestinationStorage(pool).list_destinations()
        assert [d.id for d in destinations] == ["dest-1", "dest-2"]

    @pytest.mark.asyncio
    async def test_update_stats_dataclass(self) -> None:
        pool, conn = _make_pool()
        conn.execute.return_value = "UPDATE 1"
        stats = DestinationStats(total_published=5, last_error="x")
        assert await DestinationStorage(pool).update_destination("dest-1", stats=stats)
        sql, *args = conn.execute.await_args.args
        assert "stats = $2::jsonb" in sql
        assert json.loads(args[1])["total_published"] == 5

    @pytest.mark.asyncio
    async def test_save_default_clears_others(self) -> None:
        pool, conn = _make_pool()
        destination = Destination(id="dest-3", name="New", is_default=True)
        await DestinationStorage(pool).save_destination(destination)

        first_sql, first_arg = conn.execute.await_args_list[0].args
        assert "SET is_default = FALSE" in first_sql
        assert first_arg == "dest-3"
        assert conn.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_save_non_default(self) -> None:
        pool, conn = _make_pool()
        await DestinationStorage(pool).save_destination(Destination(id="dest-4"))
        assert conn.execute.await_count == 1
