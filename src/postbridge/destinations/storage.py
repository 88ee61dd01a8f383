"""PostgreSQL storage for publishing destinations."""

from __future__ import annotations

import json
from typing import Any

import asyncpg  # type: ignore[import-not-found,import-untyped]

from postbridge.destinations.models import Destination, DestinationConfig, DestinationStats
from postbridge.logging import get_logger
from postbridge.stores import build_set_clause, decode_jsonb

log = get_logger("postbridge.destinations.storage")

DESTINATIONS_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS destinations (
    id                  TEXT         PRIMARY KEY,
    name                TEXT         NOT NULL,
    type                TEXT         NOT NULL,
    config              JSONB        NOT NULL DEFAULT '{}'::jsonb,
    enabled             BOOLEAN      NOT NULL DEFAULT TRUE,
    is_default          BOOLEAN      NOT NULL DEFAULT FALSE,
    stats               JSONB        NOT NULL DEFAULT '{}'::jsonb,
    last_sync           TIMESTAMPTZ,
    created_at          TIMESTAMPTZ  NOT NULL DEFAULT now(),
    updated_at          TIMESTAMPTZ  NOT NULL DEFAULT now()
);
"""

_UPDATABLE_COLUMNS = ("name", "type", "config", "enabled", "is_default", "stats", "last_sync")
_JSONB_COLUMNS = ("config", "stats")


def _row_to_destination(row: asyncpg.Record) -> Destination:
    return Destination(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        config=DestinationConfig.from_dict(decode_jsonb(row["config"], {})),
        enabled=row["enabled"],
        is_default=row["is_default"],
        stats=DestinationStats.from_dict(decode_jsonb(row["stats"], {})),
        last_sync=row["last_sync"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_column_value(column: str, value: Any) -> Any:
    # Nested dataclasses are stored as JSONB documents.
    if column in _JSONB_COLUMNS and hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class DestinationStorage:
    """PostgreSQL-backed destination store."""

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        self._pool: asyncpg.Pool = pool  # type: ignore[type-arg]

    async def ensure_schema(self) -> None:
        """Create the destinations table if it doesn't exist."""
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(DESTINATIONS_SCHEMA_SQL)
            log.info("destinations_schema_ensured")
        except asyncpg.PostgresError as exc:
            log.error("destinations_schema_creation_failed", error=str(exc))
            raise

    async def get_destination(self, destination_id: str) -> Destination | None:
        """Fetch a destination, or ``None`` if not found."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM destinations WHERE id = $1", destination_id)
        if row is None:
            return None
        return _row_to_destination(row)

    async def get_default(self) -> Destination | None:
        """Return the enabled default destination, if one is configured."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM destinations
                WHERE is_default AND enabled
                ORDER BY created_at ASC
                LIMIT 1
                """
            )
        if row is None:
            return None
        return _row_to_destination(row)

    async def list_destinations(self) -> list[Destination]:
        """Return every destination, oldest first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM destinations ORDER BY created_at ASC")
        return [_row_to_destination(row) for row in rows]

    async def update_destination(self, destination_id: str, **fields: Any) -> bool:
        """Partially update a destination.

        ``config`` and ``stats`` accept either dataclasses or plain dicts.

        Returns:
            ``True`` if a row was updated.
        """
        if not fields:
            return False
        values = {column: _to_column_value(column, value) for column, value in fields.items()}
        clause, args = build_set_clause(values, _UPDATABLE_COLUMNS, jsonb=_JSONB_COLUMNS)
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                f"UPDATE destinations SET {clause}, updated_at = now() WHERE id = $1",
                destination_id,
                *args,
            )
        return result == "UPDATE 1"

    async def save_destination(self, destination: Destination) -> str:
        """Insert or replace a destination.

        Marking a destination as default clears the flag on every other one.
        """
        async with self._pool.acquire() as conn, conn.transaction():
            if destination.is_default:
                await conn.execute(
                    "UPDATE destinations SET is_default = FALSE WHERE id <> $1",
                    destination.id,
                )
            await conn.execute(
                """
                INSERT INTO destinations
                    (id, name, type, config, enabled, is_default, stats,
                     last_sync, created_at, updated_at)
                VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7::jsonb, $8, $9, now())
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    type = EXCLUDED.type,
                    config = EXCLUDED.config,
                    enabled = EXCLUDED.enabled,
                    is_default = EXCLUDED.is_default,
                    stats = EXCLUDED.stats,
                    last_sync = EXCLUDED.last_sync,
                    updated_at = now()
                """,
                destination.id,
                destination.name,
                destination.to_dict()["type"],
                json.dumps(destination.config.to_dict()),
                destination.enabled,
                destination.is_default,
                json.dumps(destination.stats.to_dict()),
                destination.last_sync,
                destination.created_at,
            )
        log.info(
            "destination_saved",
            destination_id=destination.id,
            destination_type=destination.to_dict()["type"],
        )
        return destination.id
