"""Store contracts consumed by the delivery queue.

The queue manager, conflict resolver and control API depend only on these
protocols. PostgreSQL implementations live beside their models
(``postbridge.queue.storage``, ``postbridge.content.storage``,
``postbridge.destinations.storage``); in-memory implementations live in
``postbridge.memory``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from postbridge.content.models import ContentItem
    from postbridge.destinations.models import Destination
    from postbridge.queue.models import DeliveryJob


class JobStore(Protocol):
    """Durable table of delivery jobs."""

    async def enqueue_job(self, job: DeliveryJob) -> str: ...

    async def get_job(self, job_id: str) -> DeliveryJob | None: ...

    async def update_job(self, job_id: str, **fields: Any) -> bool: ...

    async def transition(self, job_id: str, from_status: str, **fields: Any) -> bool: ...

    async def delete_job(self, job_id: str) -> bool: ...

    async def query_by_status(
        self,
        status: str,
        *,
        ready_only: bool = False,
        limit: int | None = None,
    ) -> list[DeliveryJob]: ...

    async def claim_next(self, exclude: Iterable[str] = ()) -> DeliveryJob | None: ...

    async def get_status_counts(self) -> dict[str, int]: ...

    async def get_last_completed_at(self) -> datetime | None: ...

    async def find_active(
        self, content_item_id: str, destination_id: str
    ) -> DeliveryJob | None: ...

    async def purge_finished(self, older_than: datetime) -> int: ...


class ContentStore(Protocol):
    """Content items produced by the extraction layer."""

    async def get_item(self, item_id: str) -> ContentItem | None: ...

    async def update_item(self, item_id: str, **fields: Any) -> bool: ...

    async def save_item(self, item: ContentItem) -> str: ...


class DestinationStore(Protocol):
    """Configured publishing endpoints."""

    async def get_destination(self, destination_id: str) -> Destination | None: ...

    async def update_destination(self, destination_id: str, **fields: Any) -> bool: ...

    async def get_default(self) -> Destination | None: ...

    async def list_destinations(self) -> list[Destination]: ...

    async def save_destination(self, destination: Destination) -> str: ...


# ---------------------------------------------------------------------------
# SQL helpers shared by the PostgreSQL stores
# ---------------------------------------------------------------------------


def build_set_clause(
    fields: Mapping[str, Any],
    allowed: Iterable[str],
    *,
    jsonb: Iterable[str] = (),
    start: int = 2,
) -> tuple[str, list[Any]]:
    """Build the ``SET`` clause of a partial UPDATE.

    Args:
        fields: Column name to new value.
        allowed: Columns callers may change; anything else raises.
        jsonb: Columns whose values are JSON-encoded and cast to ``jsonb``.
        start: Index of the first positional placeholder (``$1`` is
            usually the row id).

    Returns:
        The clause text and the ordered argument list.
    """
    allowed_set = set(allowed)
    jsonb_set = set(jsonb)
    unknown = set(fields) - allowed_set
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")

    parts: list[str] = []
    args: list[Any] = []
    for index, (column, value) in enumerate(fields.items(), start=start):
        if column in jsonb_set:
            parts.append(f"{column} = ${index}::jsonb")
            args.append(json.dumps(value) if value is not None else None)
        else:
            parts.append(f"{column} = ${index}")
            args.append(value.value if hasattr(value, "value") else value)
    return ", ".join(parts), args


def decode_jsonb(value: Any, default: Any = None) -> Any:
    """Decode a JSONB column that asyncpg may hand back as text."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value
