"""In-memory store implementations.

Used by tests and by single-process deployments that do not need
durability. Every store hands out copies so callers cannot mutate stored
state without going through ``update_*``. Mutations hold an
``asyncio.Lock`` so updates to one record are atomic.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Iterable
from dataclasses import fields as dataclass_fields
from datetime import UTC, datetime
from typing import Any

from postbridge.content.models import ContentItem
from postbridge.destinations.models import Destination
from postbridge.queue.models import ACTIVE_STATUSES, FINISHED_STATUSES, DeliveryJob, JobStatus


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _apply(target: Any, fields: dict[str, Any], allowed: Iterable[str]) -> None:
    allowed_set = set(allowed)
    unknown = set(fields) - allowed_set
    if unknown:
        raise ValueError(f"Unknown fields: {sorted(unknown)}")
    for name, value in fields.items():
        setattr(target, name, copy.deepcopy(value))


def _sort_key(job: DeliveryJob) -> tuple[int, datetime]:
    return (-int(job.priority), job.created_at)


class MemoryJobStore:
    """Job store kept in a dict."""

    _UPDATABLE = frozenset(
        f.name for f in dataclass_fields(DeliveryJob) if f.name not in ("id", "created_at")
    )

    def __init__(self) -> None:
        self._jobs: dict[str, DeliveryJob] = {}
        self._lock = asyncio.Lock()

    async def enqueue_job(self, job: DeliveryJob) -> str:
        async with self._lock:
            existing = self._find_active(job.content_item_id, job.destination_id)
            if existing is not None:
                return existing.id
            self._jobs[job.id] = copy.deepcopy(job)
            return job.id

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def update_job(self, job_id: str, **fields: Any) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            _apply(job, fields, self._UPDATABLE)
            return True

    async def transition(self, job_id: str, from_status: str, **fields: Any) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != from_status:
                return False
            # Mirrors the one-active-job-per-pair index of the SQL store.
            if fields.get("status") in ACTIVE_STATUSES and from_status not in ACTIVE_STATUSES:
                other = self._find_active(job.content_item_id, job.destination_id)
                if other is not None and other.id != job_id:
                    return False
            _apply(job, fields, self._UPDATABLE)
            return True

    async def delete_job(self, job_id: str) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status == JobStatus.PROCESSING:
                return False
            del self._jobs[job_id]
            return True

    async def query_by_status(
        self,
        status: str,
        *,
        ready_only: bool = False,
        limit: int | None = None,
    ) -> list[DeliveryJob]:
        now = _utcnow()
        matches = [
            job
            for job in self._jobs.values()
            if job.status == status
            and (not ready_only or job.scheduled_for is None or job.scheduled_for <= now)
        ]
        matches.sort(key=_sort_key)
        if limit is not None:
            matches = matches[:limit]
        return [copy.deepcopy(job) for job in matches]

    async def claim_next(self, exclude: Iterable[str] = ()) -> DeliveryJob | None:
        excluded = set(exclude)
        now = _utcnow()
        async with self._lock:
            ready = [
                job
                for job in self._jobs.values()
                if job.id not in excluded and job.is_ready(now)
            ]
            if not ready:
                return None
            job = min(ready, key=_sort_key)
            job.status = JobStatus.PROCESSING
            job.started_at = now
            return copy.deepcopy(job)

    async def get_status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for job in self._jobs.values():
            key = JobStatus(job.status).value
            counts[key] = counts.get(key, 0) + 1
        return counts

    async def get_last_completed_at(self) -> datetime | None:
        times = [
            job.completed_at
            for job in self._jobs.values()
            if job.status == JobStatus.COMPLETED and job.completed_at is not None
        ]
        return max(times) if times else None

    async def find_active(
        self, content_item_id: str, destination_id: str
    ) -> DeliveryJob | None:
        job = self._find_active(content_item_id, destination_id)
        return copy.deepcopy(job) if job else None

    async def purge_finished(self, older_than: datetime) -> int:
        async with self._lock:
            doomed = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in FINISHED_STATUSES
                and job.completed_at is not None
                and job.completed_at < older_than
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            return len(doomed)

    def _find_active(self, content_item_id: str, destination_id: str) -> DeliveryJob | None:
        for job in sorted(self._jobs.values(), key=lambda j: j.created_at):
            if (
                job.content_item_id == content_item_id
                and job.destination_id == destination_id
                and job.status in ACTIVE_STATUSES
            ):
                return job
        return None


class MemoryContentStore:
    """Content store kept in a dict."""

    _UPDATABLE = frozenset({"status", "destination_id", "published_url", "remote_id", "error"})

    def __init__(self, items: Iterable[ContentItem] = ()) -> None:
        self._items: dict[str, ContentItem] = {item.id: copy.deepcopy(item) for item in items}
        self._lock = asyncio.Lock()

    async def get_item(self, item_id: str) -> ContentItem | None:
        item = self._items.get(item_id)
        return copy.deepcopy(item) if item else None

    async def update_item(self, item_id: str, **fields: Any) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return False
            _apply(item, fields, self._UPDATABLE)
            item.updated_at = _utcnow()
            return True

    async def save_item(self, item: ContentItem) -> str:
        async with self._lock:
            self._items[item.id] = copy.deepcopy(item)
        return item.id


class MemoryDestinationStore:
    """Destination store kept in a dict, in insertion order."""

    _UPDATABLE = frozenset(
        {"name", "type", "config", "enabled", "is_default", "stats", "last_sync"}
    )

    def __init__(self, destinations: Iterable[Destination] = ()) -> None:
        self._destinations: dict[str, Destination] = {
            d.id: copy.deepcopy(d) for d in destinations
        }
        self._lock = asyncio.Lock()

    async def get_destination(self, destination_id: str) -> Destination | None:
        destination = self._destinations.get(destination_id)
        return copy.deepcopy(destination) if destination else None

    async def update_destination(self, destination_id: str, **fields: Any) -> bool:
        async with self._lock:
            destination = self._destinations.get(destination_id)
            if destination is None:
                return False
            _apply(destination, fields, self._UPDATABLE)
            destination.updated_at = _utcnow()
            return True

    async def get_default(self) -> Destination | None:
        for destination in self._destinations.values():
            if destination.is_default and destination.enabled:
                return copy.deepcopy(destination)
        return None

    async def list_destinations(self) -> list[Destination]:
        return [copy.deepcopy(d) for d in self._destinations.values()]

    async def save_destination(self, destination: Destination) -> str:
        async with self._lock:
            if destination.is_default:
                for other in self._destinations.values():
                    if other.id != destination.id:
                        other.is_default = False
            self._destinations[destination.id] = copy.deepcopy(destination)
        return destination.id
