"""Delivery queue models: priority and status enums, jobs, retry policy.

Jobs flow through states: PENDING -> PROCESSING -> COMPLETED, with
PROCESSING -> PENDING on a scheduled retry, PROCESSING -> FAILED when the
retry budget is spent or the error cannot be fixed by retrying, and
PENDING -> CANCELLED on user request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class JobPriority(IntEnum):
    """Dispatch priority (higher = dispatched first)."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


class JobStatus(str, Enum):
    """Lifecycle states for a delivery job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
FINISHED_STATUSES = (JobStatus.COMPLETED, JobStatus.CANCELLED)


@dataclass
class DeliveryJob:
    """One attempt-tracked delivery of a content item to a destination.

    Attributes:
        id: Unique job identifier.
        content_item_id: Item to deliver.
        destination_id: Destination to deliver to.
        status: Current lifecycle state.
        priority: Dispatch priority.
        retry_count: Retries scheduled so far (never above max_retries).
        max_retries: Retry budget captured at enqueue time.
        last_error: Message from the most recent failure.
        created_at: Enqueue time; FIFO tie-breaker within a priority.
        scheduled_for: Earliest dispatch time, ``None`` means immediately.
        started_at: Time the current or last attempt began.
        completed_at: Time the job reached a terminal state.
        metadata: Annotations such as ``skipped_reason``.
    """

    content_item_id: str = ""
    destination_id: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    status: str = JobStatus.PENDING
    priority: int = JobPriority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    last_error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_ready(self, now: datetime | None = None) -> bool:
        """Whether a pending job may be dispatched at *now*."""
        if self.status != JobStatus.PENDING:
            return False
        if self.scheduled_for is None:
            return True
        return self.scheduled_for <= (now or _utcnow())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "content_item_id": self.content_item_id,
            "destination_id": self.destination_id,
            "status": str(self.status.value) if isinstance(self.status, JobStatus) else self.status,
            "priority": int(self.priority),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryJob:
        """Create a DeliveryJob from a dictionary."""
        return cls(
            id=data.get("id") or uuid4().hex,
            content_item_id=data.get("content_item_id", ""),
            destination_id=data.get("destination_id", ""),
            status=data.get("status", JobStatus.PENDING),
            priority=data.get("priority", JobPriority.NORMAL),
            retry_count=data.get("retry_count", 0),
            max_retries=data.get("max_retries", 3),
            last_error=data.get("last_error"),
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            scheduled_for=_parse_dt(data.get("scheduled_for")),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0
    backoff_multiplier: float = 2.0
    jitter_percent: float = 0.2


@dataclass
class QueueStatusReport:
    """Snapshot of queue counts and scheduler state."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    is_processing: bool = False
    is_paused: bool = False
    last_processed_at: datetime | None = None

    @property
    def total(self) -> int:
        # Cancelled jobs are excluded from the progress base.
        return self.pending + self.processing + self.completed + self.failed

    @property
    def progress(self) -> int:
        if self.total == 0:
            return 0
        return round(self.completed / self.total * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "total": self.total,
            "progress": self.progress,
            "is_processing": self.is_processing,
            "is_paused": self.is_paused,
            "last_processed_at": self.last_processed_at.isoformat()
            if self.last_processed_at
            else None,
        }
