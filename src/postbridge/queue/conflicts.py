"""Duplicate-delivery detection and resolution.

Before a job publishes, the resolver checks whether its content item is
already published to the job's destination. What happens next depends on
the configured :class:`ConflictStrategy`:

- ``skip``: complete the job without publishing and annotate it.
- ``overwrite``: publish again; the remote side receives a new version.
- ``create-new``: always create a fresh remote post.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from postbridge.content.models import ContentStatus
from postbridge.logging import get_logger
from postbridge.queue.models import DeliveryJob, JobStatus
from postbridge.stores import ContentStore, JobStore

log = get_logger("postbridge.queue.conflicts")


class ConflictStrategy(str, Enum):
    """Policy for re-delivering an already published item."""

    SKIP = "skip"
    OVERWRITE = "overwrite"
    CREATE_NEW = "create-new"


@dataclass
class ConflictCheckResult:
    """Outcome of :meth:`ConflictResolver.check`."""

    has_conflict: bool
    strategy: ConflictStrategy
    existing_remote_id: str | None = None
    existing_published_url: str | None = None


class ConflictResolver:
    """Detects and resolves duplicate deliveries.

    Args:
        jobs: Job store, used to annotate skipped jobs and find active ones.
        content: Content store, used to read publish state.
        default_strategy: Strategy applied to every conflict.
    """

    def __init__(
        self,
        jobs: JobStore,
        content: ContentStore,
        default_strategy: ConflictStrategy | str = ConflictStrategy.SKIP,
    ) -> None:
        self._jobs = jobs
        self._content = content
        self._strategy = ConflictStrategy(default_strategy)

    @property
    def strategy(self) -> ConflictStrategy:
        return self._strategy

    async def check(self, job: DeliveryJob) -> ConflictCheckResult:
        """Check whether *job* would re-deliver an already published item."""
        item = await self._content.get_item(job.content_item_id)
        if item is None:
            return ConflictCheckResult(has_conflict=False, strategy=self._strategy)

        if (
            item.status == ContentStatus.PUBLISHED
            and item.destination_id == job.destination_id
            and item.remote_id
        ):
            log.info(
                "conflict_detected",
                job_id=job.id,
                content_item_id=job.content_item_id,
                destination_id=job.destination_id,
                remote_id=item.remote_id,
            )
            return ConflictCheckResult(
                has_conflict=True,
                strategy=self._strategy,
                existing_remote_id=item.remote_id,
                existing_published_url=item.published_url,
            )

        return ConflictCheckResult(has_conflict=False, strategy=self._strategy)

    async def resolve(self, job: DeliveryJob, result: ConflictCheckResult) -> bool:
        """Apply the strategy; return ``True`` if delivery should continue."""
        if not result.has_conflict:
            return True

        if result.strategy == ConflictStrategy.SKIP:
            metadata = {
                **job.metadata,
                "skipped_reason": "duplicate",
                "existing_remote_id": result.existing_remote_id,
            }
            if result.existing_published_url:
                metadata["existing_published_url"] = result.existing_published_url
            await self._jobs.update_job(
                job.id,
                status=JobStatus.COMPLETED,
                completed_at=datetime.now(tz=UTC),
                metadata=metadata,
            )
            job.status = JobStatus.COMPLETED
            job.metadata = metadata
            log.info("duplicate_delivery_skipped", job_id=job.id, remote_id=result.existing_remote_id)
            return False

        log.info(
            "duplicate_delivery_allowed",
            job_id=job.id,
            strategy=result.strategy.value,
            remote_id=result.existing_remote_id,
        )
        return True

    async def find_active_job(
        self, content_item_id: str, destination_id: str
    ) -> DeliveryJob | None:
        """Return the pending or processing job for the pair, if any."""
        return await self._jobs.find_active(content_item_id, destination_id)

    async def is_duplicate_enqueue(self, content_item_id: str, destination_id: str) -> bool:
        """Whether the pair already has an active job."""
        return await self.find_active_job(content_item_id, destination_id) is not None
