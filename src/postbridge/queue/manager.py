"""Queue manager: admission, bounded dispatch, retries and lifecycle.

A single scheduling pass claims ready jobs from the :class:`JobStore` and
runs each as an ``asyncio.Task`` until ``max_concurrent`` deliveries are
in flight. Passes are triggered by enqueue, resume, manual retry, job
completion, retry timers and the housekeeping loop. A pass never runs
concurrently with itself; a trigger that arrives mid-pass makes the
running pass loop once more.

The job store is the only source of truth. On start the manager recovers
jobs left in ``processing`` by a previous process and routes them through
the normal retry branch.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
from datetime import UTC, datetime, timedelta
from typing import Protocol

from postbridge.config import get_settings
from postbridge.content.models import ContentItem, ContentStatus
from postbridge.destinations.models import Destination, validate_destination
from postbridge.errors import (
    JobNotFoundError,
    QueueError,
    TransientError,
    ValidationError,
)
from postbridge.logging import get_logger, job_context
from postbridge.notifications.dispatcher import NotificationKind, NotificationSink
from postbridge.publishers.base import Publisher, PublishResult
from postbridge.queue.conflicts import ConflictResolver
from postbridge.queue.models import (
    DeliveryJob,
    JobPriority,
    JobStatus,
    QueueStatusReport,
    RetryPolicy,
)
from postbridge.queue.retry import RetryStrategy, is_retryable
from postbridge.stores import ContentStore, DestinationStore, JobStore

log = get_logger("postbridge.queue.manager")

# Graceful shutdown: max seconds to wait for in-flight deliveries.
_DRAIN_TIMEOUT_SECONDS = 30

# How often the housekeeping loop runs (stale recovery + purge + pass).
_HOUSEKEEPING_INTERVAL_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PublisherProvider(Protocol):
    """Builds the publisher for a destination."""

    async def create(self, destination: Destination) -> Publisher: ...


class QueueManager:
    """Schedules delivery jobs and records their outcome.

    Args:
        jobs: Job store.
        content: Content item store.
        destinations: Destination store.
        publishers: Publisher provider (usually a ``PublisherFactory``).
        policy: Retry policy; ``max_retries`` is copied onto new jobs.
        retry_strategy: Backoff calculator; built from *policy* if omitted.
        conflict_resolver: Duplicate-delivery resolver; defaults to ``skip``.
        notifier: Fire-and-forget success/failure sink.
        max_concurrent: Maximum deliveries in flight.
        stale_timeout_seconds: Age after which a processing job not owned
            by this process is considered abandoned.
        housekeeping_interval_seconds: Seconds between housekeeping runs.
        retention_days: Age after which completed and cancelled jobs are
            purged.
        drain_timeout_seconds: Seconds :meth:`stop` waits for in-flight
            deliveries.
    """

    def __init__(
        self,
        jobs: JobStore,
        content: ContentStore,
        destinations: DestinationStore,
        publishers: PublisherProvider,
        *,
        policy: RetryPolicy | None = None,
        retry_strategy: RetryStrategy | None = None,
        conflict_resolver: ConflictResolver | None = None,
        notifier: NotificationSink | None = None,
        max_concurrent: int = 3,
        stale_timeout_seconds: int = 300,
        housekeeping_interval_seconds: int = _HOUSEKEEPING_INTERVAL_SECONDS,
        retention_days: int = 7,
        drain_timeout_seconds: int = _DRAIN_TIMEOUT_SECONDS,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._jobs = jobs
        self._content = content
        self._destinations = destinations
        self._publishers = publishers
        self._policy = policy or (retry_strategy.policy if retry_strategy else RetryPolicy())
        self._retry = retry_strategy or RetryStrategy(self._policy)
        self._resolver = conflict_resolver or ConflictResolver(jobs, content)
        self._notifier = notifier
        self._max_concurrent = max_concurrent
        self._stale_timeout_seconds = stale_timeout_seconds
        self._housekeeping_interval_seconds = housekeeping_interval_seconds
        self._retention_days = retention_days
        self._drain_timeout_seconds = drain_timeout_seconds

        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._retry_timers: dict[str, asyncio.Task[None]] = {}
        self._passes: set[asyncio.Task[int]] = set()
        self._housekeeping_task: asyncio.Task[None] | None = None
        self._stats_lock = asyncio.Lock()
        self._running = False
        self._paused = False
        self._pass_active = False
        self._rerun_requested = False

    @classmethod
    def from_settings(
        cls,
        jobs: JobStore,
        content: ContentStore,
        destinations: DestinationStore,
        publishers: PublisherProvider,
        notifier: NotificationSink | None = None,
    ) -> QueueManager:
        """Build a manager configured from :func:`get_settings`."""
        settings = get_settings()
        policy = settings.retry_policy()
        return cls(
            jobs,
            content,
            destinations,
            publishers,
            policy=policy,
            conflict_resolver=ConflictResolver(
                jobs, content, default_strategy=settings.conflict_strategy
            ),
            notifier=notifier,
            max_concurrent=settings.queue_max_concurrent,
            stale_timeout_seconds=settings.queue_stale_timeout_seconds,
            housekeeping_interval_seconds=settings.queue_housekeeping_interval_seconds,
            retention_days=settings.queue_completed_retention_days,
            drain_timeout_seconds=settings.queue_drain_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Recover abandoned jobs, start housekeeping and run a first pass."""
        if self._running:
            log.warning("queue_manager_already_running")
            return

        self._running = True
        # Nothing can be in flight in a fresh process, so every
        # processing job was interrupted.
        recovered = await self.recover_stale_jobs(stale_after_seconds=0)
        await self._restore_retry_timers()
        self._housekeeping_task = asyncio.create_task(self._housekeeping_loop())
        self._trigger()
        log.info(
            "queue_manager_started",
            max_concurrent=self._max_concurrent,
            recovered=recovered,
        )

    async def stop(self) -> None:
        """Gracefully stop.

        1. Stop triggering new passes.
        2. Cancel housekeeping and retry timers.
        3. Wait up to the drain timeout for in-flight deliveries.
        4. Cancel whatever is still running; those jobs stay ``processing``
           and are recovered on the next start.
        """
        if not self._running:
            return

        log.info("queue_manager_stopping", in_flight=len(self._in_flight))
        self._running = False

        if self._housekeeping_task and not self._housekeeping_task.done():
            self._housekeeping_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._housekeeping_task
        self._housekeeping_task = None

        for timer in list(self._retry_timers.values()):
            timer.cancel()
        self._retry_timers.clear()

        if self._passes:
            await asyncio.gather(*self._passes, return_exceptions=True)

        if self._in_flight:
            _, pending = await asyncio.wait(
                list(self._in_flight.values()),
                timeout=self._drain_timeout_seconds,
            )
            for task in pending:
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            if pending:
                log.warning("queue_drain_timeout", abandoned=len(pending))

        log.info("queue_manager_stopped")

    @property
    def is_running(self) -> bool:
        """Whether the manager is running."""
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def in_flight(self) -> frozenset[str]:
        """Ids of jobs currently executing in this process."""
        return frozenset(self._in_flight)

    async def wait_until_idle(self) -> None:
        """Wait until no pass, delivery or retry timer is outstanding.

        Retry timers are included, so only use this with short backoff
        delays.
        """
        while True:
            tasks = [*self._passes, *self._in_flight.values(), *self._retry_timers.values()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        content_item_id: str,
        destination_id: str,
        priority: int = JobPriority.NORMAL,
    ) -> str:
        """Admit a delivery job for the pair.

        An active (pending or processing) job for the same pair is reused
        instead of creating a second one.

        Returns:
            The id of the new or existing job.

        Raises:
            ValidationError: If the item or destination does not exist, or
                the destination is disabled or misconfigured.
        """
        item = await self._content.get_item(content_item_id)
        if item is None:
            raise ValidationError(f"Content item not found: {content_item_id}")
        destination = await self._destinations.get_destination(destination_id)
        if destination is None:
            raise ValidationError(f"Destination not found: {destination_id}")
        if not destination.enabled:
            raise ValidationError(f"Destination is disabled: {destination_id}")
        problems = validate_destination(destination)
        if problems:
            raise ValidationError(f"Invalid destination {destination_id}: {'; '.join(problems)}")

        existing = await self._resolver.find_active_job(content_item_id, destination_id)
        if existing is not None:
            log.info(
                "enqueue_coalesced",
                job_id=existing.id,
                content_item_id=content_item_id,
                destination_id=destination_id,
            )
            return existing.id

        job = DeliveryJob(
            content_item_id=content_item_id,
            destination_id=destination_id,
            priority=JobPriority(priority),
            max_retries=self._policy.max_retries,
        )
        job_id = await self._jobs.enqueue_job(job)
        log.info(
            "job_enqueued",
            job_id=job_id,
            content_item_id=content_item_id,
            destination_id=destination_id,
            priority=int(priority),
        )
        self._trigger()
        return job_id

    async def enqueue_for_destinations(
        self,
        content_item_id: str,
        destination_ids: list[str] | None = None,
        priority: int = JobPriority.NORMAL,
    ) -> list[str]:
        """Route one item to several destinations, one job each.

        With no destination ids the default destination is used.

        Raises:
            ValidationError: If no ids are given and there is no default.
        """
        if not destination_ids:
            default = await self._destinations.get_default()
            if default is None:
                raise ValidationError("No default destination configured")
            destination_ids = [default.id]
        return [
            await self.enqueue(content_item_id, destination_id, priority)
            for destination_id in destination_ids
        ]

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop dispatching new jobs; in-flight deliveries finish."""
        if not self._paused:
            self._paused = True
            log.info("queue_paused", in_flight=len(self._in_flight))

    def resume(self) -> None:
        """Resume dispatching."""
        if self._paused:
            self._paused = False
            log.info("queue_resumed")
        self._trigger()

    async def retry_item(self, job_id: str) -> None:
        """Put a failed job back in the queue with a fresh retry budget.

        Raises:
            JobNotFoundError: If the job does not exist.
            QueueError: If the job is not failed, or its item and destination
                already have an active job.
        """
        job = await self._require_job(job_id)
        if job.status != JobStatus.FAILED:
            raise QueueError(f"Only failed jobs can be retried (job {job_id} is {job.status})")
        if not await self._reset_failed(job):
            raise QueueError(
                f"Job {job_id} cannot be retried: another job for its item and destination "
                "is active, or it is no longer failed"
            )
        log.info("job_retry_requested", job_id=job_id)
        self._trigger()

    async def retry_all_failed(self) -> int:
        """Reset every failed job; return how many were reset.

        Jobs whose item and destination already have an active job are
        left failed and not counted.
        """
        count = 0
        for job in await self._jobs.query_by_status(JobStatus.FAILED):
            if await self._reset_failed(job):
                count += 1
        if count:
            log.info("failed_jobs_requeued", count=count)
            self._trigger()
        return count

    async def cancel(self, job_id: str) -> None:
        """Cancel a pending job.

        Raises:
            JobNotFoundError: If the job does not exist.
            QueueError: If the job is not pending, including when a
                scheduling pass claims it first.
        """
        job = await self._require_job(job_id)
        if job.status != JobStatus.PENDING:
            raise QueueError(f"Only pending jobs can be cancelled (job {job_id} is {job.status})")
        cancelled = await self._jobs.transition(
            job_id,
            JobStatus.PENDING,
            status=JobStatus.CANCELLED,
            completed_at=_utcnow(),
        )
        if not cancelled:
            raise QueueError(f"Job {job_id} was dispatched before it could be cancelled")
        self._cancel_timer(job_id)
        log.info("job_cancelled", job_id=job_id)

    async def get_status(self) -> QueueStatusReport:
        """Return job counts and scheduler state."""
        counts = await self._jobs.get_status_counts()
        return QueueStatusReport(
            pending=counts.get(JobStatus.PENDING.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            completed=counts.get(JobStatus.COMPLETED.value, 0),
            failed=counts.get(JobStatus.FAILED.value, 0),
            cancelled=counts.get(JobStatus.CANCELLED.value, 0),
            is_processing=bool(self._in_flight),
            is_paused=self._paused,
            last_processed_at=await self._jobs.get_last_completed_at(),
        )

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def recover_stale_jobs(self, stale_after_seconds: int) -> int:
        """Route abandoned processing jobs through the retry branch.

        A job is abandoned when it is ``processing``, not executing in this
        process, and started at least *stale_after_seconds* ago.

        Returns:
            Number of jobs recovered.
        """
        cutoff = _utcnow() - timedelta(seconds=stale_after_seconds)
        recovered = 0
        for job in await self._jobs.query_by_status(JobStatus.PROCESSING):
            if job.id in self._in_flight:
                continue
            if job.started_at is not None and job.started_at > cutoff:
                continue
            log.warning("stale_job_recovered", job_id=job.id, started_at=job.started_at)
            await self._handle_failure(
                job, TransientError("Delivery was interrupted before completing")
            )
            recovered += 1
        if recovered:
            self._trigger()
        return recovered

    async def purge_completed(self, older_than_days: int) -> int:
        """Delete completed and cancelled jobs older than *older_than_days*."""
        return await self._jobs.purge_finished(_utcnow() - timedelta(days=older_than_days))

    async def _housekeeping_loop(self) -> None:
        """Periodically recover stale jobs, purge old ones and run a pass."""
        while self._running:
            try:
                await asyncio.sleep(self._housekeeping_interval_seconds)
                if not self._running:
                    break
                await self.recover_stale_jobs(self._stale_timeout_seconds)
                await self.purge_completed(self._retention_days)
                # Catches retries whose timer was lost, e.g. after a restart.
                self._trigger()
            except asyncio.CancelledError:
                break
            except Exception:
                log.exception("housekeeping_error")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _trigger(self) -> None:
        """Request a scheduling pass."""
        if not self._running:
            return
        if self._pass_active:
            self._rerun_requested = True
            return
        task = asyncio.create_task(self.process_queue())
        self._passes.add(task)
        task.add_done_callback(self._passes.discard)

    async def process_queue(self) -> int:
        """Run one scheduling pass.

        Returns:
            Number of jobs dispatched by this pass.
        """
        if self._pass_active:
            self._rerun_requested = True
            return 0

        self._pass_active = True
        dispatched = 0
        try:
            while True:
                self._rerun_requested = False
                while (
                    self._running
                    and not self._paused
                    and len(self._in_flight) < self._max_concurrent
                ):
                    job = await self._jobs.claim_next(exclude=self._in_flight.keys())
                    if job is None:
                        break
                    self._dispatch(job)
                    dispatched += 1
                if not self._rerun_requested:
                    break
        except Exception:
            log.exception("scheduling_pass_failed")
        finally:
            self._pass_active = False
        return dispatched

    def _dispatch(self, job: DeliveryJob) -> None:
        task = asyncio.create_task(self._execute(job))
        self._in_flight[job.id] = task
        task.add_done_callback(functools.partial(self._on_job_done, job.id))
        log.debug("job_dispatched", job_id=job.id, in_flight=len(self._in_flight))

    def _on_job_done(self, job_id: str, _task: asyncio.Task[None]) -> None:
        self._in_flight.pop(job_id, None)
        self._trigger()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, job: DeliveryJob) -> None:
        """Run one delivery attempt and record its outcome."""
        with job_context(job.id, job.content_item_id, job.destination_id):
            await self._attempt(job)

    async def _attempt(self, job: DeliveryJob) -> None:
        log.debug("job_started", job_id=job.id, attempt=job.retry_count + 1)
        try:
            item = await self._content.get_item(job.content_item_id)
            if item is None:
                raise ValidationError(f"Content item not found: {job.content_item_id}")
            destination = await self._destinations.get_destination(job.destination_id)
            if destination is None:
                raise ValidationError(f"Destination not found: {job.destination_id}")

            conflict = await self._resolver.check(job)
            if not await self._resolver.resolve(job, conflict):
                return

            publisher = await self._publishers.create(destination)
            result = await publisher.publish(item)
            if not result.success:
                raise result.to_error()
            await self._complete(job, item, destination, result)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            try:
                await self._handle_failure(job, exc)
            except Exception:
                log.exception("job_failure_handling_failed", job_id=job.id)

    async def _complete(
        self,
        job: DeliveryJob,
        item: ContentItem,
        destination: Destination,
        result: PublishResult,
    ) -> None:
        now = _utcnow()
        await self._content.update_item(
            item.id,
            status=ContentStatus.PUBLISHED,
            destination_id=destination.id,
            published_url=result.published_url,
            remote_id=result.remote_id,
            error=None,
        )
        async with self._stats_lock:
            current = await self._destinations.get_destination(destination.id)
            if current is not None:
                stats = current.stats
                stats.total_published += 1
                stats.last_success = now
                await self._destinations.update_destination(
                    destination.id, stats=stats, last_sync=now
                )
        await self._jobs.update_job(job.id, status=JobStatus.COMPLETED, completed_at=now)
        log.info(
            "job_completed",
            job_id=job.id,
            destination_id=destination.id,
            remote_id=result.remote_id,
            published_url=result.published_url,
        )
        self._notify(
            NotificationKind.SUCCESS,
            "Published",
            f"Published to {destination.name or destination.id}",
            job_id=job.id,
            content_item_id=item.id,
            destination_id=destination.id,
            published_url=result.published_url,
        )

    async def _handle_failure(self, job: DeliveryJob, error: BaseException) -> None:
        """Schedule a retry or fail the job."""
        message = str(error) or error.__class__.__name__
        if not is_retryable(error):
            await self._fail(job, message, reason="non_retryable")
            return
        if job.retry_count >= job.max_retries:
            await self._fail(job, message, reason="retries_exhausted")
            return

        retry_count = job.retry_count + 1
        delay = self._retry.get_delay(retry_count)
        await self._jobs.update_job(
            job.id,
            status=JobStatus.PENDING,
            retry_count=retry_count,
            last_error=message,
            scheduled_for=_utcnow() + timedelta(seconds=delay),
        )
        log.info(
            "job_retry_scheduled",
            job_id=job.id,
            retry_count=retry_count,
            max_retries=job.max_retries,
            delay_seconds=round(delay, 3),
            error=message,
        )
        self._schedule_wakeup(job.id, delay)

    async def _fail(self, job: DeliveryJob, message: str, reason: str) -> None:
        now = _utcnow()
        await self._jobs.update_job(
            job.id,
            status=JobStatus.FAILED,
            last_error=message,
            completed_at=now,
        )
        await self._content.update_item(
            job.content_item_id, status=ContentStatus.FAILED, error=message
        )
        async with self._stats_lock:
            destination = await self._destinations.get_destination(job.destination_id)
            if destination is not None:
                stats = destination.stats
                stats.failed_count += 1
                stats.last_error = message
                await self._destinations.update_destination(destination.id, stats=stats)
        log.warning(
            "job_failed",
            job_id=job.id,
            reason=reason,
            retry_count=job.retry_count,
            error=message,
        )
        name = (destination.name or destination.id) if destination else job.destination_id
        self._notify(
            NotificationKind.FAILURE,
            "Publish failed",
            f"Could not publish to {name}: {message}",
            job_id=job.id,
            content_item_id=job.content_item_id,
            destination_id=job.destination_id,
            error=message,
        )

    async def _reset_failed(self, job: DeliveryJob) -> bool:
        """Move a failed job back to pending.

        Returns:
            ``False`` if its pair already has an active job or the job is
            no longer failed.
        """
        active = await self._jobs.find_active(job.content_item_id, job.destination_id)
        if active is not None:
            log.info("retry_skipped_active_pair", job_id=job.id, active_job_id=active.id)
            return False
        reset = await self._jobs.transition(
            job.id,
            JobStatus.FAILED,
            status=JobStatus.PENDING,
            retry_count=0,
            last_error=None,
            scheduled_for=None,
            started_at=None,
            completed_at=None,
        )
        if not reset:
            return False
        await self._content.update_item(
            job.content_item_id, status=ContentStatus.PENDING, error=None
        )
        return True

    async def _require_job(self, job_id: str) -> DeliveryJob:
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    # ------------------------------------------------------------------
    # Retry timers
    # ------------------------------------------------------------------

    async def _restore_retry_timers(self) -> None:
        """Re-arm timers for pending jobs scheduled in the future."""
        now = _utcnow()
        for job in await self._jobs.query_by_status(JobStatus.PENDING):
            if job.scheduled_for is not None and job.scheduled_for > now:
                self._schedule_wakeup(job.id, (job.scheduled_for - now).total_seconds())

    def _schedule_wakeup(self, job_id: str, delay: float) -> None:
        if not self._running:
            return
        self._cancel_timer(job_id)
        task = asyncio.create_task(self._wake_after(job_id, delay))
        self._retry_timers[job_id] = task
        task.add_done_callback(functools.partial(self._on_timer_done, job_id))

    async def _wake_after(self, job_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retry_timers.pop(job_id, None)
        self._trigger()

    def _on_timer_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        if self._retry_timers.get(job_id) is task:
            del self._retry_timers[job_id]

    def _cancel_timer(self, job_id: str) -> None:
        timer = self._retry_timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()

    def _notify(self, kind: NotificationKind, title: str, message: str, **metadata: object) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(kind, title, message, **metadata)
        except Exception:
            log.exception("notification_failed", kind=kind.value)
