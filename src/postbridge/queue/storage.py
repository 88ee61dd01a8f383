"""PostgreSQL-backed storage for delivery jobs.

Provides atomic enqueue (coalescing duplicates of an active pair), claim
with ``FOR UPDATE SKIP LOCKED``, partial updates, status counts and
housekeeping purges. Shares the process-wide ``asyncpg.Pool`` with the
content and destination stores.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-not-found,import-untyped]

from postbridge.logging import get_logger
from postbridge.queue.models import DeliveryJob, JobStatus
from postbridge.stores import build_set_clause, decode_jsonb

log = get_logger("postbridge.queue.storage")

JOBS_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS delivery_jobs (
    id                  TEXT         PRIMARY KEY,
    content_item_id     TEXT         NOT NULL,
    destination_id      TEXT         NOT NULL,
    status              TEXT         NOT NULL DEFAULT 'pending',
    priority            INT          NOT NULL DEFAULT 1,
    retry_count         INT          NOT NULL DEFAULT 0,
    max_retries         INT          NOT NULL DEFAULT 3,
    last_error          TEXT,
    created_at          TIMESTAMPTZ  NOT NULL DEFAULT now(),
    scheduled_for       TIMESTAMPTZ,
    started_at          TIMESTAMPTZ,
    completed_at        TIMESTAMPTZ,
    metadata            JSONB        NOT NULL DEFAULT '{}'::jsonb
);

CREATE INDEX IF NOT EXISTS idx_delivery_jobs_dispatch
    ON delivery_jobs (status, priority DESC, created_at ASC);
CREATE UNIQUE INDEX IF NOT EXISTS idx_delivery_jobs_active_pair
    ON delivery_jobs (content_item_id, destination_id)
    WHERE status IN ('pending', 'processing');
"""

_UPDATABLE_COLUMNS = (
    "status",
    "priority",
    "retry_count",
    "max_retries",
    "last_error",
    "scheduled_for",
    "started_at",
    "completed_at",
    "metadata",
)


def _row_to_job(row: asyncpg.Record) -> DeliveryJob:
    """Convert an ``asyncpg.Record`` to a :class:`DeliveryJob`."""
    return DeliveryJob(
        id=row["id"],
        content_item_id=row["content_item_id"],
        destination_id=row["destination_id"],
        status=row["status"],
        priority=row["priority"],
        retry_count=row["retry_count"],
        max_retries=row["max_retries"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        scheduled_for=row["scheduled_for"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        metadata=decode_jsonb(row["metadata"], {}),
    )


def _affected(result: str) -> int:
    # asyncpg returns e.g. "UPDATE 3"
    return int(result.split()[-1])


class JobStorage:
    """PostgreSQL storage backend for the delivery queue.

    All public methods acquire connections from the pool and release them
    automatically. Each mutation is a single statement, so updates to one
    job are atomic.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        """Initialise with an existing asyncpg connection pool.

        Args:
            pool: An ``asyncpg.Pool`` instance (shared with the rest of the
                application).
        """
        self._pool = pool

    async def ensure_schema(self) -> None:
        """Create the jobs table and indexes if they don't exist."""
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(JOBS_SCHEMA_SQL)
            log.info("jobs_schema_ensured")
        except asyncpg.PostgresError as exc:
            log.error("jobs_schema_creation_failed", error=str(exc))
            raise

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue_job(self, job: DeliveryJob) -> str:
        """Insert a job, or return the id of the active job for the same pair.

        The partial unique index on active pairs makes the check-and-insert
        atomic across processes.

        Args:
            job: The job to insert.

        Returns:
            The id of the inserted job, or of the existing active job.
        """
        async with self._pool.acquire() as conn, conn.transaction():
            row = await conn.fetchrow(
                """
                INSERT INTO delivery_jobs
                    (id, content_item_id, destination_id, status, priority,
                     retry_count, max_retries, last_error, created_at,
                     scheduled_for, started_at, completed_at, metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb)
                ON CONFLICT (content_item_id, destination_id)
                    WHERE status IN ('pending', 'processing')
                    DO NOTHING
                RETURNING id
                """,
                job.id,
                job.content_item_id,
                job.destination_id,
                job.to_dict()["status"],
                int(job.priority),
                job.retry_count,
                job.max_retries,
                job.last_error,
                job.created_at,
                job.scheduled_for,
                job.started_at,
                job.completed_at,
                json.dumps(job.metadata),
            )
            if row is None:
                existing_id: str = await conn.fetchval(
                    """
                    SELECT id FROM delivery_jobs
                    WHERE content_item_id = $1
                      AND destination_id = $2
                      AND status IN ('pending', 'processing')
                    """,
                    job.content_item_id,
                    job.destination_id,
                )
                log.debug("job_enqueue_coalesced", job_id=existing_id)
                return existing_id
        log.debug(
            "job_enqueued",
            job_id=job.id,
            priority=int(job.priority),
            destination_id=job.destination_id,
        )
        return job.id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        """Fetch a job, or ``None`` if not found."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM delivery_jobs WHERE id = $1", job_id)
        if row is None:
            return None
        return _row_to_job(row)

    async def query_by_status(
        self,
        status: str,
        *,
        ready_only: bool = False,
        limit: int | None = None,
    ) -> list[DeliveryJob]:
        """List jobs in *status*, highest priority first then oldest first.

        Args:
            status: Status to filter on.
            ready_only: Exclude jobs whose ``scheduled_for`` is in the future.
            limit: Maximum number of rows.
        """
        query = "SELECT * FROM delivery_jobs WHERE status = $1"
        if ready_only:
            query += " AND (scheduled_for IS NULL OR scheduled_for <= now())"
        query += " ORDER BY priority DESC, created_at ASC"
        args: list[Any] = [JobStatus(status).value]
        if limit is not None:
            query += " LIMIT $2"
            args.append(limit)
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_row_to_job(row) for row in rows]

    async def find_active(
        self, content_item_id: str, destination_id: str
    ) -> DeliveryJob | None:
        """Return the pending or processing job for the pair, if any."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM delivery_jobs
                WHERE content_item_id = $1
                  AND destination_id = $2
                  AND status IN ('pending', 'processing')
                ORDER BY created_at ASC
                LIMIT 1
                """,
                content_item_id,
                destination_id,
            )
        if row is None:
            return None
        return _row_to_job(row)

    async def get_status_counts(self) -> dict[str, int]:
        """Return a mapping of ``{status: count}`` for all jobs."""
        async with self._pool.acquire() as conn:
            rows: list[asyncpg.Record] = await conn.fetch(
                "SELECT status, count(*)::int AS cnt FROM delivery_jobs GROUP BY status"
            )
        return {row["status"]: row["cnt"] for row in rows}

    async def get_last_completed_at(self) -> datetime | None:
        """Completion time of the most recently completed job."""
        async with self._pool.acquire() as conn:
            value: datetime | None = await conn.fetchval(
                "SELECT max(completed_at) FROM delivery_jobs WHERE status = 'completed'"
            )
        return value

    # ------------------------------------------------------------------
    # Claim / update
    # ------------------------------------------------------------------

    async def claim_next(self, exclude: Iterable[str] = ()) -> DeliveryJob | None:
        """Atomically claim the highest-priority ready job.

        The claimed job moves to ``processing`` with ``started_at`` set.

        Args:
            exclude: Job ids that must not be claimed (already in flight).

        Returns:
            The claimed job, or ``None`` when nothing is ready.
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE delivery_jobs
                SET status     = 'processing',
                    started_at = now()
                WHERE id = (
                    SELECT id FROM delivery_jobs
                    WHERE status = 'pending'
                      AND (scheduled_for IS NULL OR scheduled_for <= now())
                      AND NOT (id = ANY($1::text[]))
                    ORDER BY priority DESC, created_at ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
                """,
                list(exclude),
            )
        if row is None:
            return None
        job = _row_to_job(row)
        log.debug("job_claimed", job_id=job.id, priority=job.priority)
        return job

    async def update_job(self, job_id: str, **fields: Any) -> bool:
        """Partially update a job.

        Returns:
            ``True`` if a row was updated.
        """
        if not fields:
            return False
        clause, args = build_set_clause(fields, _UPDATABLE_COLUMNS, jsonb=("metadata",))
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                f"UPDATE delivery_jobs SET {clause} WHERE id = $1",
                job_id,
                *args,
            )
        return _affected(result) == 1

    async def transition(self, job_id: str, from_status: str, **fields: Any) -> bool:
        """Update a job only while it is still in *from_status*.

        Returns:
            ``False`` if the job is gone, has already moved on, or the
            change would give its pair a second active job.
        """
        clause, args = build_set_clause(fields, _UPDATABLE_COLUMNS, jsonb=("metadata",))
        status = JobStatus(from_status).value
        sql = f"UPDATE delivery_jobs SET {clause} WHERE id = $1 AND status = ${len(args) + 2}"
        try:
            async with self._pool.acquire() as conn:
                result: str = await conn.execute(
                    sql,
                    job_id,
                    *args,
                    status,
                )
        except asyncpg.UniqueViolationError:
            log.warning("job_transition_conflict", job_id=job_id, from_status=status)
            return False
        return _affected(result) == 1

    async def delete_job(self, job_id: str) -> bool:
        """Delete a job unless it is processing.

        Returns:
            ``True`` if a row was deleted.
        """
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                "DELETE FROM delivery_jobs WHERE id = $1 AND status <> 'processing'",
                job_id,
            )
        deleted = _affected(result) == 1
        if deleted:
            log.debug("job_deleted", job_id=job_id)
        return deleted

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def purge_finished(self, older_than: datetime) -> int:
        """Delete completed and cancelled jobs finished before *older_than*.

        Returns:
            Number of rows deleted.
        """
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                """
                DELETE FROM delivery_jobs
                WHERE status IN ('completed', 'cancelled')
                  AND completed_at < $1
                """,
                older_than,
            )
        count = _affected(result)
        if count > 0:
            log.info("jobs_purged", count=count, older_than=older_than.isoformat())
        return count
