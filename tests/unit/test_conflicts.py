"""Tests for duplicate-delivery detection and resolution."""

from __future__ import annotations

import pytest

from postbridge.content.models import ContentItem, ContentStatus
from postbridge.memory import MemoryContentStore, MemoryJobStore
from postbridge.queue.conflicts import ConflictResolver, ConflictStrategy
from postbridge.queue.models import DeliveryJob, JobStatus


def _published_item(**overrides) -> ContentItem:
    fields = {
        "id": "item-1",
        "status": ContentStatus.PUBLISHED,
        "destination_id": "dest-1",
        "remote_id": "42",
        "published_url": "https://blog.example.com/?p=42",
    }
    fields.update(overrides)
    return ContentItem(**fields)


async def _setup(item: ContentItem, strategy: ConflictStrategy = ConflictStrategy.SKIP):
    jobs = MemoryJobStore()
    content = MemoryContentStore([item])
    job = DeliveryJob(content_item_id=item.id, destination_id="dest-1")
    await jobs.enqueue_job(job)
    return jobs, ConflictResolver(jobs, content, default_strategy=strategy), job


class TestConflictCheck:
    @pytest.mark.asyncio
    async def test_published_to_same_destination_conflicts(self) -> None:
        _, resolver, job = await _setup(_published_item())
        result = await resolver.check(job)
        assert result.has_conflict
        assert result.existing_remote_id == "42"
        assert result.existing_published_url == "https://blog.example.com/?p=42"

    @pytest.mark.asyncio
    async def test_other_destination_does_not_conflict(self) -> None:
        _, resolver, job = await _setup(_published_item(destination_id="dest-2"))
        assert not (await resolver.check(job)).has_conflict

    @pytest.mark.asyncio
    async def test_missing_remote_id_does_not_conflict(self) -> None:
        _, resolver, job = await _setup(_published_item(remote_id=None))
        assert not (await resolver.check(job)).has_conflict

    @pytest.mark.asyncio
    async def test_unpublished_item_does_not_conflict(self) -> None:
        _, resolver, job = await _setup(_published_item(status=ContentStatus.FAILED))
        assert not (await resolver.check(job)).has_conflict

    @pytest.mark.asyncio
    async def test_missing_item_does_not_conflict(self) -> None:
        resolver = ConflictResolver(MemoryJobStore(), MemoryContentStore())
        job = DeliveryJob(content_item_id="nope", destination_id="dest-1")
        assert not (await resolver.check(job)).has_conflict


class TestConflictResolve:
    @pytest.mark.asyncio
    async def test_skip_completes_job_with_annotation(self) -> None:
        jobs, resolver, job = await _setup(_published_item())
        proceed = await resolver.resolve(job, await resolver.check(job))
        assert proceed is False

        stored = await jobs.get_job(job.id)
        assert stored is not None
        assert stored.status == JobStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.metadata["skipped_reason"] == "duplicate"
        assert stored.metadata["existing_remote_id"] == "42"
        assert stored.metadata["existing_published_url"] == "https://blog.example.com/?p=42"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy", [ConflictStrategy.OVERWRITE, ConflictStrategy.CREATE_NEW])
    async def test_other_strategies_proceed(self, strategy: ConflictStrategy) -> None:
        jobs, resolver, job = await _setup(_published_item(), strategy)
        assert await resolver.resolve(job, await resolver.check(job)) is True
        stored = await jobs.get_job(job.id)
        assert stored is not None
        assert stored.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_no_conflict_proceeds(self) -> None:
        _, resolver, job = await _setup(_published_item(destination_id="dest-2"))
        assert await resolver.resolve(job, await resolver.check(job)) is True

    def test_strategy_accepts_string(self) -> None:
        resolver = ConflictResolver(MemoryJobStore(), MemoryContentStore(), "create-new")
        assert resolver.strategy == ConflictStrategy.CREATE_NEW

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValueError):
            ConflictResolver(MemoryJobStore(), MemoryContentStore(), "merge")


class TestDuplicateEnqueue:
    @pytest.mark.asyncio
    async def test_active_job_is_duplicate(self) -> None:
        _, resolver, job = await _setup(_published_item())
        assert await resolver.is_duplicate_enqueue("item-1", "dest-1")
        found = await resolver.find_active_job("item-1", "dest-1")
        assert found is not None
        assert found.id == job.id

    @pytest.mark.asyncio
    async def test_finished_job_is_not_duplicate(self) -> None:
        jobs, resolver, job = await _setup(_published_item())
        await jobs.update_job(job.id, status=JobStatus.FAILED)
        assert not await resolver.is_duplicate_enqueue("item-1", "dest-1")
