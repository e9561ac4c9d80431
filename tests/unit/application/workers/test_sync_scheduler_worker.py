"""Tests for SyncSchedulerWorker due-check logic."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.workers.sync_scheduler_worker import SyncSchedulerWorker
from beatcollector.domain.entities import JobStatus, JobType
from beatcollector.infrastructure.persistence.repositories import (
    JobRepository,
    UserSettingsRepository,
)


async def configure(
    session_factory: async_sessionmaker[AsyncSession],
    enabled: bool | None,
    interval_hours: int | None = None,
) -> None:
    async with session_factory() as session:
        settings = await UserSettingsRepository(session).get_or_create()
        settings.auto_sync_enabled = enabled
        settings.sync_interval_hours = interval_hours
        await session.commit()


async def add_sync_job(
    session_factory: async_sessionmaker[AsyncSession], status: JobStatus | None = None
) -> str:
    async with session_factory() as session:
        repo = JobRepository(session)
        job = await repo.add(JobType.SPOTIFY_SYNC)
        if status is not None:
            await repo.update_status(job.id, status)
        await session.commit()
        return job.id


@pytest.fixture
def job_service() -> AsyncMock:
    service = AsyncMock()
    service.create_job.return_value = "job-new"
    return service


@pytest.fixture
def scheduler(
    job_service: AsyncMock, session_factory: async_sessionmaker[AsyncSession]
) -> SyncSchedulerWorker:
    return SyncSchedulerWorker(job_service, session_factory, check_interval_seconds=1)


class TestIsSyncDue:
    async def test_no_settings_row(self, scheduler: SyncSchedulerWorker) -> None:
        assert await scheduler.is_sync_due() is False

    async def test_auto_sync_disabled(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await configure(session_factory, enabled=False)
        assert await scheduler.is_sync_due() is False

    async def test_first_sync_is_due(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await configure(session_factory, enabled=True)
        assert await scheduler.is_sync_due() is True

    async def test_recent_job_not_due(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await configure(session_factory, enabled=True, interval_hours=6)
        await add_sync_job(session_factory, JobStatus.COMPLETED)

        assert await scheduler.is_sync_due() is False
        later = datetime.now(UTC) + timedelta(hours=6, minutes=1)
        assert await scheduler.is_sync_due(now=later) is True

    async def test_default_interval_is_a_day(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await configure(session_factory, enabled=True, interval_hours=None)
        await add_sync_job(session_factory)

        now = datetime.now(UTC)
        assert await scheduler.is_sync_due(now=now + timedelta(hours=23)) is False
        assert await scheduler.is_sync_due(now=now + timedelta(hours=25)) is True

    async def test_stale_pending_job_does_not_block(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await configure(session_factory, enabled=True, interval_hours=1)
        await add_sync_job(session_factory)

        later = datetime.now(UTC) + timedelta(hours=2)
        assert await scheduler.is_sync_due(now=later) is True


class TestCheckAndSubmit:
    async def test_submits_when_due(
        self,
        scheduler: SyncSchedulerWorker,
        job_service: AsyncMock,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await configure(session_factory, enabled=True)

        assert await scheduler.check_and_submit() == "job-new"
        job_service.create_job.assert_awaited_once_with(JobType.SPOTIFY_SYNC)
        assert scheduler.get_status()["jobs_submitted"] == 1

    async def test_nothing_when_not_due(
        self, scheduler: SyncSchedulerWorker, job_service: AsyncMock
    ) -> None:
        assert await scheduler.check_and_submit() is None
        job_service.create_job.assert_not_awaited()


class TestLoop:
    async def test_start_stop(
        self,
        scheduler: SyncSchedulerWorker,
        job_service: AsyncMock,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await configure(session_factory, enabled=True)

        await scheduler.start()
        for _ in range(100):
            if job_service.create_job.await_count:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert job_service.create_job.await_count == 1
        assert scheduler.get_status()["running"] is False

    async def test_tick_errors_keep_loop_alive(
        self, scheduler: SyncSchedulerWorker, session_factory: async_sessionmaker[AsyncSession],
        job_service: AsyncMock,
    ) -> None:
        await configure(session_factory, enabled=True)
        job_service.create_job.side_effect = RuntimeError("queue closed")
        scheduler.check_interval_seconds = 0

        await scheduler.start()
        for _ in range(100):
            if job_service.create_job.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert job_service.create_job.await_count >= 2
