# Hey future me - this worker is the "auto sync" switch in user_settings!
#
# It does NOT sync by itself. Every check_interval_seconds it:
# 1. Reads auto_sync_enabled / sync_interval_hours from user_settings (runtime
#    changes apply on the next tick, no restart needed)
# 2. Looks up the newest spotify_sync JOB ROW (not an in-memory timestamp, so
#    a restart doesn't trigger an immediate resync)
# 3. Submits a new spotify_sync job through JobService when the interval has passed
#
# The interval counts from the last job's created_at whatever its status. A row
# left pending by a restart (the queue isn't persistent) must not block syncing
# forever, so the status is only used for the debug log.
# Errors in a tick are logged and the loop keeps going.
"""Background worker that submits periodic Spotify library syncs."""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.domain.entities import JobStatus, JobType
from beatcollector.infrastructure.persistence.models import ensure_utc_aware
from beatcollector.infrastructure.persistence.repositories import (
    JobRepository,
    UserSettingsRepository,
)

if TYPE_CHECKING:
    from beatcollector.application.services.job_service import JobService

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_HOURS = 24


class SyncSchedulerWorker:
    """Submits spotify_sync jobs when auto sync is enabled and due."""

    def __init__(
        self,
        job_service: "JobService",
        session_factory: async_sessionmaker[AsyncSession],
        check_interval_seconds: int = 60,
    ) -> None:
        """Initialize scheduler.

        Args:
            job_service: Used to create and queue sync jobs
            session_factory: Factory for reading settings and job rows
            check_interval_seconds: How often to check whether a sync is due
        """
        self._job_service = job_service
        self._session_factory = session_factory
        self.check_interval_seconds = check_interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._jobs_submitted = 0

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Sync scheduler already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Sync scheduler started (check interval: {self.check_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the scheduler loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Sync scheduler stopped")

    def get_status(self) -> dict[str, object]:
        return {
            "running": self._running,
            "check_interval_seconds": self.check_interval_seconds,
            "jobs_submitted": self._jobs_submitted,
        }

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check_and_submit()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in sync scheduler loop: {e}", exc_info=True)

            await asyncio.sleep(self.check_interval_seconds)

    async def is_sync_due(self, now: datetime | None = None) -> bool:
        """Decide whether a new spotify_sync job should be submitted."""
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            user_settings = await UserSettingsRepository(session).get()
            if user_settings is None or not user_settings.auto_sync_enabled:
                return False
            interval_hours = user_settings.sync_interval_hours or DEFAULT_SYNC_INTERVAL_HOURS

            last_job = await JobRepository(session).get_latest_by_type(JobType.SPOTIFY_SYNC)

        if last_job is None:
            return True
        elapsed = now - ensure_utc_aware(last_job.created_at)
        if elapsed < timedelta(hours=interval_hours):
            logger.debug(
                f"Last Spotify sync job {last_job.id} ({JobStatus.parse(last_job.status).value}) "
                f"is {elapsed} old, next sync after {interval_hours}h"
            )
            return False
        return True

    async def check_and_submit(self, now: datetime | None = None) -> str | None:
        """Submit a sync job if one is due.

        Returns:
            The new job id, or None if nothing was submitted
        """
        if not await self.is_sync_due(now):
            return None
        job_id = await self._job_service.create_job(JobType.SPOTIFY_SYNC)
        self._jobs_submitted += 1
        logger.info(f"Scheduled Spotify sync submitted as job {job_id}")
        return job_id
