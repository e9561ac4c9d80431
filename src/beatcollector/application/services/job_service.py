"""Job submission and lookup."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.workers.job_queue import JobQueue
from beatcollector.domain.entities import JobMessage, JobType
from beatcollector.domain.exceptions import EntityNotFoundException
from beatcollector.infrastructure.persistence.models import JobModel
from beatcollector.infrastructure.persistence.repositories import JobRepository

logger = logging.getLogger(__name__)


class JobService:
    """Creates job rows and hands them to the executor's queue.

    Hey future me - the row is COMMITTED before the message is queued. The executor
    reads the row in its own session, so queuing first could race it into
    "job not found". If the queue is already closed the row simply stays pending
    and QueueClosedError propagates to whoever triggered the job.
    """

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], queue: JobQueue
    ) -> None:
        self._session_factory = session_factory
        self._queue = queue

    async def create_job(self, job_type: JobType, entity_id: str | None = None) -> str:
        """Persist a pending job and submit it.

        Returns:
            The new job id

        Raises:
            QueueClosedError: The executor is shut down (row stays pending)
        """
        async with self._session_factory() as session:
            job = await JobRepository(session).add(job_type, entity_id)
            job_id = job.id
            await session.commit()

        self._queue.submit(JobMessage(job_id=job_id, job_type=job_type, entity_id=entity_id))
        logger.info(f"Queued {job_type.value} job {job_id}")
        return job_id

    async def get_job(self, job_id: str) -> JobModel:
        """Get a job row.

        Raises:
            EntityNotFoundException: No such job
        """
        async with self._session_factory() as session:
            job = await JobRepository(session).get_by_id(job_id)
        if job is None:
            raise EntityNotFoundException("Job", job_id)
        return job

    async def list_recent_jobs(self, limit: int = 50) -> list[JobModel]:
        """Newest jobs first."""
        async with self._session_factory() as session:
            return await JobRepository(session).list_recent(limit)
