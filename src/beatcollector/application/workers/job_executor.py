"""Job executor - the single consumer of the JobQueue.

Hey future me - this is where every background job runs. Lifecycle of one job:

    receive() -> spawn task -> mark RUNNING (best-effort)
                            -> handler(ctx)
                            -> mark COMPLETED  |  mark FAILED(str(exc))

- ONE consumer loop pulls messages; each job gets its own asyncio task, so a
  30-minute MusicBrainz match doesn't block a filesystem scan. Those tasks are
  kept in self._tasks - stop() awaits them (up to a timeout) instead of letting
  them die with the event loop.
- The RUNNING write is best-effort: if the DB hiccups we log and still run the
  job. But if the row is already terminal (InvalidStateException) the job is
  skipped - a finished job never runs again.
- No retries. A failed job stays failed; the next trigger creates a new job.
- Every log line inside a job carries the job id as correlation id.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.workers.job_queue import JobQueue
from beatcollector.domain.entities import JobMessage, JobStatus, JobType
from beatcollector.domain.exceptions import DomainException, InvalidStateException
from beatcollector.infrastructure.observability.logging import set_correlation_id
from beatcollector.infrastructure.persistence.repositories import JobRepository

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """What a handler gets to work with."""

    job_id: str
    job_type: JobType
    entity_id: str | None
    _session_factory: async_sessionmaker[AsyncSession] = field(repr=False)

    async def report_progress(self, processed: int, total: int | None = None) -> None:
        """Persist progress counters. Best-effort: failures are only logged."""
        try:
            async with self._session_factory() as session:
                await JobRepository(session).update_progress(self.job_id, processed, total)
                await session.commit()
        except Exception as e:
            logger.warning(f"Could not store progress for job {self.job_id}: {e}")


JobHandler = Callable[[JobContext], Awaitable[dict[str, Any] | None]]


class JobExecutor:
    """Consumes JobMessages and runs the registered handler for each."""

    def __init__(
        self,
        queue: JobQueue,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Initialize executor.

        Args:
            queue: Queue to consume
            session_factory: Factory for job-row updates
        """
        self._queue = queue
        self._session_factory = session_factory
        self._handlers: dict[JobType, JobHandler] = {}
        self._consumer: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        self._jobs_processed = 0
        self._jobs_failed = 0

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        """Register the coroutine that runs jobs of job_type."""
        self._handlers[job_type] = handler
        logger.debug(f"Registered handler for {job_type.value}")

    async def start(self) -> None:
        """Start the consumer loop. Idempotent."""
        if self._running:
            logger.warning("Job executor already running")
            return
        self._running = True
        self._consumer = asyncio.create_task(self._consume(), name="job-executor")
        logger.info(
            f"Job executor started with handlers: "
            f"{', '.join(sorted(t.value for t in self._handlers))}"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """Close the queue, drain it, and wait for in-flight jobs.

        Jobs still running after timeout are cancelled.
        """
        if not self._running:
            return
        self._queue.close()
        if self._consumer is not None:
            await self._consumer
            self._consumer = None

        if self._tasks:
            logger.info(f"Waiting up to {timeout}s for {len(self._tasks)} running jobs")
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} jobs still running at shutdown")
                await asyncio.gather(*pending, return_exceptions=True)

        self._running = False
        logger.info(
            f"Job executor stopped ({self._jobs_processed} processed, "
            f"{self._jobs_failed} failed)"
        )

    def get_status(self) -> dict[str, Any]:
        """Executor state for status displays."""
        return {
            "running": self._running,
            "in_flight": len(self._tasks),
            "queued": self._queue.qsize(),
            "jobs_processed": self._jobs_processed,
            "jobs_failed": self._jobs_failed,
        }

    async def _consume(self) -> None:
        while True:
            message = await self._queue.receive()
            if message is None:
                break
            task = asyncio.create_task(
                self._run_job(message), name=f"job-{message.job_type.value}-{message.job_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.debug("Job queue drained, consumer loop exiting")

    async def _run_job(self, message: JobMessage) -> None:
        set_correlation_id(message.job_id)

        if not await self._mark_running(message.job_id):
            return

        logger.info(f"Job {message.job_id} ({message.job_type.value}) started")
        handler = self._handlers.get(message.job_type)
        ctx = JobContext(
            job_id=message.job_id,
            job_type=message.job_type,
            entity_id=message.entity_id,
            _session_factory=self._session_factory,
        )

        try:
            if handler is None:
                raise DomainException(
                    f"No handler registered for job type {message.job_type.value}"
                )
            result = await handler(ctx)
        except asyncio.CancelledError:
            # only stop() cancels jobs
            self._jobs_failed += 1
            logger.warning(f"Job {message.job_id} ({message.job_type.value}) cancelled")
            await self._finish(message.job_id, JobStatus.FAILED, "Cancelled during shutdown")
            raise
        except Exception as e:
            self._jobs_failed += 1
            logger.exception(f"Job {message.job_id} ({message.job_type.value}) failed")
            await self._finish(message.job_id, JobStatus.FAILED, str(e))
        else:
            self._jobs_processed += 1
            logger.info(
                f"Job {message.job_id} ({message.job_type.value}) completed"
                + (f": {result}" if result else "")
            )
            await self._finish(message.job_id, JobStatus.COMPLETED)

    async def _mark_running(self, job_id: str) -> bool:
        """Mark the row RUNNING. Returns False when the job must be skipped."""
        try:
            async with self._session_factory() as session:
                await JobRepository(session).update_status(job_id, JobStatus.RUNNING)
                await session.commit()
        except InvalidStateException as e:
            logger.warning(f"Skipping job {job_id}: {e}")
            return False
        except Exception as e:
            # best-effort - the job still runs
            logger.error(f"Could not mark job {job_id} as running: {e}")
        return True

    async def _finish(
        self, job_id: str, status: JobStatus, error_message: str | None = None
    ) -> None:
        try:
            async with self._session_factory() as session:
                await JobRepository(session).update_status(
                    job_id, status, error_message=error_message
                )
                await session.commit()
        except Exception:
            logger.exception(f"Could not store final status {status.value} for job {job_id}")
