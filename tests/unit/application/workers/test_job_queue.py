"""Tests for the in-memory job queue."""

import asyncio

import pytest

from beatcollector.application.workers.job_queue import JobQueue
from beatcollector.domain.entities import JobMessage, JobType
from beatcollector.domain.exceptions import ConfigurationError, QueueClosedError


def _message(job_id: str, job_type: JobType = JobType.SPOTIFY_SYNC) -> JobMessage:
    return JobMessage(job_id=job_id, job_type=job_type)


class TestJobQueue:
    async def test_fifo_order(self) -> None:
        queue = JobQueue()
        queue.submit(_message("a"))
        queue.submit(_message("b"))

        assert queue.qsize() == 2
        assert (await queue.receive()).job_id == "a"  # type: ignore[union-attr]
        assert (await queue.receive()).job_id == "b"  # type: ignore[union-attr]

    async def test_receive_hands_back_submitted_message(self) -> None:
        queue = JobQueue()
        message = JobMessage(job_id="j1", job_type=JobType.COVER_ART_FETCH, entity_id="album-1")
        queue.submit(message)

        received = await queue.receive()

        assert received is message
        assert received.entity_id == "album-1"

    async def test_submit_after_close_raises(self) -> None:
        queue = JobQueue()
        queue.close()

        with pytest.raises(QueueClosedError):
            queue.submit(_message("late"))

    def test_queue_closed_is_configuration_error(self) -> None:
        assert issubclass(QueueClosedError, ConfigurationError)

    async def test_close_drains_pending_messages_first(self) -> None:
        queue = JobQueue()
        queue.submit(_message("a"))
        queue.close()

        assert queue.is_closed
        assert queue.qsize() == 1
        assert (await queue.receive()).job_id == "a"  # type: ignore[union-attr]
        assert await queue.receive() is None
        # stays closed for every later receive
        assert await queue.receive() is None

    async def test_close_wakes_blocked_receiver(self) -> None:
        queue = JobQueue()
        receiver = asyncio.create_task(queue.receive())
        await asyncio.sleep(0)

        queue.close()

        assert await asyncio.wait_for(receiver, timeout=1.0) is None

    async def test_close_is_idempotent(self) -> None:
        queue = JobQueue()
        queue.close()
        queue.close()
        assert queue.qsize() == 0
