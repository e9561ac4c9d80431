"""In-memory job queue between JobService (producer) and JobExecutor (consumer).

Hey future me - this is deliberately NOT persistent. The job ROWS are in the
database; the queue only carries JobMessage wake-up calls. After a restart,
pending rows from before are not re-queued (no persistence of the in-memory
queue is a conscious non-feature).

It's an explicit object passed to whoever needs it - no module-level queue, so
tests get a fresh one each time and two apps in one process don't share state.
"""

import asyncio
import logging
from typing import cast

from beatcollector.domain.entities import JobMessage
from beatcollector.domain.exceptions import QueueClosedError

logger = logging.getLogger(__name__)


class JobQueue:
    """Unbounded FIFO of JobMessages with an explicit close."""

    # Sentinel put on close() so a receive() blocked on an empty queue wakes up
    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        """Messages waiting (excluding the close sentinel)."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size > 0 else size

    def submit(self, message: JobMessage) -> None:
        """Enqueue a message without waiting.

        Raises:
            QueueClosedError: close() was already called
        """
        if self._closed:
            raise QueueClosedError(
                f"Job queue is closed, cannot submit {message.job_type.value} job {message.job_id}"
            )
        self._queue.put_nowait(message)

    async def receive(self) -> JobMessage | None:
        """Wait for the next message.

        Messages submitted before close() are still delivered; None means the
        queue is closed AND drained.
        """
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is self._CLOSED:
            # keep the sentinel around for any other waiting consumer
            self._queue.put_nowait(self._CLOSED)
            return None
        return cast(JobMessage, item)

    def close(self) -> None:
        """Stop accepting submissions and wake the consumer. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)
        logger.debug("Job queue closed")
