"""Filesystem watcher - submits a filesystem_scan job when the music folder changes.

Hey future me - watchdog calls our handler from ITS OWN THREAD. Nothing in
there may touch asyncio objects directly; the only thing the handler does is
loop.call_soon_threadsafe(...) to hop onto the event loop.

Debounce: copying an album fires dozens of created/modified events. Each event
(re)arms a timer; only when the folder has been quiet for debounce_seconds does
ONE filesystem_scan job get submitted.
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from beatcollector.domain.entities import JobType

if TYPE_CHECKING:
    from beatcollector.application.services.job_service import JobService

logger = logging.getLogger(__name__)


class MusicFolderEventHandler(FileSystemEventHandler):
    """Forwards created/modified events to the worker on the event loop."""

    def __init__(self, worker: "FilesystemWatcherWorker", loop: asyncio.AbstractEventLoop) -> None:
        self._worker = worker
        self._loop = loop

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        # directory mtime changes are noise, the file events cover them
        if event.is_directory:
            return
        self._forward(event)

    def _forward(self, event: FileSystemEvent) -> None:
        logger.debug(f"Filesystem event {event.event_type}: {event.src_path}")
        self._loop.call_soon_threadsafe(self._worker.notify_change)


class FilesystemWatcherWorker:
    """Watches the music folder and triggers debounced scans."""

    def __init__(
        self,
        job_service: "JobService",
        music_path: Path | str,
        debounce_seconds: float = 5.0,
    ) -> None:
        """Initialize watcher.

        Args:
            job_service: Used to submit filesystem_scan jobs
            music_path: Root folder to watch (recursively)
            debounce_seconds: Quiet period before a scan is submitted
        """
        self._job_service = job_service
        self.music_path = Path(music_path)
        self.debounce_seconds = debounce_seconds
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._submit_tasks: set[asyncio.Task[None]] = set()
        self._scans_submitted = 0

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    async def start(self) -> bool:
        """Start watching.

        Returns:
            False if the music path does not exist, True once the observer runs
        """
        if self._observer is not None:
            logger.warning("Filesystem watcher already running")
            return True
        if not self.music_path.is_dir():
            logger.warning(f"Music folder doesn't exist, not watching: {self.music_path}")
            return False

        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(
            MusicFolderEventHandler(self, self._loop), str(self.music_path), recursive=True
        )
        observer.start()
        self._observer = observer
        logger.info(f"Filesystem watcher started: {self.music_path}")
        return True

    async def stop(self) -> None:
        """Stop the observer and drop any pending debounce timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            # join() blocks, keep it off the loop
            await asyncio.to_thread(observer.join)
        if self._submit_tasks:
            await asyncio.gather(*self._submit_tasks, return_exceptions=True)
        logger.info("Filesystem watcher stopped")

    def notify_change(self) -> None:
        """(Re)arm the debounce timer. Must run on the event loop thread."""
        if self._loop is None:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._loop.call_later(self.debounce_seconds, self._on_quiet)

    def _on_quiet(self) -> None:
        self._timer = None
        task = asyncio.create_task(self._submit_scan())
        self._submit_tasks.add(task)
        task.add_done_callback(self._submit_tasks.discard)

    async def _submit_scan(self) -> None:
        try:
            job_id = await self._job_service.create_job(JobType.FILESYSTEM_SCAN)
        except Exception as e:
            logger.error(f"Could not submit filesystem scan after folder change: {e}")
            return
        self._scans_submitted += 1
        logger.info(f"Music folder changed, submitted filesystem scan job {job_id}")
