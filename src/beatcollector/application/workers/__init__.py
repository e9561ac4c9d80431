"""Worker system - job queue, executor and background triggers."""

from beatcollector.application.workers.filesystem_watcher_worker import (
    FilesystemWatcherWorker,
)
from beatcollector.application.workers.job_executor import JobContext, JobExecutor
from beatcollector.application.workers.job_queue import JobQueue
from beatcollector.application.workers.sync_scheduler_worker import (
    SyncSchedulerWorker,
)

__all__ = [
    "FilesystemWatcherWorker",
    "JobContext",
    "JobExecutor",
    "JobQueue",
    "SyncSchedulerWorker",
]
