"""Tests for FilesystemWatcherWorker debounce behaviour."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from beatcollector.application.workers.filesystem_watcher_worker import (
    FilesystemWatcherWorker,
)
from beatcollector.domain.entities import JobType


async def wait_for_calls(mock: AsyncMock, count: int, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while mock.await_count < count:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"expected {count} calls, got {mock.await_count}")
        await asyncio.sleep(0.02)


@pytest.fixture
def job_service() -> AsyncMock:
    service = AsyncMock()
    service.create_job.return_value = "scan-job"
    return service


class TestFilesystemWatcher:
    async def test_missing_folder_does_not_start(
        self, job_service: AsyncMock, tmp_path: Path
    ) -> None:
        watcher = FilesystemWatcherWorker(job_service, tmp_path / "missing")

        assert await watcher.start() is False
        assert watcher.is_running is False

    async def test_burst_of_changes_submits_one_scan(
        self, job_service: AsyncMock, tmp_path: Path
    ) -> None:
        watcher = FilesystemWatcherWorker(job_service, tmp_path, debounce_seconds=0.1)
        assert await watcher.start() is True
        try:
            for _ in range(5):
                watcher.notify_change()
                await asyncio.sleep(0.02)
            await wait_for_calls(job_service.create_job, 1)
            await asyncio.sleep(0.2)
        finally:
            await watcher.stop()

        job_service.create_job.assert_awaited_once_with(JobType.FILESYSTEM_SCAN)

    async def test_real_file_events_trigger_scan(
        self, job_service: AsyncMock, tmp_path: Path
    ) -> None:
        watcher = FilesystemWatcherWorker(job_service, tmp_path, debounce_seconds=0.2)
        await watcher.start()
        try:
            album = tmp_path / "Artist" / "Album"
            album.mkdir(parents=True)
            for i in range(3):
                (album / f"{i}.flac").write_bytes(b"x")
            await wait_for_calls(job_service.create_job, 1)
        finally:
            await watcher.stop()

        assert watcher.is_running is False

    async def test_stop_cancels_pending_timer(
        self, job_service: AsyncMock, tmp_path: Path
    ) -> None:
        watcher = FilesystemWatcherWorker(job_service, tmp_path, debounce_seconds=0.2)
        await watcher.start()
        watcher.notify_change()
        await watcher.stop()

        await asyncio.sleep(0.3)
        job_service.create_job.assert_not_awaited()

    async def test_submit_failure_is_logged(
        self, job_service: AsyncMock, tmp_path: Path
    ) -> None:
        job_service.create_job.side_effect = RuntimeError("queue closed")
        watcher = FilesystemWatcherWorker(job_service, tmp_path, debounce_seconds=0.05)
        await watcher.start()
        try:
            watcher.notify_change()
            await wait_for_calls(job_service.create_job, 1)
        finally:
            await watcher.stop()
