"""Application lifecycle: wiring, startup and shutdown.

Hey future me - this is the ONLY place where concrete classes get glued together.
Services only see ports and session factories; everything is built here once
and passed down. No module-level singletons anywhere else.

Startup order:
    logging -> Database (+ tables) -> JobExecutor -> scheduler -> watcher

Shutdown is the reverse, and the executor gets shutdown_timeout_seconds to let
in-flight jobs finish before they are cancelled:
    watcher -> scheduler -> executor (drain + await jobs) -> HTTP clients -> DB
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from beatcollector.application.services.cover_art_service import CoverArtService
from beatcollector.application.services.filesystem_scan_service import (
    FilesystemScanService,
)
from beatcollector.application.services.job_service import JobService
from beatcollector.application.services.library_sync_service import LibrarySyncService
from beatcollector.application.services.lidarr_search_service import (
    LidarrSearchService,
)
from beatcollector.application.services.lidarr_webhook_service import (
    LidarrWebhookService,
    WebhookResult,
    parse_webhook_payload,
)
from beatcollector.application.services.metadata_match_service import (
    MetadataMatchService,
)
from beatcollector.application.services.spotify_token_service import (
    SpotifyTokenService,
)
from beatcollector.application.workers.filesystem_watcher_worker import (
    FilesystemWatcherWorker,
)
from beatcollector.application.workers.job_executor import JobContext, JobExecutor
from beatcollector.application.workers.job_queue import JobQueue
from beatcollector.application.workers.sync_scheduler_worker import (
    SyncSchedulerWorker,
)
from beatcollector.config import Settings, get_settings
from beatcollector.domain.entities import JobType
from beatcollector.domain.exceptions import ConfigurationError, ValidationException
from beatcollector.infrastructure.integrations import (
    CoverArtArchiveClient,
    MusicBrainzClient,
    SpotifyClient,
)
from beatcollector.infrastructure.observability import configure_logging
from beatcollector.infrastructure.persistence import Database
from beatcollector.infrastructure.persistence.repositories import UserSettingsRepository
from beatcollector.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class BeatCollectorApp:
    """Holds every long-lived component of a running instance."""

    def __init__(
        self,
        settings: Settings,
        db: Database,
        spotify_client: SpotifyClient,
        musicbrainz_client: MusicBrainzClient,
        cover_client: CoverArtArchiveClient,
    ) -> None:
        self.settings = settings
        self.db = db
        self.spotify_client = spotify_client
        self.musicbrainz_client = musicbrainz_client
        self.cover_client = cover_client

        session_factory = db.get_session_factory()
        self.session_factory = session_factory

        self.token_service = SpotifyTokenService(session_factory, spotify_client)
        self.library_sync_service = LibrarySyncService(
            session_factory, spotify_client, self.token_service
        )
        self.cover_art_service = CoverArtService(
            cover_client, settings.storage.covers_dir, session_factory
        )
        self.metadata_match_service = MetadataMatchService(
            session_factory, musicbrainz_client, self.cover_art_service
        )
        self.lidarr_search_service = LidarrSearchService(session_factory, settings.lidarr)
        self.webhook_service = LidarrWebhookService(session_factory)
        self.filesystem_scan_service = FilesystemScanService(session_factory)

        self.job_queue = JobQueue()
        self.executor = JobExecutor(self.job_queue, session_factory)
        self.job_service = JobService(session_factory, self.job_queue)
        self._register_handlers()

        self.scheduler: SyncSchedulerWorker | None = None
        self.watcher: FilesystemWatcherWorker | None = None
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BeatCollectorApp":
        """Build an app (not started) from settings."""
        settings = settings or get_settings()
        spotify_limiter = RateLimiter.for_spotify(settings.spotify.requests_per_second)
        musicbrainz_limiter = RateLimiter.for_musicbrainz(
            settings.musicbrainz.requests_per_second
        )
        musicbrainz_client = MusicBrainzClient(settings.musicbrainz, musicbrainz_limiter)
        return cls(
            settings=settings,
            db=Database(settings.database),
            spotify_client=SpotifyClient(settings.spotify, spotify_limiter),
            musicbrainz_client=musicbrainz_client,
            # Cover Art Archive wants the same identifying User-Agent as MusicBrainz
            cover_client=CoverArtArchiveClient(musicbrainz_client.user_agent),
        )

    # =========================================================================
    # JOB HANDLERS
    # =========================================================================

    def _register_handlers(self) -> None:
        self.executor.register_handler(JobType.SPOTIFY_SYNC, self._run_spotify_sync)
        self.executor.register_handler(JobType.MUSICBRAINZ_MATCH, self._run_musicbrainz_match)
        self.executor.register_handler(JobType.LIDARR_SEARCH, self._run_lidarr_search)
        self.executor.register_handler(JobType.COVER_ART_FETCH, self._run_cover_art_fetch)
        self.executor.register_handler(JobType.FILESYSTEM_SCAN, self._run_filesystem_scan)

    async def _run_spotify_sync(self, ctx: JobContext) -> dict[str, Any]:
        result = await self.library_sync_service.sync_library(ctx.report_progress)
        return result.to_dict()

    async def _run_musicbrainz_match(self, ctx: JobContext) -> dict[str, Any]:
        result = await self.metadata_match_service.match_pending_albums(ctx.report_progress)
        return result.to_dict()

    async def _run_lidarr_search(self, ctx: JobContext) -> dict[str, Any]:
        if not ctx.entity_id:
            raise ValidationException("lidarr_search job needs an album id")
        result = await self.lidarr_search_service.search_album(ctx.entity_id)
        return result.to_dict()

    async def _run_cover_art_fetch(self, ctx: JobContext) -> dict[str, Any]:
        result = await self.cover_art_service.fetch_missing_covers(
            album_id=ctx.entity_id, progress=ctx.report_progress
        )
        return result.to_dict()

    async def _run_filesystem_scan(self, ctx: JobContext) -> dict[str, Any]:
        music_path = await self.resolve_music_path()
        if music_path is None:
            raise ConfigurationError("Music folder path not configured")
        result = await self.filesystem_scan_service.scan(music_path, ctx.report_progress)
        return result.to_dict()

    async def resolve_music_path(self) -> Path | None:
        """user_settings.music_folder_path first, then MUSIC_FOLDER."""
        async with self.session_factory() as session:
            user_settings = await UserSettingsRepository(session).get()
        if user_settings is not None and user_settings.music_folder_path:
            return Path(user_settings.music_folder_path)
        return self.settings.storage.music_folder

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    async def handle_lidarr_webhook(self, payload: dict[str, Any]) -> WebhookResult:
        """Validate a raw Lidarr webhook body and apply it.

        Raises:
            ValidationException: Unknown eventType or malformed body
        """
        event = parse_webhook_payload(payload)
        return await self.webhook_service.handle_event(event)

    # =========================================================================
    # START / STOP
    # =========================================================================

    async def start(self, create_tables: bool = True) -> None:
        """Bring up the database, executor and background triggers."""
        if self._started:
            logger.warning("BeatCollector already started")
            return

        if create_tables:
            await self.db.create_tables()
        logger.info(f"Database initialized: {self.settings.database.url}")

        await self.executor.start()

        sync_settings = self.settings.sync
        if sync_settings.scheduler_enabled:
            self.scheduler = SyncSchedulerWorker(
                self.job_service,
                self.session_factory,
                check_interval_seconds=sync_settings.check_interval_seconds,
            )
            await self.scheduler.start()

        if sync_settings.watch_filesystem:
            music_path = await self.resolve_music_path()
            if music_path is None:
                logger.warning("Filesystem watching enabled but no music folder configured")
            else:
                watcher = FilesystemWatcherWorker(
                    self.job_service,
                    music_path,
                    debounce_seconds=sync_settings.watcher_debounce_seconds,
                )
                if await watcher.start():
                    self.watcher = watcher

        self._started = True
        logger.info("BeatCollector started")

    async def stop(self, timeout: float | None = None) -> None:
        """Stop triggers, drain the executor, then release clients and the DB.

        Each step is attempted even if an earlier one fails.
        """
        timeout = self.settings.sync.shutdown_timeout_seconds if timeout is None else timeout
        logger.info("Shutting down BeatCollector")

        if self.watcher is not None:
            try:
                await self.watcher.stop()
            except Exception as e:
                logger.exception(f"Error stopping filesystem watcher: {e}")
            self.watcher = None

        if self.scheduler is not None:
            try:
                await self.scheduler.stop()
            except Exception as e:
                logger.exception(f"Error stopping sync scheduler: {e}")
            self.scheduler = None

        try:
            await self.executor.stop(timeout=timeout)
        except Exception as e:
            logger.exception(f"Error stopping job executor: {e}")

        for client in (self.spotify_client, self.musicbrainz_client, self.cover_client):
            try:
                await client.close()
            except Exception as e:
                logger.exception(f"Error closing {type(client).__name__}: {e}")

        try:
            await self.db.close()
            logger.info("Database connection closed")
        except Exception as e:
            logger.exception(f"Error closing database: {e}")

        self._started = False

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the running components."""
        return {
            "started": self._started,
            "executor": self.executor.get_status(),
            "scheduler": self.scheduler.get_status() if self.scheduler else None,
            "watcher": self.watcher.is_running if self.watcher else False,
        }


# Hey future me - everything before `yield` is STARTUP, everything after is
# SHUTDOWN. The finally makes sure a crash inside the block still drains jobs
# and closes the DB.
@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncGenerator[BeatCollectorApp, None]:
    """Run a BeatCollectorApp for the duration of the block."""
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.observability.level,
        json_format=settings.observability.json_format,
        app_name=settings.app_name,
    )
    logger.info(f"Starting application: {settings.app_name}")

    app = BeatCollectorApp.from_settings(settings)
    try:
        await app.start()
        yield app
    except Exception as e:
        logger.exception(f"Error during application run: {e}")
        raise
    finally:
        await app.stop()
