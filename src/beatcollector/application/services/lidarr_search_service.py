"""Ask Lidarr to acquire an album (JobType.LIDARR_SEARCH).

Hey future me - Lidarr identifies albums by MusicBrainz release group, so an
album must have been MATCHED (or at least MANUAL_REVIEW) before it can be
searched. Flow:

    lookup_album(mbid)
        -> None                 => EntityNotFoundException (Lidarr/MB don't know it)
        -> result without "id"  => add_album(monitored + searchForNewAlbum)
        -> result with "id"     => search_album(id)  (AlbumSearch command)

Afterwards a LidarrDownload row (searching) is created and the album goes to
DOWNLOADING. Lidarr's webhooks take it from there (see LidarrWebhookService).

Lidarr URL/API key come from user_settings first, then the LIDARR_* env
settings. A fresh client is built per search because the user can change the
connection at runtime.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.config.settings import LidarrSettings
from beatcollector.domain.entities import DownloadStatus, OwnershipStatus
from beatcollector.domain.exceptions import (
    ConfigurationError,
    DomainException,
    EntityNotFoundException,
)
from beatcollector.domain.ports import ILidarrClient
from beatcollector.infrastructure.integrations.lidarr_client import LidarrClient
from beatcollector.infrastructure.persistence.repositories import (
    AlbumRepository,
    LidarrDownloadRepository,
    UserSettingsRepository,
)

logger = logging.getLogger(__name__)

LidarrClientFactory = Callable[[str, str, float], ILidarrClient]


@dataclass
class LidarrSearchResult:
    """Outcome of one acquisition search."""

    album_id: str
    lidarr_album_id: int | None
    added_to_lidarr: bool
    download_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "album_id": self.album_id,
            "lidarr_album_id": self.lidarr_album_id,
            "added_to_lidarr": self.added_to_lidarr,
            "download_id": self.download_id,
        }


class LidarrSearchService:
    """Triggers Lidarr searches for catalog albums."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: LidarrSettings,
        client_factory: LidarrClientFactory = LidarrClient,
    ) -> None:
        """Initialize search service.

        Args:
            session_factory: Factory for sessions
            settings: Env-level Lidarr defaults
            client_factory: Builds a client from (url, api_key, timeout)
        """
        self._session_factory = session_factory
        self._settings = settings
        self._client_factory = client_factory

    async def _resolve_connection(self, session: AsyncSession) -> tuple[str, str]:
        user_settings = await UserSettingsRepository(session).get()
        url = (user_settings.lidarr_url if user_settings else None) or self._settings.url
        api_key = (
            user_settings.lidarr_api_key if user_settings else None
        ) or self._settings.api_key
        if not url or not api_key:
            raise ConfigurationError("Lidarr URL and API key must be configured")
        return url, api_key

    async def search_album(self, album_id: str) -> LidarrSearchResult:
        """Hand one album to Lidarr and mark it as downloading.

        Raises:
            ConfigurationError: Lidarr connection not configured
            EntityNotFoundException: Album missing, or Lidarr lookup found nothing
            DomainException: Album has no MusicBrainz release group id
        """
        async with self._session_factory() as session:
            url, api_key = await self._resolve_connection(session)
            album = await AlbumRepository(session).get_by_id_or_raise(album_id)
            mbid = album.musicbrainz_release_group_id
            title = album.title
        if not mbid:
            raise DomainException(
                f"Album '{title}' has no MusicBrainz release group id, match it first"
            )

        client = self._client_factory(url, api_key, self._settings.timeout)
        try:
            lookup = await client.lookup_album(mbid)
            if lookup is None:
                raise EntityNotFoundException("Lidarr album", mbid)

            lidarr_album_id = lookup.get("id")
            added = False
            if not lidarr_album_id:
                payload = dict(lookup)
                payload["monitored"] = True
                payload["addOptions"] = {"searchForNewAlbum": True}
                created = await client.add_album(payload)
                lidarr_album_id = created.get("id")
                added = True
                logger.info(f"Added album '{title}' to Lidarr with search enabled")
            else:
                await client.search_album(int(lidarr_album_id))
        finally:
            await client.close()

        async with self._session_factory() as session:
            albums = AlbumRepository(session)
            album = await albums.get_by_id_or_raise(album_id)
            download = await LidarrDownloadRepository(session).add(
                album.id,
                DownloadStatus.SEARCHING,
                lidarr_album_id=int(lidarr_album_id) if lidarr_album_id else None,
            )
            if albums.set_ownership(album, OwnershipStatus.DOWNLOADING):
                await PlaylistStatsService(session).recompute_for_album(album.id)
            await session.commit()

        logger.info(f"Lidarr search started for album '{title}'")
        return LidarrSearchResult(
            album_id=album_id,
            lidarr_album_id=int(lidarr_album_id) if lidarr_album_id else None,
            added_to_lidarr=added,
            download_id=download.id,
        )
