"""Lidarr webhook reconciliation.

Hey future me - Lidarr POSTs a JSON event whenever something happens to an album
it manages. The "eventType" field decides the shape, so the payload is a pydantic
discriminated union on it:

    Grab            -> release grabbed, download running   => album DOWNLOADING
    Download        -> files imported into the library     => album OWNED (lidarr)
    AlbumDownload   -> album import finished               => album OWNED (lidarr)
    DownloadFailure -> download failed                     => album NOT_OWNED
    Test            -> "Test" button in Lidarr's UI         => nothing

Lidarr doesn't know our ids and we rarely know Lidarr's, so albums are found by
NAME: artist first (exact, then fuzzy > 0.85), then the album among that artist's
albums the same way. An album we can't find is logged and skipped - a webhook for
something outside our catalog is normal, not an error.

Ownership writes go through AlbumRepository.set_ownership, so a Grab for an album
we already own (a quality upgrade) doesn't knock it back to DOWNLOADING. Every
real ownership change recomputes the affected playlists' owned_count in the same
transaction.
"""

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.domain.entities import (
    AcquisitionSource,
    DownloadStatus,
    OwnershipStatus,
)
from beatcollector.domain.exceptions import ValidationException
from beatcollector.domain.value_objects.string_similarity import (
    WEBHOOK_MATCH_THRESHOLD,
    best_match,
)
from beatcollector.infrastructure.persistence.models import AlbumModel
from beatcollector.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    LidarrDownloadRepository,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PAYLOAD MODELS
# =============================================================================


class _LidarrModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class LidarrArtist(_LidarrModel):
    id: int
    artist_name: str = Field(alias="artistName")
    foreign_artist_id: str | None = Field(default=None, alias="foreignArtistId")


class LidarrAlbum(_LidarrModel):
    id: int
    title: str
    release_date: str | None = Field(default=None, alias="releaseDate")
    monitored: bool | None = None


class LidarrTrackFile(_LidarrModel):
    id: int
    path: str
    quality: Any = None


class GrabEvent(_LidarrModel):
    event_type: Literal["Grab"] = Field(alias="eventType")
    artist: LidarrArtist
    albums: list[LidarrAlbum] = Field(default_factory=list)
    download_id: str | None = Field(default=None, alias="downloadId")


class DownloadEvent(_LidarrModel):
    event_type: Literal["Download"] = Field(alias="eventType")
    artist: LidarrArtist
    albums: list[LidarrAlbum] = Field(default_factory=list)
    track_files: list[LidarrTrackFile] = Field(default_factory=list, alias="trackFiles")
    is_upgrade: bool = Field(default=False, alias="isUpgrade")


class AlbumDownloadEvent(_LidarrModel):
    event_type: Literal["AlbumDownload"] = Field(alias="eventType")
    artist: LidarrArtist
    album: LidarrAlbum


class DownloadFailureEvent(_LidarrModel):
    event_type: Literal["DownloadFailure"] = Field(alias="eventType")
    artist: LidarrArtist
    albums: list[LidarrAlbum] = Field(default_factory=list)
    message: str | None = None


class ConnectionTestEvent(_LidarrModel):
    event_type: Literal["Test"] = Field(alias="eventType")


LidarrWebhookPayload = Annotated[
    GrabEvent | DownloadEvent | AlbumDownloadEvent | DownloadFailureEvent | ConnectionTestEvent,
    Field(discriminator="event_type"),
]

_payload_adapter: TypeAdapter[Any] = TypeAdapter(LidarrWebhookPayload)


def parse_webhook_payload(data: dict[str, Any]) -> Any:
    """Validate a raw webhook body into one of the event models.

    Raises:
        ValidationException: Unknown eventType or malformed body
    """
    try:
        return _payload_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationException(f"Invalid Lidarr webhook payload: {e}") from e


@dataclass
class WebhookResult:
    """What a webhook changed."""

    event_type: str
    albums_updated: list[str] = field(default_factory=list)
    albums_unmatched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "albums_updated": list(self.albums_updated),
            "albums_unmatched": list(self.albums_unmatched),
        }


# =============================================================================
# SERVICE
# =============================================================================


class LidarrWebhookService:
    """Applies Lidarr webhook events to album ownership."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def handle_event(self, payload: Any) -> WebhookResult:
        """Apply one validated webhook event in a single transaction."""
        result = WebhookResult(event_type=payload.event_type)
        if isinstance(payload, ConnectionTestEvent):
            logger.info("Received Lidarr test webhook")
            return result

        async with self._session_factory() as session:
            if isinstance(payload, GrabEvent):
                await self._handle_grab(session, payload, result)
            elif isinstance(payload, DownloadEvent):
                await self._handle_download(session, payload, result)
            elif isinstance(payload, AlbumDownloadEvent):
                await self._handle_album_download(session, payload, result)
            elif isinstance(payload, DownloadFailureEvent):
                await self._handle_failure(session, payload, result)
            await session.commit()

        logger.info(
            f"Lidarr {result.event_type}: {len(result.albums_updated)} albums updated, "
            f"{len(result.albums_unmatched)} unmatched"
        )
        return result

    async def find_album(
        self, session: AsyncSession, artist_name: str, album_title: str
    ) -> AlbumModel | None:
        """Resolve a Lidarr artist/album name pair to a catalog album."""
        artists = await ArtistRepository(session).list_all()
        artist_hit = best_match(
            artist_name, artists, key=lambda a: a.name, threshold=WEBHOOK_MATCH_THRESHOLD
        )
        if artist_hit is None:
            return None
        artist, _ = artist_hit

        albums = await AlbumRepository(session).list_by_artist(artist.id)
        album_hit = best_match(
            album_title, albums, key=lambda a: a.title, threshold=WEBHOOK_MATCH_THRESHOLD
        )
        return album_hit[0] if album_hit else None

    async def _resolve(
        self,
        session: AsyncSession,
        artist: LidarrArtist,
        lidarr_album: LidarrAlbum,
        result: WebhookResult,
    ) -> AlbumModel | None:
        album = await self.find_album(session, artist.artist_name, lidarr_album.title)
        if album is None:
            logger.warning(
                f"Lidarr {result.event_type} for unknown album "
                f"'{artist.artist_name} - {lidarr_album.title}', skipping"
            )
            result.albums_unmatched.append(lidarr_album.title)
        return album

    async def _set_ownership(
        self,
        session: AsyncSession,
        album: AlbumModel,
        status: OwnershipStatus,
        result: WebhookResult,
        only_from: tuple[OwnershipStatus, ...] | None = None,
    ) -> None:
        if not AlbumRepository(session).set_ownership(album, status, only_from=only_from):
            return
        await PlaylistStatsService(session).recompute_for_album(album.id)
        result.albums_updated.append(album.id)

    async def _handle_grab(
        self, session: AsyncSession, payload: GrabEvent, result: WebhookResult
    ) -> None:
        downloads = LidarrDownloadRepository(session)
        for lidarr_album in payload.albums:
            album = await self._resolve(session, payload.artist, lidarr_album, result)
            if album is None:
                continue
            await downloads.add(
                album.id,
                DownloadStatus.DOWNLOADING,
                lidarr_album_id=lidarr_album.id,
                download_id=payload.download_id,
            )
            await self._set_ownership(session, album, OwnershipStatus.DOWNLOADING, result)
            logger.info(f"Album '{album.title}' grabbed by Lidarr")

    async def _handle_download(
        self, session: AsyncSession, payload: DownloadEvent, result: WebhookResult
    ) -> None:
        local_path = None
        if payload.track_files:
            local_path = str(PurePath(payload.track_files[0].path).parent)

        downloads = LidarrDownloadRepository(session)
        for lidarr_album in payload.albums:
            album = await self._resolve(session, payload.artist, lidarr_album, result)
            if album is None:
                continue
            album.acquisition_source = AcquisitionSource.LIDARR
            if local_path:
                album.local_path = local_path
            await self._set_ownership(session, album, OwnershipStatus.OWNED, result)

            download = await downloads.get_latest_for_album(album.id)
            if download is not None:
                download.status = DownloadStatus.COMPLETED
            logger.info(f"Album '{album.title}' downloaded and imported by Lidarr")

    async def _handle_album_download(
        self, session: AsyncSession, payload: AlbumDownloadEvent, result: WebhookResult
    ) -> None:
        album = await self._resolve(session, payload.artist, payload.album, result)
        if album is None:
            return
        album.acquisition_source = AcquisitionSource.LIDARR
        await self._set_ownership(session, album, OwnershipStatus.OWNED, result)

    async def _handle_failure(
        self, session: AsyncSession, payload: DownloadFailureEvent, result: WebhookResult
    ) -> None:
        downloads = LidarrDownloadRepository(session)
        for lidarr_album in payload.albums:
            album = await self._resolve(session, payload.artist, lidarr_album, result)
            if album is None:
                continue
            # only a running download falls back; a failed upgrade of an album
            # we already own leaves it owned
            await self._set_ownership(
                session,
                album,
                OwnershipStatus.NOT_OWNED,
                result,
                only_from=(OwnershipStatus.DOWNLOADING,),
            )

            download = await downloads.get_latest_for_album(album.id)
            if download is not None:
                download.status = DownloadStatus.FAILED
                download.error_message = payload.message
            logger.warning(
                f"Lidarr download failed for '{album.title}': {payload.message or 'no reason given'}"
            )
