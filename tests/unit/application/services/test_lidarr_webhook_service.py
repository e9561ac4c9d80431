"""Tests for Lidarr webhook parsing and ownership reconciliation."""

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.lidarr_webhook_service import (
    ConnectionTestEvent,
    DownloadEvent,
    GrabEvent,
    LidarrWebhookService,
    parse_webhook_payload,
)
from beatcollector.domain.entities import (
    AcquisitionSource,
    DownloadStatus,
    OwnershipStatus,
)
from beatcollector.domain.exceptions import ValidationException
from beatcollector.infrastructure.persistence.models import AlbumModel, PlaylistModel
from beatcollector.infrastructure.persistence.repositories import (
    LidarrDownloadRepository,
)

ARTIST = {"id": 1, "artistName": "Portishead", "foreignArtistId": "mb-artist"}
DUMMY = {"id": 10, "title": "Dummy"}


def payload(event_type: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"eventType": event_type, "artist": ARTIST}
    body.update(extra)
    return body


@pytest.fixture
async def album_id(catalog: Any) -> str:
    artist_id = await catalog.artist("Portishead")
    return await catalog.album(artist_id, "Dummy")


@pytest.fixture
def service(session_factory: async_sessionmaker[AsyncSession]) -> LidarrWebhookService:
    return LidarrWebhookService(session_factory)


async def load(session_factory: async_sessionmaker[AsyncSession], album_id: str) -> AlbumModel:
    async with session_factory() as session:
        album = await session.get(AlbumModel, album_id)
        assert album is not None
        return album


class TestParsePayload:
    def test_dispatches_on_event_type(self) -> None:
        event = parse_webhook_payload(payload("Grab", albums=[DUMMY], downloadId="dl-1"))
        assert isinstance(event, GrabEvent)
        assert event.download_id == "dl-1"
        assert event.albums[0].title == "Dummy"

    def test_track_files_parsed(self) -> None:
        event = parse_webhook_payload(
            payload("Download", albums=[DUMMY], trackFiles=[{"id": 1, "path": "/m/a.flac"}])
        )
        assert isinstance(event, DownloadEvent)
        assert event.track_files[0].path == "/m/a.flac"

    def test_test_event_needs_no_artist(self) -> None:
        assert isinstance(parse_webhook_payload({"eventType": "Test"}), ConnectionTestEvent)

    def test_unknown_event_type_rejected(self) -> None:
        with pytest.raises(ValidationException):
            parse_webhook_payload(payload("Rename"))

    def test_missing_artist_rejected(self) -> None:
        with pytest.raises(ValidationException):
            parse_webhook_payload({"eventType": "Grab", "albums": [DUMMY]})


class TestHandleEvent:
    async def test_grab_marks_downloading(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        event = parse_webhook_payload(payload("Grab", albums=[DUMMY], downloadId="dl-1"))

        result = await service.handle_event(event)

        assert result.albums_updated == [album_id]
        assert (await load(session_factory, album_id)).ownership_status is (
            OwnershipStatus.DOWNLOADING
        )
        async with session_factory() as session:
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert download is not None
        assert download.status is DownloadStatus.DOWNLOADING
        assert download.download_id == "dl-1"
        assert download.lidarr_album_id == 10

    async def test_grab_for_owned_album_keeps_it_owned(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
    ) -> None:
        artist_id = await catalog.artist("Portishead")
        album_id = await catalog.album(artist_id, "Dummy", ownership=OwnershipStatus.OWNED)
        track_id = await catalog.track(album_id, "Glory Box")
        playlist_id = await catalog.playlist("pl-owned", "Trip Hop", [track_id])
        async with session_factory() as session:
            playlist = await session.get(PlaylistModel, playlist_id)
            assert playlist is not None
            playlist.owned_count = 1
            await session.commit()

        # Lidarr grabbing a better quality release of something already on disk
        result = await service.handle_event(
            parse_webhook_payload(payload("Grab", albums=[DUMMY], downloadId="dl-up"))
        )

        assert result.albums_updated == []
        assert (await load(session_factory, album_id)).ownership_status is OwnershipStatus.OWNED
        async with session_factory() as session:
            playlist = await session.get(PlaylistModel, playlist_id)
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert playlist is not None
        assert playlist.owned_count == 1
        assert download is not None
        assert download.status is DownloadStatus.DOWNLOADING

    async def test_failed_upgrade_leaves_owned_album_owned(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
    ) -> None:
        artist_id = await catalog.artist("Portishead")
        album_id = await catalog.album(artist_id, "Dummy", ownership=OwnershipStatus.OWNED)
        await service.handle_event(parse_webhook_payload(payload("Grab", albums=[DUMMY])))

        result = await service.handle_event(
            parse_webhook_payload(payload("DownloadFailure", albums=[DUMMY], message="Stalled"))
        )

        assert result.albums_updated == []
        assert (await load(session_factory, album_id)).ownership_status is OwnershipStatus.OWNED
        async with session_factory() as session:
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert download is not None
        assert download.status is DownloadStatus.FAILED

    async def test_download_marks_owned(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        await service.handle_event(parse_webhook_payload(payload("Grab", albums=[DUMMY])))
        event = parse_webhook_payload(
            payload(
                "Download",
                albums=[DUMMY],
                trackFiles=[{"id": 1, "path": "/music/Portishead/Dummy/01 - Mysterons.flac"}],
            )
        )

        await service.handle_event(event)

        album = await load(session_factory, album_id)
        assert album.ownership_status is OwnershipStatus.OWNED
        assert album.acquisition_source is AcquisitionSource.LIDARR
        assert album.local_path == "/music/Portishead/Dummy"
        async with session_factory() as session:
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert download is not None
        assert download.status is DownloadStatus.COMPLETED

    async def test_album_download_marks_owned(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        event = parse_webhook_payload(payload("AlbumDownload", album=DUMMY))

        await service.handle_event(event)

        assert (await load(session_factory, album_id)).ownership_status is OwnershipStatus.OWNED

    async def test_failure_marks_not_owned(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        await service.handle_event(parse_webhook_payload(payload("Grab", albums=[DUMMY])))
        event = parse_webhook_payload(
            payload("DownloadFailure", albums=[DUMMY], message="No seeders")
        )

        await service.handle_event(event)

        assert (await load(session_factory, album_id)).ownership_status is (
            OwnershipStatus.NOT_OWNED
        )
        async with session_factory() as session:
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert download is not None
        assert download.status is DownloadStatus.FAILED
        assert download.error_message == "No seeders"

    async def test_fuzzy_album_name(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        event = parse_webhook_payload(
            payload("AlbumDownload", album={"id": 10, "title": "dummy"})
        )

        result = await service.handle_event(event)

        assert result.albums_updated == [album_id]

    async def test_unknown_album_is_skipped(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        event = parse_webhook_payload(
            payload("Grab", albums=[{"id": 11, "title": "Third"}, DUMMY])
        )

        result = await service.handle_event(event)

        assert result.albums_unmatched == ["Third"]
        assert result.albums_updated == [album_id]

    async def test_test_event_changes_nothing(
        self, service: LidarrWebhookService, session_factory: async_sessionmaker[AsyncSession],
        album_id: str,
    ) -> None:
        result = await service.handle_event(parse_webhook_payload({"eventType": "Test"}))

        assert result.to_dict() == {
            "event_type": "Test",
            "albums_updated": [],
            "albums_unmatched": [],
        }
        assert (await load(session_factory, album_id)).ownership_status is (
            OwnershipStatus.NOT_OWNED
        )

    async def test_ownership_change_recomputes_playlists(
        self,
        service: LidarrWebhookService,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
        album_id: str,
    ) -> None:
        track_id = await catalog.track(album_id, "Sour Times")
        playlist_id = await catalog.playlist("pl-1", "Trip Hop", [track_id])

        await service.handle_event(parse_webhook_payload(payload("AlbumDownload", album=DUMMY)))

        async with session_factory() as session:
            playlist = await session.get(PlaylistModel, playlist_id)
        assert playlist is not None
        assert playlist.owned_count == 1
