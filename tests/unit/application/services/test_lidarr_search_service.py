"""Tests for LidarrSearchService with a fake Lidarr client."""

from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.lidarr_search_service import (
    LidarrSearchService,
)
from beatcollector.config.settings import LidarrSettings
from beatcollector.domain.entities import DownloadStatus, MatchStatus, OwnershipStatus
from beatcollector.domain.exceptions import (
    ConfigurationError,
    DomainException,
    EntityNotFoundException,
)
from beatcollector.domain.ports import ILidarrClient
from beatcollector.infrastructure.persistence.models import AlbumModel
from beatcollector.infrastructure.persistence.repositories import (
    LidarrDownloadRepository,
    UserSettingsRepository,
)


class FakeClientFactory:
    """Records how the client was built and hands out one shared mock."""

    def __init__(self) -> None:
        self.client = AsyncMock(spec=ILidarrClient)
        self.calls: list[tuple[str, str, float]] = []

    def __call__(self, url: str, api_key: str, timeout: float) -> AsyncMock:
        self.calls.append((url, api_key, timeout))
        return self.client


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def lidarr_settings() -> LidarrSettings:
    return LidarrSettings(url="http://lidarr:8686/", api_key="env-key")


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    lidarr_settings: LidarrSettings,
    factory: FakeClientFactory,
) -> LidarrSearchService:
    return LidarrSearchService(session_factory, lidarr_settings, client_factory=factory)


@pytest.fixture
async def matched_album(catalog: Any) -> str:
    artist_id = await catalog.artist("Boards of Canada")
    return await catalog.album(
        artist_id,
        "Music Has the Right to Children",
        match_status=MatchStatus.MATCHED,
        mbid="rg-mhtrtc",
    )


class TestSearchAlbum:
    async def test_known_album_triggers_search(
        self,
        service: LidarrSearchService,
        factory: FakeClientFactory,
        session_factory: async_sessionmaker[AsyncSession],
        matched_album: str,
    ) -> None:
        factory.client.lookup_album.return_value = {"id": 42, "title": "MHTRTC"}

        result = await service.search_album(matched_album)

        assert result.lidarr_album_id == 42
        assert result.added_to_lidarr is False
        factory.client.lookup_album.assert_awaited_once_with("rg-mhtrtc")
        factory.client.search_album.assert_awaited_once_with(42)
        factory.client.add_album.assert_not_awaited()
        factory.client.close.assert_awaited_once()
        assert factory.calls == [("http://lidarr:8686", "env-key", 30.0)]

        async with session_factory() as session:
            album = await session.get(AlbumModel, matched_album)
            download = await LidarrDownloadRepository(session).get_latest_for_album(
                matched_album
            )
        assert album is not None
        assert album.ownership_status is OwnershipStatus.DOWNLOADING
        assert download is not None
        assert download.id == result.download_id
        assert download.status is DownloadStatus.SEARCHING
        assert download.lidarr_album_id == 42

    async def test_unknown_album_is_added_monitored(
        self,
        service: LidarrSearchService,
        factory: FakeClientFactory,
        matched_album: str,
    ) -> None:
        factory.client.lookup_album.return_value = {"title": "MHTRTC", "foreignAlbumId": "rg"}
        factory.client.add_album.return_value = {"id": 7}

        result = await service.search_album(matched_album)

        assert result.added_to_lidarr is True
        assert result.lidarr_album_id == 7
        sent = factory.client.add_album.await_args.args[0]
        assert sent["monitored"] is True
        assert sent["addOptions"] == {"searchForNewAlbum": True}
        assert sent["foreignAlbumId"] == "rg"
        factory.client.search_album.assert_not_awaited()

    async def test_search_for_owned_album_keeps_it_owned(
        self,
        service: LidarrSearchService,
        factory: FakeClientFactory,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Any,
    ) -> None:
        artist_id = await catalog.artist("Boards of Canada")
        album_id = await catalog.album(
            artist_id,
            "Geogaddi",
            ownership=OwnershipStatus.OWNED,
            match_status=MatchStatus.MATCHED,
            mbid="rg-geogaddi",
        )
        factory.client.lookup_album.return_value = {"id": 9}

        result = await service.search_album(album_id)

        factory.client.search_album.assert_awaited_once_with(9)
        async with session_factory() as session:
            album = await session.get(AlbumModel, album_id)
            download = await LidarrDownloadRepository(session).get_latest_for_album(album_id)
        assert album is not None
        assert album.ownership_status is OwnershipStatus.OWNED
        assert download is not None
        assert download.id == result.download_id

    async def test_lookup_miss(
        self,
        service: LidarrSearchService,
        factory: FakeClientFactory,
        session_factory: async_sessionmaker[AsyncSession],
        matched_album: str,
    ) -> None:
        factory.client.lookup_album.return_value = None

        with pytest.raises(EntityNotFoundException):
            await service.search_album(matched_album)

        factory.client.close.assert_awaited_once()
        async with session_factory() as session:
            album = await session.get(AlbumModel, matched_album)
        assert album is not None
        assert album.ownership_status is OwnershipStatus.NOT_OWNED

    async def test_album_without_mbid(
        self, service: LidarrSearchService, factory: FakeClientFactory, catalog: Any
    ) -> None:
        artist_id = await catalog.artist("Boards of Canada")
        album_id = await catalog.album(artist_id, "Geogaddi")

        with pytest.raises(DomainException, match="no MusicBrainz release group"):
            await service.search_album(album_id)
        assert factory.calls == []

    async def test_missing_album(self, service: LidarrSearchService) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.search_album("nope")

    async def test_not_configured(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        factory: FakeClientFactory,
        matched_album: str,
    ) -> None:
        service = LidarrSearchService(
            session_factory, LidarrSettings(url=None, api_key=None), client_factory=factory
        )

        with pytest.raises(ConfigurationError):
            await service.search_album(matched_album)

    async def test_user_settings_win_over_env(
        self,
        service: LidarrSearchService,
        factory: FakeClientFactory,
        session_factory: async_sessionmaker[AsyncSession],
        matched_album: str,
    ) -> None:
        async with session_factory() as session:
            settings = await UserSettingsRepository(session).get_or_create()
            settings.lidarr_url = "http://nas:8686"
            settings.lidarr_api_key = "db-key"
            await session.commit()
        factory.client.lookup_album.return_value = {"id": 1}

        await service.search_album(matched_album)

        assert factory.calls[0][:2] == ("http://nas:8686", "db-key")
