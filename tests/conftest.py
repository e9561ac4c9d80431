"""Shared fixtures: a real SQLite database per test."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.config import DatabaseSettings
from beatcollector.domain.entities import AlbumSource, MatchStatus, OwnershipStatus
from beatcollector.infrastructure.persistence import Database
from beatcollector.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    PlaylistModel,
    PlaylistTrackModel,
    TrackModel,
)

# Hey future me - these tests use a temp-FILE SQLite, not ":memory:". The services
# open several sessions (often concurrently with the executor), and a file DB
# behaves like production: separate connections, real write locks.


@pytest.fixture
async def db(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Fresh database with all tables."""
    database = Database(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"))
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def session_factory(db: Database) -> async_sessionmaker[AsyncSession]:
    return db.get_session_factory()


class CatalogBuilder:
    """Small helper to insert catalog rows without going through a sync."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def artist(self, name: str, spotify_id: str | None = None) -> str:
        async with self._session_factory() as session:
            artist = ArtistModel(name=name, spotify_id=spotify_id)
            session.add(artist)
            await session.commit()
            return artist.id

    async def album(
        self,
        artist_id: str,
        title: str,
        ownership: OwnershipStatus = OwnershipStatus.NOT_OWNED,
        match_status: MatchStatus = MatchStatus.PENDING,
        mbid: str | None = None,
        spotify_id: str | None = None,
    ) -> str:
        async with self._session_factory() as session:
            album = AlbumModel(
                artist_id=artist_id,
                title=title,
                spotify_id=spotify_id,
                ownership_status=ownership,
                match_status=match_status,
                musicbrainz_release_group_id=mbid,
                album_source=AlbumSource.SAVED_ALBUM,
            )
            session.add(album)
            await session.commit()
            return album.id

    async def track(self, album_id: str, title: str, spotify_id: str | None = None) -> str:
        async with self._session_factory() as session:
            track = TrackModel(album_id=album_id, title=title, spotify_id=spotify_id)
            session.add(track)
            await session.commit()
            return track.id

    async def playlist(
        self, spotify_id: str, name: str, track_ids: list[str] | None = None
    ) -> str:
        async with self._session_factory() as session:
            playlist = PlaylistModel(spotify_id=spotify_id, name=name, is_enabled=True)
            session.add(playlist)
            await session.flush()
            for position, track_id in enumerate(track_ids or []):
                session.add(
                    PlaylistTrackModel(
                        playlist_id=playlist.id, track_id=track_id, position=position
                    )
                )
            await session.commit()
            return playlist.id


@pytest.fixture
def catalog(session_factory: async_sessionmaker[AsyncSession]) -> CatalogBuilder:
    return CatalogBuilder(session_factory)
