"""Tests for the denormalized playlist owned_count maintainer."""

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.domain.entities import OwnershipStatus
from beatcollector.domain.exceptions import EntityNotFoundException
from beatcollector.infrastructure.persistence.models import PlaylistModel
from beatcollector.infrastructure.persistence.repositories import AlbumRepository


@pytest.fixture
async def library(catalog: Any) -> dict[str, str]:
    """Two albums (one owned), two playlists sharing a track."""
    artist_id = await catalog.artist("Massive Attack")
    owned = await catalog.album(artist_id, "Mezzanine", ownership=OwnershipStatus.OWNED)
    missing = await catalog.album(artist_id, "Blue Lines")
    t1 = await catalog.track(owned, "Angel")
    t2 = await catalog.track(owned, "Teardrop")
    t3 = await catalog.track(missing, "Unfinished Sympathy")
    mixed = await catalog.playlist("pl-mixed", "Mixed", [t1, t2, t3])
    other = await catalog.playlist("pl-other", "Other", [t3])
    empty = await catalog.playlist("pl-empty", "Empty")
    return {
        "owned_album": owned,
        "missing_album": missing,
        "mixed": mixed,
        "other": other,
        "empty": empty,
    }


class TestRecompute:
    async def test_recompute_one(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            owned = await PlaylistStatsService(session).recompute_one(library["mixed"])
            await session.commit()
        assert owned == 2

        async with session_factory() as session:
            playlist = await session.get(PlaylistModel, library["mixed"])
        assert playlist is not None
        assert playlist.owned_count == 2

    async def test_recompute_unknown_playlist(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(EntityNotFoundException):
                await PlaylistStatsService(session).recompute_one("missing")

    async def test_ownership_change_updates_every_affected_playlist(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            await PlaylistStatsService(session).recompute_all()
            await session.commit()

        async with session_factory() as session:
            album = await AlbumRepository(session).get_by_id_or_raise(library["missing_album"])
            album.ownership_status = OwnershipStatus.OWNED
            counts = await PlaylistStatsService(session).recompute_for_album(album.id)
            await session.commit()

        assert counts == {
            library["mixed"]: 3,
            library["other"]: 1,
        }

    async def test_recompute_all_covers_empty_playlists(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            updated = await PlaylistStatsService(session).recompute_all()
            await session.commit()
            empty = await session.get(PlaylistModel, library["empty"])

        assert updated == 3
        assert empty is not None
        assert empty.owned_count == 0


class TestBatchStats:
    async def test_batch_stats(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            stats = await PlaylistStatsService(session).batch_stats(
                [library["mixed"], library["other"], library["empty"], "unknown"]
            )

        assert stats == {
            library["mixed"]: (2, 3),
            library["other"]: (0, 1),
            library["empty"]: (0, 0),
            "unknown": (0, 0),
        }

    async def test_batch_stats_no_ids(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        async with session_factory() as session:
            assert await PlaylistStatsService(session).batch_stats([]) == {}

    async def test_resolve_prefers_stored_count(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            mixed = await session.get(PlaylistModel, library["mixed"])
            other = await session.get(PlaylistModel, library["other"])
            assert mixed is not None and other is not None
            # stale on purpose: resolve must trust a non-null stored value
            mixed.owned_count = 1
            other.owned_count = None

            resolved = await PlaylistStatsService(session).resolve_owned_counts([mixed, other])

        assert resolved[library["mixed"]] == (1, 3)
        assert resolved[library["other"]] == (0, 1)


class TestPagination:
    async def test_pages_in_position_order(
        self, session_factory: async_sessionmaker[AsyncSession], library: dict[str, str]
    ) -> None:
        async with session_factory() as session:
            service = PlaylistStatsService(session)
            first_page, total = await service.get_playlist_tracks_paginated(
                library["mixed"], page=1, page_size=2
            )
            second_page, _ = await service.get_playlist_tracks_paginated(
                library["mixed"], page=2, page_size=2
            )

        assert total == 3
        assert [row.track.title for row in first_page] == ["Angel", "Teardrop"]
        assert [row.track.title for row in second_page] == ["Unfinished Sympathy"]
        assert first_page[0].is_owned is True
        assert second_page[0].is_owned is False
        assert second_page[0].artist.name == "Massive Attack"
