"""Playlist statistics maintainer.

Hey future me - playlists.owned_count is DENORMALIZED. Counting owned tracks
means joining playlist_tracks -> tracks -> albums for every playlist, which is
way too slow for a list view with hundreds of playlists. So we store the count
and keep it fresh:

- recompute_one() after a playlist's track sync rewrote its memberships
- recompute_for_album() after an album's ownership_status changed (webhook,
  filesystem scan, Lidarr search) - every playlist containing ANY track of the
  album is recomputed

This service takes the caller's session and never commits. The ownership write
and the recompute land in the SAME transaction, so a reader never sees an owned
album next to a stale count.

owned_count NULL = never computed. resolve_owned_counts() falls back to a live
count for those, so the list view is correct even before the first recompute.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from beatcollector.domain.entities import OwnershipStatus
from beatcollector.domain.exceptions import EntityNotFoundException
from beatcollector.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    PlaylistModel,
    PlaylistTrackModel,
    TrackModel,
)

logger = logging.getLogger(__name__)

RECOMPUTE_LOG_INTERVAL = 100


@dataclass
class PlaylistTrackRow:
    """One playlist entry joined with its track, album and artist."""

    position: int
    added_at: datetime
    track: TrackModel
    album: AlbumModel
    artist: ArtistModel

    @property
    def is_owned(self) -> bool:
        return self.album.ownership_status == OwnershipStatus.OWNED


class PlaylistStatsService:
    """Maintains playlists.owned_count inside the caller's transaction."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize stats service.

        Args:
            session: Database session (caller owns commit/rollback)
        """
        self._session = session

    async def _count_owned(self, playlist_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(PlaylistTrackModel)
            .join(TrackModel, TrackModel.id == PlaylistTrackModel.track_id)
            .join(AlbumModel, AlbumModel.id == TrackModel.album_id)
            .where(
                PlaylistTrackModel.playlist_id == playlist_id,
                AlbumModel.ownership_status == OwnershipStatus.OWNED,
            )
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def recompute_one(self, playlist_id: str) -> int:
        """Recount owned tracks of one playlist and store the result.

        Returns:
            The new owned_count

        Raises:
            EntityNotFoundException: Playlist does not exist
        """
        playlist = await self._session.get(PlaylistModel, playlist_id)
        if playlist is None:
            raise EntityNotFoundException("Playlist", playlist_id)

        # Pending ORM changes (ownership flips, new memberships) must be visible
        # to the count query.
        await self._session.flush()
        owned = await self._count_owned(playlist_id)
        playlist.owned_count = owned
        return owned

    async def recompute_for_album(self, album_id: str) -> dict[str, int]:
        """Recompute every playlist that contains a track of this album.

        Returns:
            {playlist_id: new owned_count}
        """
        await self._session.flush()
        stmt = (
            select(PlaylistTrackModel.playlist_id)
            .join(TrackModel, TrackModel.id == PlaylistTrackModel.track_id)
            .where(TrackModel.album_id == album_id)
            .distinct()
        )
        result = await self._session.execute(stmt)
        playlist_ids = sorted(result.scalars().all())

        counts: dict[str, int] = {}
        for playlist_id in playlist_ids:
            counts[playlist_id] = await self.recompute_one(playlist_id)

        if counts:
            logger.debug(
                f"Recomputed owned_count for {len(counts)} playlists after album {album_id} changed"
            )
        return counts

    async def recompute_all(self) -> int:
        """Recompute owned_count for every playlist.

        Returns:
            Number of playlists updated
        """
        result = await self._session.execute(select(PlaylistModel.id))
        playlist_ids = list(result.scalars().all())

        updated = 0
        for playlist_id in playlist_ids:
            await self.recompute_one(playlist_id)
            updated += 1
            if updated % RECOMPUTE_LOG_INTERVAL == 0:
                logger.info(f"Recomputed owned_count for {updated}/{len(playlist_ids)} playlists")

        logger.info(f"Recomputed owned_count for all {updated} playlists")
        return updated

    async def batch_stats(
        self, playlist_ids: Sequence[str]
    ) -> dict[str, tuple[int, int]]:
        """Live (owned, total) counts for many playlists in one grouped query.

        Every requested id is present in the result; playlists without any
        tracks get (0, 0).
        """
        stats: dict[str, tuple[int, int]] = {pid: (0, 0) for pid in playlist_ids}
        if not playlist_ids:
            return stats

        owned_expr = func.sum(
            case((AlbumModel.ownership_status == OwnershipStatus.OWNED, 1), else_=0)
        )
        stmt = (
            select(
                PlaylistTrackModel.playlist_id,
                owned_expr,
                func.count(PlaylistTrackModel.track_id),
            )
            .join(TrackModel, TrackModel.id == PlaylistTrackModel.track_id)
            .join(AlbumModel, AlbumModel.id == TrackModel.album_id)
            .where(PlaylistTrackModel.playlist_id.in_(list(playlist_ids)))
            .group_by(PlaylistTrackModel.playlist_id)
        )
        result = await self._session.execute(stmt)
        for playlist_id, owned, total in result.all():
            stats[playlist_id] = (int(owned or 0), int(total or 0))
        return stats

    # Hey future me - total ALWAYS comes from the live membership count. Only the
    # owned half is denormalized; playlists.total_tracks is Spotify's number and
    # includes local files and removed tracks we never stored.
    async def resolve_owned_counts(
        self, playlists: Iterable[PlaylistModel]
    ) -> dict[str, tuple[int, int]]:
        """(owned, total) per playlist, preferring the stored owned_count."""
        playlist_list = list(playlists)
        live = await self.batch_stats([p.id for p in playlist_list])

        resolved: dict[str, tuple[int, int]] = {}
        for playlist in playlist_list:
            live_owned, total = live[playlist.id]
            owned = playlist.owned_count if playlist.owned_count is not None else live_owned
            resolved[playlist.id] = (owned, total)
        return resolved

    async def get_playlist_tracks_paginated(
        self, playlist_id: str, page: int = 1, page_size: int = 50
    ) -> tuple[list[PlaylistTrackRow], int]:
        """One page of a playlist's entries in position order.

        Args:
            playlist_id: Playlist to read
            page: 1-based page number
            page_size: Rows per page

        Returns:
            (rows, total number of entries)
        """
        page = max(page, 1)
        total_stmt = select(func.count()).select_from(PlaylistTrackModel).where(
            PlaylistTrackModel.playlist_id == playlist_id
        )
        total = (await self._session.execute(total_stmt)).scalar() or 0

        stmt = (
            select(PlaylistTrackModel, TrackModel, AlbumModel, ArtistModel)
            .join(TrackModel, TrackModel.id == PlaylistTrackModel.track_id)
            .join(AlbumModel, AlbumModel.id == TrackModel.album_id)
            .join(ArtistModel, ArtistModel.id == AlbumModel.artist_id)
            .where(PlaylistTrackModel.playlist_id == playlist_id)
            .order_by(PlaylistTrackModel.position)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._session.execute(stmt)
        rows = [
            PlaylistTrackRow(
                position=membership.position,
                added_at=membership.added_at,
                track=track,
                album=album,
                artist=artist,
            )
            for membership, track, album, artist in result.all()
        ]
        return rows, total
