"""Repository implementations over the ORM models.

Hey future me, every repository gets an AsyncSession injected and NEVER commits.
The caller owns the transaction (Database.session_scope() or a service that opens
its own session from the factory). Repos only stage changes and flush when an id
or constraint check is needed right away.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from beatcollector.domain.entities import (
    DownloadStatus,
    JobStatus,
    JobType,
    MatchStatus,
    OwnershipStatus,
)
from beatcollector.domain.exceptions import (
    EntityNotFoundException,
    InvalidStateException,
)

from .models import (
    AlbumModel,
    ArtistModel,
    JobModel,
    LidarrDownloadModel,
    PlaylistModel,
    PlaylistTrackModel,
    TrackModel,
    UserSettingsModel,
    utc_now,
)

# Stale memberships deleted per statement; stays well under SQLite's
# bound-variable limit (999 on older builds)
_DELETE_CHUNK_SIZE = 500

logger = logging.getLogger(__name__)


class ArtistRepository:
    """Data access for artists."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, artist: ArtistModel) -> ArtistModel:
        """Stage a new artist and flush so its id is usable immediately."""
        self.session.add(artist)
        await self.session.flush()
        return artist

    async def get_by_id(self, artist_id: str) -> ArtistModel | None:
        """Get an artist by internal id."""
        return await self.session.get(ArtistModel, artist_id)

    async def get_by_spotify_id(self, spotify_id: str) -> ArtistModel | None:
        """Get an artist by Spotify id."""
        stmt = select(ArtistModel).where(ArtistModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[ArtistModel]:
        """All artists ordered by name (stable order for fuzzy tie-breaking)."""
        stmt = select(ArtistModel).order_by(ArtistModel.name, ArtistModel.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class AlbumRepository:
    """Data access for albums."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, album: AlbumModel) -> AlbumModel:
        """Stage a new album and flush."""
        self.session.add(album)
        await self.session.flush()
        return album

    async def get_by_id(self, album_id: str) -> AlbumModel | None:
        """Get an album by internal id."""
        return await self.session.get(AlbumModel, album_id)

    async def get_by_id_or_raise(self, album_id: str) -> AlbumModel:
        """Get an album or raise EntityNotFoundException."""
        album = await self.get_by_id(album_id)
        if album is None:
            raise EntityNotFoundException("Album", album_id)
        return album

    async def get_by_spotify_id(self, spotify_id: str) -> AlbumModel | None:
        """Get an album by Spotify id."""
        stmt = select(AlbumModel).where(AlbumModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_artist(self, artist_id: str) -> list[AlbumModel]:
        """Albums of one artist in a stable order."""
        stmt = (
            select(AlbumModel)
            .where(AlbumModel.artist_id == artist_id)
            .order_by(AlbumModel.title, AlbumModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    def set_ownership(
        self,
        album: AlbumModel,
        target: OwnershipStatus,
        *,
        only_from: Iterable[OwnershipStatus] | None = None,
    ) -> bool:
        """Move an album to a new ownership status if the state machine allows it.

        Every ownership write goes through here. An illegal move (a Lidarr Grab
        for an album we already own, say) is logged and skipped, never applied,
        so playlist owned_counts don't drop for albums that are still on disk.

        Args:
            album: Album to update (staged, not flushed)
            target: Desired status
            only_from: Narrow the allowed source states further, e.g. a failed
                download only reverts albums that are actually downloading

        Returns:
            True if the status changed and playlist stats need a recompute
        """
        current = OwnershipStatus.parse(album.ownership_status)
        if current == target:
            return False
        allowed = current.can_transition_to(target)
        if allowed and only_from is not None:
            allowed = current in set(only_from)
        if not allowed:
            logger.info(
                f"Album '{album.title}' stays {current.value}, "
                f"ignoring move to {target.value}"
            )
            return False
        album.ownership_status = target
        return True

    # Hey future me - selectinload is REQUIRED here. Lazy-loading album.artist
    # in async code raises MissingGreenlet, and the match loop reads artist.name.
    async def list_pending_match(self) -> list[AlbumModel]:
        """Albums still waiting for a MusicBrainz match, with their artist loaded."""
        stmt = (
            select(AlbumModel)
            .options(selectinload(AlbumModel.artist))
            .where(AlbumModel.match_status == MatchStatus.PENDING)
            .order_by(AlbumModel.created_at, AlbumModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_missing_local_cover(self) -> list[AlbumModel]:
        """Albums with a release-group id but no locally stored cover image."""
        stmt = (
            select(AlbumModel)
            .where(
                AlbumModel.musicbrainz_release_group_id.is_not(None),
                AlbumModel.cover_art_url.is_(None)
                | AlbumModel.cover_art_url.not_like("/static/covers/%"),
            )
            .order_by(AlbumModel.created_at, AlbumModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class TrackRepository:
    """Data access for tracks."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, track: TrackModel) -> TrackModel:
        """Stage a new track and flush."""
        self.session.add(track)
        await self.session.flush()
        return track

    async def get_by_spotify_id(self, spotify_id: str) -> TrackModel | None:
        """Get a track by Spotify id."""
        stmt = select(TrackModel).where(TrackModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_album(self, album_id: str) -> list[TrackModel]:
        """Tracks of an album in disc/track order."""
        stmt = (
            select(TrackModel)
            .where(TrackModel.album_id == album_id)
            .order_by(TrackModel.disc_number, TrackModel.track_number, TrackModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class PlaylistRepository:
    """Data access for playlists and their memberships."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, playlist: PlaylistModel) -> PlaylistModel:
        """Stage a new playlist and flush."""
        self.session.add(playlist)
        await self.session.flush()
        return playlist

    async def get_by_id(self, playlist_id: str) -> PlaylistModel | None:
        """Get a playlist by internal id."""
        return await self.session.get(PlaylistModel, playlist_id)

    async def get_by_spotify_id(self, spotify_id: str) -> PlaylistModel | None:
        """Get a playlist by Spotify id (or the liked-songs sentinel)."""
        stmt = select(PlaylistModel).where(PlaylistModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[PlaylistModel]:
        """All playlists, synthetic first, then by name."""
        stmt = select(PlaylistModel).order_by(
            PlaylistModel.is_synthetic.desc(), PlaylistModel.name, PlaylistModel.id
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def set_enabled(self, playlist_id: str, enabled: bool) -> PlaylistModel:
        """Enable or disable track sync for a playlist."""
        playlist = await self.get_by_id(playlist_id)
        if playlist is None:
            raise EntityNotFoundException("Playlist", playlist_id)
        playlist.is_enabled = enabled
        return playlist

    async def list_memberships(self, playlist_id: str) -> list[PlaylistTrackModel]:
        """Memberships of a playlist in position order."""
        stmt = (
            select(PlaylistTrackModel)
            .where(PlaylistTrackModel.playlist_id == playlist_id)
            .order_by(PlaylistTrackModel.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_membership(
        self,
        playlist_id: str,
        track_id: str,
        position: int,
        added_at: datetime | None = None,
    ) -> PlaylistTrackModel:
        """Insert a membership or move an existing one to a new position."""
        membership = await self.session.get(PlaylistTrackModel, (playlist_id, track_id))
        if membership is None:
            membership = PlaylistTrackModel(
                playlist_id=playlist_id,
                track_id=track_id,
                position=position,
                added_at=added_at or utc_now(),
            )
            self.session.add(membership)
            await self.session.flush()
        else:
            membership.position = position
        return membership

    async def delete_memberships_except(
        self, playlist_id: str, keep_track_ids: Iterable[str]
    ) -> int:
        """Delete memberships whose track is not in keep_track_ids.

        Returns:
            Number of memberships removed
        """
        # Hey future me - a NOT IN over the kept ids binds one parameter per id,
        # and Liked Songs can hold more ids than SQLite allows bound variables.
        # So we diff in Python and delete the (usually tiny) stale set in chunks.
        keep = set(keep_track_ids)
        stmt = select(PlaylistTrackModel.track_id).where(
            PlaylistTrackModel.playlist_id == playlist_id
        )
        current = (await self.session.execute(stmt)).scalars().all()
        stale = sorted(track_id for track_id in current if track_id not in keep)

        removed = 0
        for start in range(0, len(stale), _DELETE_CHUNK_SIZE):
            chunk = stale[start : start + _DELETE_CHUNK_SIZE]
            result = await self.session.execute(
                delete(PlaylistTrackModel).where(
                    PlaylistTrackModel.playlist_id == playlist_id,
                    PlaylistTrackModel.track_id.in_(chunk),
                )
            )
            removed += result.rowcount or 0  # type: ignore[attr-defined]
        return removed


class JobRepository:
    """Data access for job rows, enforcing the job state machine."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(self, job_type: JobType, entity_id: str | None = None) -> JobModel:
        """Create a Pending job row."""
        job = JobModel(
            job_type=job_type,
            status=JobStatus.PENDING,
            entity_id=entity_id,
            created_at=utc_now(),
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> JobModel | None:
        """Get a job by id."""
        return await self.session.get(JobModel, job_id)

    async def list_recent(self, limit: int = 50) -> list[JobModel]:
        """Most recent jobs first."""
        stmt = select(JobModel).order_by(JobModel.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_latest_by_type(self, job_type: JobType) -> JobModel | None:
        """Most recently created job of a type."""
        stmt = (
            select(JobModel)
            .where(JobModel.job_type == job_type)
            .order_by(JobModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # Hey future me, this is where "never re-enters Running" is enforced. A job row
    # in completed/failed refuses ANY further status change.
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: str | None = None,
        now: datetime | None = None,
    ) -> JobModel:
        """Move a job to a new status and stamp the matching timestamp.

        Raises:
            EntityNotFoundException: Job row does not exist
            InvalidStateException: Transition not allowed from current status
        """
        job = await self.get_by_id(job_id)
        if job is None:
            raise EntityNotFoundException("Job", job_id)

        current = JobStatus.parse(job.status)
        if not current.can_transition_to(status):
            raise InvalidStateException(
                f"Job {job_id} cannot move from {current.value} to {status.value}"
            )

        timestamp = now or utc_now()
        job.status = status
        if status == JobStatus.RUNNING:
            job.started_at = timestamp
        if status.is_terminal:
            job.completed_at = timestamp
        if status == JobStatus.COMPLETED:
            job.progress = 100
        if error_message is not None:
            job.error_message = error_message
        return job

    async def update_progress(
        self, job_id: str, processed: int, total: int | None
    ) -> JobModel:
        """Store progress counters; percentage is derived when total is known."""
        job = await self.get_by_id(job_id)
        if job is None:
            raise EntityNotFoundException("Job", job_id)
        job.processed_items = processed
        job.total_items = total
        if total:
            job.progress = min(100, int(processed * 100 / total))
        return job


class LidarrDownloadRepository:
    """Data access for Lidarr download-tracking rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def add(
        self,
        album_id: str,
        status: DownloadStatus,
        lidarr_album_id: int | None = None,
        download_id: str | None = None,
        quality_profile: str | None = None,
    ) -> LidarrDownloadModel:
        """Create a tracking row."""
        now = utc_now()
        download = LidarrDownloadModel(
            album_id=album_id,
            status=status,
            lidarr_album_id=lidarr_album_id,
            download_id=download_id,
            quality_profile=quality_profile,
            created_at=now,
            updated_at=now,
        )
        self.session.add(download)
        await self.session.flush()
        return download

    async def get_latest_for_album(self, album_id: str) -> LidarrDownloadModel | None:
        """Newest tracking row for an album."""
        stmt = (
            select(LidarrDownloadModel)
            .where(LidarrDownloadModel.album_id == album_id)
            .order_by(LidarrDownloadModel.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_album(self, album_id: str) -> list[LidarrDownloadModel]:
        """All tracking rows for an album, newest first."""
        stmt = (
            select(LidarrDownloadModel)
            .where(LidarrDownloadModel.album_id == album_id)
            .order_by(LidarrDownloadModel.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class UserSettingsRepository:
    """Access to the single user_settings row."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def get(self) -> UserSettingsModel | None:
        """Get the settings row if it exists."""
        stmt = select(UserSettingsModel).order_by(UserSettingsModel.created_at).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self) -> UserSettingsModel:
        """Get the settings row, creating an empty one on first use."""
        settings = await self.get()
        if settings is None:
            settings = UserSettingsModel()
            self.session.add(settings)
            await self.session.flush()
        return settings


__all__ = [
    "AlbumRepository",
    "ArtistRepository",
    "JobRepository",
    "LidarrDownloadRepository",
    "PlaylistRepository",
    "TrackRepository",
    "UserSettingsRepository",
]
