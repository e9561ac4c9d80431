"""SQLAlchemy ORM models for BeatCollector."""

import uuid
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from beatcollector.domain.entities import (
    AcquisitionSource,
    AlbumSource,
    DownloadStatus,
    JobStatus,
    JobType,
    MatchStatus,
    OwnershipStatus,
    TextEnum,
)


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Datetimes come back naive.
# Use this before comparing DB values with datetime.now(UTC).
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def new_id() -> str:
    """Generate a new UUID string primary key."""
    return str(uuid.uuid4())


class EnumText(TypeDecorator[TextEnum]):
    """Stores a TextEnum as its string value and decodes strictly on read.

    Hey future me, this is THE string codec at the persistence boundary. Writing a
    string that isn't a member raises, reading a stored string that isn't a member
    raises (InvalidEnumValueError). No silent defaults - drift must be loud.
    """

    impl = String(32)
    cache_ok = True

    def __init__(self, enum_cls: type[TextEnum], *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.enum_cls = enum_cls

    def process_bind_param(self, value: Any, dialect: Dialect) -> str | None:
        if value is None:
            return None
        return self.enum_cls.parse(value).value

    def process_result_value(self, value: Any, dialect: Dialect) -> TextEnum | None:
        if value is None:
            return None
        return self.enum_cls.parse(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ArtistModel(Base):
    """Artist. Created on first reference by any sync, never deleted by sync."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    spotify_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    musicbrainz_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    albums: Mapped[list["AlbumModel"]] = relationship(
        back_populates="artist", cascade="all, delete-orphan"
    )


# Listen up, AlbumModel carries the two state machines we care about:
# ownership_status (not_owned -> downloading -> owned, back to not_owned on
# failure) and match_status (pending -> matched|manual_review|no_match, never
# back to pending). acquisition_source NULL means "none" - not the same as UNKNOWN.
class AlbumModel(Base):
    """Album with ownership, acquisition and MusicBrainz match state."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    spotify_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    musicbrainz_release_group_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True, index=True
    )
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_tracks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_art_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    ownership_status: Mapped[OwnershipStatus] = mapped_column(
        EnumText(OwnershipStatus),
        default=OwnershipStatus.NOT_OWNED,
        nullable=False,
        index=True,
    )
    acquisition_source: Mapped[AcquisitionSource | None] = mapped_column(
        EnumText(AcquisitionSource), nullable=True
    )
    local_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_status: Mapped[MatchStatus] = mapped_column(
        EnumText(MatchStatus), default=MatchStatus.PENDING, nullable=False, index=True
    )
    match_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    album_source: Mapped[AlbumSource] = mapped_column(
        EnumText(AlbumSource), default=AlbumSource.SAVED_ALBUM, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    artist: Mapped[ArtistModel] = relationship(back_populates="albums")
    tracks: Mapped[list["TrackModel"]] = relationship(
        back_populates="album", cascade="all, delete-orphan"
    )


class TrackModel(Base):
    """Track belonging to an album."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    album_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("albums.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    track_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disc_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    spotify_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    album: Mapped[AlbumModel] = relationship(back_populates="tracks")


# Hey future me - owned_count is NULLABLE on purpose! NULL means "never computed,
# ask batch_stats for a live count", 0 means "computed, nothing owned". Never
# default it to 0 or the list view can't tell the two apart.
class PlaylistModel(Base):
    """Spotify playlist, or the synthetic liked-songs playlist."""

    __tablename__ = "playlists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    spotify_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_collaborative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    total_tracks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cover_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    snapshot_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_synthetic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    owned_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    memberships: Mapped[list["PlaylistTrackModel"]] = relationship(
        back_populates="playlist", cascade="all, delete-orphan"
    )


class PlaylistTrackModel(Base):
    """Playlist membership. Unique per (playlist, track)."""

    __tablename__ = "playlist_tracks"

    playlist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("playlists.id", ondelete="CASCADE"), primary_key=True
    )
    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    playlist: Mapped[PlaylistModel] = relationship(back_populates="memberships")
    track: Mapped[TrackModel] = relationship()


class JobModel(Base):
    """Background job row. The queue only carries its id."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_type: Mapped[JobType] = mapped_column(EnumText(JobType), nullable=False, index=True)
    status: Mapped[JobStatus] = mapped_column(
        EnumText(JobStatus), default=JobStatus.PENDING, nullable=False, index=True
    )
    entity_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_items: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )


class LidarrDownloadModel(Base):
    """Tracks one Lidarr search/download attempt for an album."""

    __tablename__ = "lidarr_downloads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    album_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("albums.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lidarr_album_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    download_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[DownloadStatus] = mapped_column(
        EnumText(DownloadStatus), default=DownloadStatus.PENDING, nullable=False
    )
    quality_profile: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class UserSettingsModel(Base):
    """Single-row user settings: Spotify tokens, Lidarr, music folder, schedule."""

    __tablename__ = "user_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    spotify_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    spotify_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    spotify_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    lidarr_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lidarr_api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    music_folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_sync_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sync_interval_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )
