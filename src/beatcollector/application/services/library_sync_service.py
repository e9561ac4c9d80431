# Hey future me - this is the LibrarySync job (JobType.SPOTIFY_SYNC)!
# It pulls the user's Spotify library into our catalog:
#
# 1. Saved Albums  -> artists + albums (album_source=saved_album)
# 2. Liked Songs   -> synthetic playlist "__LIKED_SONGS__" (content hash as snapshot)
# 3. Playlists     -> playlists table (metadata always refreshed)
# 4. Playlist tracks (only enabled playlists whose snapshot changed)
#                  -> artists + albums (playlist_import) + tracks + playlist_tracks
#
# Upserts are find-by-spotify-id-then-insert. Existing artist/album/track rows are
# returned UNCHANGED (ids preserved, no field updates) - only playlist metadata is
# refreshed. Running the sync twice on the same Spotify state must not add rows.
#
# GOTCHA: find-then-insert is NOT safe against two concurrent LibrarySync jobs for
# the same account. Nothing locks it; the unique spotify_id constraints turn the
# race into an IntegrityError on one of the jobs.
"""Service for synchronizing the Spotify library into the catalog."""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.domain.entities import (
    LIKED_SONGS_NAME,
    LIKED_SONGS_SPOTIFY_ID,
    AlbumSource,
    MatchStatus,
    OwnershipStatus,
)
from beatcollector.domain.ports import ISpotifyClient, ITokenProvider, ProgressCallback
from beatcollector.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    PlaylistModel,
    TrackModel,
    utc_now,
)
from beatcollector.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
    PlaylistRepository,
    TrackRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class LibrarySyncResult:
    """Summary of one library sync run."""

    albums_seen: int = 0
    albums_created: int = 0
    playlists_seen: int = 0
    playlists_synced: int = 0
    playlists_skipped: int = 0
    tracks_synced: int = 0
    liked_songs_synced: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for job results and logs."""
        return {
            "albums_seen": self.albums_seen,
            "albums_created": self.albums_created,
            "playlists_seen": self.playlists_seen,
            "playlists_synced": self.playlists_synced,
            "playlists_skipped": self.playlists_skipped,
            "tracks_synced": self.tracks_synced,
            "liked_songs_synced": self.liked_songs_synced,
            "errors": list(self.errors),
        }


def parse_release_date(value: str | None) -> date | None:
    """Parse Spotify's release_date at any precision.

    Spotify sends "1969", "1969-09" or "1969-09-26" depending on
    release_date_precision. Missing parts default to the first month/day.
    Anything unparseable is None rather than an error.
    """
    if not value:
        return None
    parts = value.strip().split("-")
    try:
        if len(parts) == 1:
            return date(int(parts[0]), 1, 1)
        if len(parts) == 2:
            return date(int(parts[0]), int(parts[1]), 1)
        if len(parts) == 3:
            return date(int(parts[0]), int(parts[1]), int(parts[2]))
    except ValueError:
        return None
    return None


def parse_added_at(value: str | None) -> datetime | None:
    """Parse Spotify's ISO-8601 added_at ("2024-01-02T03:04:05Z")."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def compute_tracks_hash(items: list[dict[str, Any]]) -> str:
    """Content hash standing in for a snapshot_id on Liked Songs.

    sha256 hex over the sorted track ids, each followed by "|". Order-insensitive,
    so re-liking in a different order doesn't force a resync.
    """
    track_ids = sorted(
        track["id"]
        for item in items
        if (track := item.get("track")) and track.get("id")
    )
    digest = hashlib.sha256()
    for track_id in track_ids:
        digest.update(track_id.encode("utf-8"))
        digest.update(b"|")
    return digest.hexdigest()


def _first_image_url(images: list[dict[str, Any]] | None) -> str | None:
    if not images:
        return None
    url = images[0].get("url")
    return str(url) if url else None


class LibrarySyncService:
    """Synchronizes saved albums, liked songs and playlists from Spotify."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        spotify_client: ISpotifyClient,
        token_provider: ITokenProvider,
    ) -> None:
        """Initialize sync service.

        Args:
            session_factory: Factory for per-step sessions
            spotify_client: Rate-limited Spotify client
            token_provider: Source of a valid access token
        """
        self._session_factory = session_factory
        self._client = spotify_client
        self._token_provider = token_provider

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    async def sync_library(
        self, progress: ProgressCallback | None = None
    ) -> LibrarySyncResult:
        """Run a full library sync.

        Token errors and failures fetching the saved-album or playlist lists abort
        the whole run (they propagate). Failures for a single playlist or for Liked
        Songs are logged, recorded in result.errors and the run continues.
        """
        result = LibrarySyncResult()
        access_token = await self._token_provider.get_valid_access_token()

        saved_albums = await self._client.get_saved_albums(access_token)
        await self._sync_saved_albums(saved_albums, result)

        try:
            await self._sync_liked_songs(access_token, result)
        except Exception as e:
            logger.exception("Liked Songs sync failed")
            result.errors.append(f"{LIKED_SONGS_NAME}: {e}")

        playlists = await self._client.get_user_playlists(access_token)
        result.playlists_seen = len(playlists)
        total_steps = len(playlists)
        if progress:
            await progress(0, total_steps)

        for index, playlist_data in enumerate(playlists, start=1):
            name = playlist_data.get("name") or playlist_data.get("id") or "?"
            try:
                await self._sync_playlist(access_token, playlist_data, result)
            except Exception as e:
                logger.exception(f"Playlist sync failed for '{name}'")
                result.errors.append(f"{name}: {e}")
            if progress:
                await progress(index, total_steps)

        logger.info(
            f"Library sync finished: {result.albums_created} new albums, "
            f"{result.playlists_synced} playlists synced, "
            f"{result.playlists_skipped} skipped, {len(result.errors)} errors"
        )
        return result

    # =========================================================================
    # SAVED ALBUMS
    # =========================================================================

    async def _sync_saved_albums(
        self, items: list[dict[str, Any]], result: LibrarySyncResult
    ) -> None:
        async with self._session_factory() as session:
            for item in items:
                album_data = item.get("album")
                if not album_data or not album_data.get("id"):
                    continue
                artists = album_data.get("artists") or []
                if not artists:
                    logger.warning(f"Saved album {album_data['id']} has no artist, skipping")
                    continue

                artist = await self._upsert_artist(session, artists[0])
                _, created = await self._upsert_album(
                    session, album_data, artist, AlbumSource.SAVED_ALBUM
                )
                result.albums_seen += 1
                if created:
                    result.albums_created += 1
            await session.commit()

        logger.info(
            f"Synced {result.albums_seen} saved albums ({result.albums_created} new)"
        )

    # =========================================================================
    # LIKED SONGS
    # =========================================================================

    async def _sync_liked_songs(
        self, access_token: str, result: LibrarySyncResult
    ) -> None:
        total = await self._client.get_saved_tracks_total(access_token)

        async with self._session_factory() as session:
            playlist = await self._upsert_liked_songs_playlist(session, total)
            await session.commit()

        if not playlist.is_enabled:
            logger.debug("Liked Songs is disabled, skipping track sync")
            return

        items = await self._client.get_saved_tracks(access_token)
        new_snapshot = compute_tracks_hash(items)
        if playlist.snapshot_id == new_snapshot and playlist.last_synced_at is not None:
            logger.debug("Liked Songs unchanged (hash match), skipping track sync")
            return

        synced = await self._apply_playlist_tracks(playlist.id, items, new_snapshot)
        result.tracks_synced += synced
        result.liked_songs_synced = True
        logger.info(f"Liked Songs synced ({synced} tracks)")

    async def _upsert_liked_songs_playlist(
        self, session: AsyncSession, total: int
    ) -> PlaylistModel:
        repo = PlaylistRepository(session)
        playlist = await repo.get_by_spotify_id(LIKED_SONGS_SPOTIFY_ID)
        if playlist is None:
            playlist = await repo.add(
                PlaylistModel(
                    spotify_id=LIKED_SONGS_SPOTIFY_ID,
                    name=LIKED_SONGS_NAME,
                    total_tracks=total,
                    is_enabled=False,
                    is_synthetic=True,
                )
            )
            logger.info("Created synthetic Liked Songs playlist")
        else:
            playlist.total_tracks = total
        return playlist

    # =========================================================================
    # PLAYLISTS
    # =========================================================================

    # Hey future me - the snapshot check saves a LOT of requests: a 2000-track
    # playlist is 20 pages at 2 req/s. last_synced_at must also be set, otherwise
    # a playlist whose first track sync crashed would be skipped forever.
    async def _sync_playlist(
        self,
        access_token: str,
        playlist_data: dict[str, Any],
        result: LibrarySyncResult,
    ) -> None:
        async with self._session_factory() as session:
            playlist = await self._upsert_playlist(session, playlist_data)
            await session.commit()

        if not playlist.is_enabled:
            result.playlists_skipped += 1
            return

        snapshot_id = playlist_data.get("snapshot_id")
        if playlist.snapshot_id == snapshot_id and playlist.last_synced_at is not None:
            logger.debug(f"Playlist '{playlist.name}' unchanged, skipping track sync")
            result.playlists_skipped += 1
            return

        items = await self._client.get_playlist_tracks(playlist_data["id"], access_token)
        synced = await self._apply_playlist_tracks(playlist.id, items, snapshot_id)
        result.playlists_synced += 1
        result.tracks_synced += synced
        logger.info(f"Playlist '{playlist.name}' synced ({synced} tracks)")

    async def _upsert_playlist(
        self, session: AsyncSession, data: dict[str, Any]
    ) -> PlaylistModel:
        """Insert a playlist or refresh its metadata. Never touches snapshot/enabled."""
        repo = PlaylistRepository(session)
        playlist = await repo.get_by_spotify_id(data["id"])
        owner = data.get("owner") or {}
        tracks_info = data.get("tracks") or {}

        if playlist is None:
            playlist = PlaylistModel(
                spotify_id=data["id"],
                is_enabled=False,
                is_synthetic=False,
            )
            session.add(playlist)

        playlist.name = data.get("name") or ""
        playlist.description = data.get("description") or None
        playlist.owner_name = owner.get("display_name") or owner.get("id")
        playlist.is_collaborative = bool(data.get("collaborative"))
        playlist.total_tracks = int(tracks_info.get("total") or 0)
        playlist.cover_image_url = _first_image_url(data.get("images"))
        await session.flush()
        return playlist

    async def _apply_playlist_tracks(
        self,
        playlist_id: str,
        items: list[dict[str, Any]],
        snapshot: str | None,
    ) -> int:
        """Reconcile a playlist's memberships with the fetched items.

        Runs in its own transaction: memberships, snapshot, last_synced_at and the
        owned_count recompute commit together.

        Returns:
            Number of tracks now in the playlist
        """
        async with self._session_factory() as session:
            playlist_repo = PlaylistRepository(session)
            keep_track_ids: list[str] = []

            for position, item in enumerate(items):
                track_data = item.get("track")
                # removed/unavailable tracks come back as null, local files have no id
                if not track_data or not track_data.get("id"):
                    continue
                album_data = track_data.get("album") or {}
                artists = track_data.get("artists") or album_data.get("artists") or []
                if not artists or not album_data:
                    logger.warning(
                        f"Track {track_data['id']} has no artist/album data, skipping"
                    )
                    continue

                artist = await self._upsert_artist(session, artists[0])
                album, _ = await self._upsert_album(
                    session, album_data, artist, AlbumSource.PLAYLIST_IMPORT
                )
                track = await self._upsert_track(session, track_data, album)
                await playlist_repo.upsert_membership(
                    playlist_id,
                    track.id,
                    position,
                    added_at=parse_added_at(item.get("added_at")),
                )
                keep_track_ids.append(track.id)

            removed = await playlist_repo.delete_memberships_except(
                playlist_id, keep_track_ids
            )
            if removed:
                logger.debug(f"Removed {removed} stale tracks from playlist {playlist_id}")

            playlist = await playlist_repo.get_by_id(playlist_id)
            if playlist is not None:
                playlist.snapshot_id = snapshot
                playlist.last_synced_at = utc_now()
            await PlaylistStatsService(session).recompute_one(playlist_id)
            await session.commit()

        return len(set(keep_track_ids))

    # =========================================================================
    # UPSERT HELPERS
    # =========================================================================

    async def _upsert_artist(
        self, session: AsyncSession, data: dict[str, Any]
    ) -> ArtistModel:
        repo = ArtistRepository(session)
        spotify_id = data.get("id")
        if spotify_id:
            existing = await repo.get_by_spotify_id(spotify_id)
            if existing is not None:
                return existing
        return await repo.add(
            ArtistModel(name=data.get("name") or "Unknown Artist", spotify_id=spotify_id)
        )

    async def _upsert_album(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        artist: ArtistModel,
        source: AlbumSource,
    ) -> tuple[AlbumModel, bool]:
        """Return (album, created). Existing albums keep their original album_source."""
        repo = AlbumRepository(session)
        spotify_id = data.get("id")
        if spotify_id:
            existing = await repo.get_by_spotify_id(spotify_id)
            if existing is not None:
                return existing, False

        album = await repo.add(
            AlbumModel(
                artist_id=artist.id,
                title=data.get("name") or "Unknown Album",
                spotify_id=spotify_id,
                release_date=parse_release_date(data.get("release_date")),
                total_tracks=data.get("total_tracks"),
                cover_art_url=_first_image_url(data.get("images")),
                genres=list(data.get("genres") or []),
                ownership_status=OwnershipStatus.NOT_OWNED,
                match_status=MatchStatus.PENDING,
                album_source=source,
            )
        )
        return album, True

    async def _upsert_track(
        self, session: AsyncSession, data: dict[str, Any], album: AlbumModel
    ) -> TrackModel:
        repo = TrackRepository(session)
        existing = await repo.get_by_spotify_id(data["id"])
        if existing is not None:
            return existing
        return await repo.add(
            TrackModel(
                album_id=album.id,
                title=data.get("name") or "Unknown Track",
                track_number=data.get("track_number"),
                disc_number=data.get("disc_number"),
                duration_ms=data.get("duration_ms"),
                spotify_id=data["id"],
            )
        )
