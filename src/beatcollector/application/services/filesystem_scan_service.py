"""Filesystem scan: mark catalog albums found on disk as owned.

Hey future me - this expects the Lidarr/Plex style layout:

    <music root>/<Artist>/<Album>/<audio files>

Only direct children count (no deeper nesting, no disc subfolders), hidden
folders are ignored, and a folder needs at least 3 audio files to count as an
album - that filters out "Artist/Singles" folders with one stray mp3.

Folder names are matched to the catalog by name: artist folder against ALL
artists (exact, then similarity > 0.80), album folder against that artist's
albums the same way. This is an O(folders * catalog) scan - fine for a personal
library, see DESIGN.md for the blocking-index idea if it ever isn't.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.domain.entities import AcquisitionSource, OwnershipStatus
from beatcollector.domain.exceptions import ConfigurationError
from beatcollector.domain.ports import ProgressCallback
from beatcollector.domain.value_objects.string_similarity import (
    ALBUM_MATCH_THRESHOLD,
    ARTIST_MATCH_THRESHOLD,
    best_match,
)
from beatcollector.infrastructure.persistence.repositories import (
    AlbumRepository,
    ArtistRepository,
)

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset({".mp3", ".flac", ".m4a", ".ogg", ".opus", ".wav", ".aac"})
MIN_AUDIO_FILES = 3


@dataclass(frozen=True)
class AlbumFolder:
    """An <Artist>/<Album> folder that looks like an album."""

    artist_name: str
    album_name: str
    path: Path
    audio_files: int


@dataclass
class FilesystemScanResult:
    """Summary of one scan."""

    folders_found: int = 0
    albums_matched: int = 0
    albums_newly_owned: int = 0
    unmatched: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "folders_found": self.folders_found,
            "albums_matched": self.albums_matched,
            "albums_newly_owned": self.albums_newly_owned,
            "unmatched": list(self.unmatched),
        }


def count_audio_files(directory: Path) -> int:
    """Count audio files directly inside directory (case-insensitive extension)."""
    return sum(
        1
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix.lower() in AUDIO_EXTENSIONS
    )


def discover_album_folders(root: Path) -> list[AlbumFolder]:
    """Walk root for <Artist>/<Album> folders with enough audio files.

    Blocking - call through asyncio.to_thread().
    """
    folders: list[AlbumFolder] = []
    for artist_dir in sorted(root.iterdir()):
        if not artist_dir.is_dir() or artist_dir.name.startswith("."):
            continue
        try:
            album_dirs = sorted(artist_dir.iterdir())
        except PermissionError as e:
            logger.warning(f"Cannot read artist folder {artist_dir}: {e}")
            continue

        for album_dir in album_dirs:
            if not album_dir.is_dir() or album_dir.name.startswith("."):
                continue
            try:
                audio_count = count_audio_files(album_dir)
            except PermissionError as e:
                logger.warning(f"Cannot read album folder {album_dir}: {e}")
                continue
            if audio_count >= MIN_AUDIO_FILES:
                folders.append(
                    AlbumFolder(
                        artist_name=artist_dir.name,
                        album_name=album_dir.name,
                        path=album_dir,
                        audio_files=audio_count,
                    )
                )
    return folders


class FilesystemScanService:
    """Reconciles album ownership with the local music folder."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def scan(
        self, root: Path, progress: ProgressCallback | None = None
    ) -> FilesystemScanResult:
        """Scan root and mark every matched catalog album as owned.

        Raises:
            ConfigurationError: root is missing or not a directory
        """
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(f"Music path does not exist or is not a directory: {root}")

        logger.info(f"Starting filesystem scan: {root}")
        folders = await asyncio.to_thread(discover_album_folders, root)
        result = FilesystemScanResult(folders_found=len(folders))
        logger.info(f"Found {len(folders)} potential albums in filesystem")

        async with self._session_factory() as session:
            artists = await ArtistRepository(session).list_all()
            album_repo = AlbumRepository(session)
            stats = PlaylistStatsService(session)

            for folder in folders:
                artist_hit = best_match(
                    folder.artist_name,
                    artists,
                    key=lambda a: a.name,
                    threshold=ARTIST_MATCH_THRESHOLD,
                )
                album = None
                if artist_hit is not None:
                    candidates = await album_repo.list_by_artist(artist_hit[0].id)
                    album_hit = best_match(
                        folder.album_name,
                        candidates,
                        key=lambda a: a.title,
                        threshold=ALBUM_MATCH_THRESHOLD,
                    )
                    album = album_hit[0] if album_hit else None

                if album is None:
                    logger.debug(
                        f"No catalog match for folder '{folder.artist_name}/{folder.album_name}'"
                    )
                    result.unmatched.append(f"{folder.artist_name}/{folder.album_name}")
                else:
                    result.albums_matched += 1
                    album.local_path = str(folder.path)
                    if album.acquisition_source is None:
                        album.acquisition_source = AcquisitionSource.UNKNOWN
                    if album_repo.set_ownership(album, OwnershipStatus.OWNED):
                        await stats.recompute_for_album(album.id)
                        result.albums_newly_owned += 1
                        logger.info(
                            f"Album '{album.title}' found on disk, marked as owned"
                        )

            await session.commit()

        # reported after commit: the progress write uses its own session and
        # would wait on our SQLite write lock
        if progress:
            await progress(len(folders), len(folders))

        logger.info(
            f"Filesystem scan completed: {result.albums_matched} matched, "
            f"{result.albums_newly_owned} newly owned, {len(result.unmatched)} unmatched"
        )
        return result
