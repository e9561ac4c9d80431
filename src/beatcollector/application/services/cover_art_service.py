"""Cover art download and local storage.

Hey future me - covers are stored as {album_id}.jpg under covers_dir and served
by whatever mounts that folder at /static/covers. albums.cover_art_url is set to
the /static/covers/... path once the file exists locally; before that it may hold
Spotify's remote image URL, which is why "missing local cover" means "doesn't
start with /static/covers/", not "is NULL".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.domain.entities import CoverArtSize
from beatcollector.domain.exceptions import DomainException, EntityNotFoundException
from beatcollector.domain.ports import ICoverArtClient, ProgressCallback
from beatcollector.infrastructure.persistence.models import AlbumModel
from beatcollector.infrastructure.persistence.repositories import AlbumRepository

logger = logging.getLogger(__name__)

COVERS_URL_PREFIX = "/static/covers/"


@dataclass
class CoverFetchResult:
    """Summary of a bulk cover fetch."""

    processed: int = 0
    downloaded: int = 0
    not_found: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "downloaded": self.downloaded,
            "not_found": self.not_found,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class CoverArtService:
    """Downloads front covers from the Cover Art Archive into covers_dir."""

    def __init__(
        self,
        cover_client: ICoverArtClient,
        covers_dir: Path,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        """Initialize cover art service.

        Args:
            cover_client: Cover Art Archive client
            covers_dir: Directory the image files are written to
            session_factory: Needed only for fetch_missing_covers()
        """
        self._client = cover_client
        self._covers_dir = Path(covers_dir)
        self._session_factory = session_factory

    @staticmethod
    def local_url(album_id: str) -> str:
        """Public URL of a stored cover."""
        return f"{COVERS_URL_PREFIX}{album_id}.jpg"

    @staticmethod
    def has_local_cover(album: AlbumModel) -> bool:
        return bool(album.cover_art_url and album.cover_art_url.startswith(COVERS_URL_PREFIX))

    def _write_file(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def download_cover(
        self,
        album_id: str,
        release_group_id: str,
        size: CoverArtSize = CoverArtSize.MEDIUM,
    ) -> str:
        """Download and store one cover.

        Returns:
            The /static/covers/{album_id}.jpg URL

        Raises:
            EntityNotFoundException: No front cover exists for the release group
            ExternalServiceError: Download failed
        """
        content = await self._client.fetch_front_cover(release_group_id, size)
        path = self._covers_dir / f"{album_id}.jpg"
        # file I/O off the event loop
        await asyncio.to_thread(self._write_file, path, content)
        logger.debug(f"Stored cover for album {album_id} at {path}")
        return self.local_url(album_id)

    async def fetch_missing_covers(
        self,
        album_id: str | None = None,
        progress: ProgressCallback | None = None,
    ) -> CoverFetchResult:
        """Fetch covers for every matched album without a local cover.

        Args:
            album_id: Restrict the run to this album (the job's entity_id)
            progress: Optional progress callback

        Per-album failures are logged and counted; the loop continues.
        """
        if self._session_factory is None:
            raise DomainException("CoverArtService needs a session factory for bulk fetches")

        async with self._session_factory() as session:
            repo = AlbumRepository(session)
            if album_id is not None:
                albums = [await repo.get_by_id_or_raise(album_id)]
            else:
                albums = await repo.list_missing_local_cover()
            targets = [
                (album.id, album.title, album.musicbrainz_release_group_id)
                for album in albums
            ]

        result = CoverFetchResult()
        total = len(targets)
        for index, (target_id, title, release_group_id) in enumerate(targets, start=1):
            result.processed += 1
            try:
                if not release_group_id:
                    raise DomainException(f"Album {target_id} has no MusicBrainz release group id")
                url = await self.download_cover(target_id, release_group_id)
                async with self._session_factory() as session:
                    album = await AlbumRepository(session).get_by_id_or_raise(target_id)
                    album.cover_art_url = url
                    await session.commit()
                result.downloaded += 1
            except EntityNotFoundException:
                logger.info(f"No cover art available for album '{title}'")
                result.not_found += 1
            except Exception as e:
                logger.warning(f"Cover fetch failed for album '{title}': {e}")
                result.failed += 1
                result.errors.append(f"{title}: {e}")
            if progress:
                await progress(index, total)

        logger.info(
            f"Cover fetch finished: {result.downloaded} downloaded, "
            f"{result.not_found} not found, {result.failed} failed"
        )
        return result
