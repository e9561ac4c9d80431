"""MusicBrainz matching for pending albums (JobType.MUSICBRAINZ_MATCH).

Hey future me - this is SLOW on purpose. MusicBrainz allows 1 req/sec and a
single album can cost two requests (exact + fuzzy query), so 500 pending albums
take 10-15 minutes. Albums are processed strictly one after another; the rate
limiter inside the client does the pacing.

Classification of the best candidate's score:
    >= 90  -> MATCHED        (trusted, release group id stored)
    80-89  -> MANUAL_REVIEW  (release group id stored, a human should confirm)
    else   -> NO_MATCH
Albums are never written back to PENDING, so each album is tried exactly once.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.application.services.cover_art_service import CoverArtService
from beatcollector.domain.entities import MatchStatus
from beatcollector.domain.ports import IMusicBrainzClient, ProgressCallback
from beatcollector.infrastructure.persistence.repositories import AlbumRepository

logger = logging.getLogger(__name__)


@dataclass
class MatchRunResult:
    """Summary of one match run."""

    processed: int = 0
    matched: int = 0
    manual_review: int = 0
    no_match: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "matched": self.matched,
            "manual_review": self.manual_review,
            "no_match": self.no_match,
            "errors": self.errors,
            "error_messages": list(self.error_messages),
        }


class MetadataMatchService:
    """Matches pending albums against MusicBrainz release groups."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        musicbrainz_client: IMusicBrainzClient,
        cover_art_service: CoverArtService | None = None,
    ) -> None:
        """Initialize match service.

        Args:
            session_factory: Factory for the run's session
            musicbrainz_client: Rate-limited MusicBrainz client
            cover_art_service: Optional, fetches covers for matched albums
        """
        self._session_factory = session_factory
        self._musicbrainz = musicbrainz_client
        self._cover_art = cover_art_service

    # Hey future me - the pending list is read ONCE into plain tuples and each album
    # is then written in its own short session. Holding one session across the whole
    # run would keep SQLite's write lock during every 1s MusicBrainz wait, and a
    # rollback would expire every loaded album (lazy reload in async = MissingGreenlet).
    async def match_pending_albums(
        self, progress: ProgressCallback | None = None
    ) -> MatchRunResult:
        """Match every album whose match_status is PENDING.

        Each album commits on its own, so a crash halfway keeps the work done so far.
        """
        result = MatchRunResult()

        async with self._session_factory() as session:
            albums = await AlbumRepository(session).list_pending_match()
            pending = [
                (album.id, album.artist.name, album.title)
                for album in albums
                if album.artist is not None
            ]

        total = len(pending)
        logger.info(f"Matching {total} pending albums against MusicBrainz")

        for index, (album_id, artist_name, title) in enumerate(pending, start=1):
            result.processed += 1
            try:
                status = await self.match_album(album_id, artist_name, title)
            except Exception as e:
                logger.warning(f"MusicBrainz match failed for '{artist_name} - {title}': {e}")
                result.errors += 1
                result.error_messages.append(f"{title}: {e}")
            else:
                if status == MatchStatus.MATCHED:
                    result.matched += 1
                elif status == MatchStatus.MANUAL_REVIEW:
                    result.manual_review += 1
                else:
                    result.no_match += 1
                if status != MatchStatus.NO_MATCH:
                    await self._fetch_cover(album_id, title)

            if progress:
                await progress(index, total)

        logger.info(
            f"MusicBrainz matching finished: {result.matched} matched, "
            f"{result.manual_review} for review, {result.no_match} no match, "
            f"{result.errors} errors"
        )
        return result

    async def match_album(self, album_id: str, artist_name: str, title: str) -> MatchStatus:
        """Search MusicBrainz for one album, classify and persist the result."""
        candidates = await self._musicbrainz.search_release_group(artist_name, title)
        best = candidates[0] if candidates else None
        status = MatchStatus.from_score(best.score if best else None)

        async with self._session_factory() as session:
            album = await AlbumRepository(session).get_by_id_or_raise(album_id)
            album.match_status = status
            if best is not None:
                album.match_score = float(best.score)
            if best is not None and status != MatchStatus.NO_MATCH:
                album.musicbrainz_release_group_id = best.id
            await session.commit()

        logger.debug(
            f"'{artist_name} - {title}' -> {status.value}"
            + (f" (score {best.score})" if best else "")
        )
        return status

    async def _fetch_cover(self, album_id: str, title: str) -> None:
        """Best-effort cover download. The match is already committed."""
        if self._cover_art is None:
            return
        try:
            async with self._session_factory() as session:
                album = await AlbumRepository(session).get_by_id_or_raise(album_id)
                if CoverArtService.has_local_cover(album) or not album.musicbrainz_release_group_id:
                    return
                release_group_id = album.musicbrainz_release_group_id

            # download outside any session, then store the URL in a fresh one
            url = await self._cover_art.download_cover(album_id, release_group_id)
            async with self._session_factory() as session:
                album = await AlbumRepository(session).get_by_id_or_raise(album_id)
                album.cover_art_url = url
                await session.commit()
        except Exception as e:
            logger.warning(f"Cover art fetch failed for '{title}': {e}")
