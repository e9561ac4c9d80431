"""CoverArtArchive HTTP client.

Hey future me - CoverArtArchive (CAA) hosts artwork keyed by MusicBrainz ids.
We only ever have the release-GROUP id from the match task, and CAA's
release-group endpoint redirects to the "best" release's front image, so that
is the only endpoint we use:

    GET /release-group/{mbid}/front-{250|500|1200}  ->  307 to archive.org  ->  JPEG

GOTCHA: plenty of release groups have no artwork at all. 404 is normal and
becomes EntityNotFoundException so callers can log and move on.
"""

import asyncio
import logging
from typing import Any

import httpx

from beatcollector.domain.entities import CoverArtSize
from beatcollector.domain.exceptions import EntityNotFoundException, ExternalServiceError
from beatcollector.domain.ports import ICoverArtClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "coverartarchive"


class CoverArtArchiveClient(ICoverArtClient):
    """HTTP client for CoverArtArchive front covers."""

    API_BASE_URL = "https://coverartarchive.org"

    # CAA has no published limit; a short pause per image keeps bulk fetches polite.
    REQUEST_DELAY = 0.1

    def __init__(self, user_agent: str) -> None:
        """Initialize client.

        Args:
            user_agent: Same identifying User-Agent we send to MusicBrainz
        """
        self.user_agent = user_agent
        self._client: httpx.AsyncClient | None = None

    # Follow redirects is important - CAA answers 307 pointing at archive.org.
    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={"User-Agent": self.user_agent},
                timeout=30.0,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_front_cover(
        self, release_group_mbid: str, size: CoverArtSize = CoverArtSize.MEDIUM
    ) -> bytes:
        """Download the front cover image of a release group.

        Args:
            release_group_mbid: MusicBrainz release-group id
            size: Thumbnail tier (250/500/1200 px)

        Returns:
            Raw image bytes

        Raises:
            EntityNotFoundException: CAA has no front cover for this release group
            ExternalServiceError: Any other failure
        """
        await asyncio.sleep(self.REQUEST_DELAY)
        client = await self._get_client()
        url = f"/release-group/{release_group_mbid}/front-{size.pixels}"

        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                SERVICE_NAME, "request timed out", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"request failed: {e}", retryable=True
            ) from e

        if response.status_code == 404:
            raise EntityNotFoundException("Cover art", release_group_mbid)
        if response.is_error:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"GET {url} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        logger.debug(
            f"Fetched {len(response.content)} bytes of cover art for {release_group_mbid}"
        )
        return response.content

    async def __aenter__(self) -> "CoverArtArchiveClient":
        """Enter async context."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context and close client."""
        await self.close()
