"""MusicBrainz HTTP client for release-group search."""

import logging
from typing import Any

import httpx

from beatcollector.config.settings import MusicBrainzSettings
from beatcollector.domain.exceptions import ExternalServiceError, RateLimitExceededError
from beatcollector.domain.ports import IMusicBrainzClient, ReleaseGroupCandidate
from beatcollector.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SERVICE_NAME = "musicbrainz"

# Candidates below this score are noise - MusicBrainz happily returns 40-score
# hits for anything.
MIN_CANDIDATE_SCORE = 80
SEARCH_LIMIT = 10


def normalize_artist(artist: str) -> str:
    """Drop featured-artist suffixes ("X feat. Y", "X ft. Y") before searching."""
    normalized = artist
    for marker in (" feat.", " ft."):
        position = normalized.find(marker)
        if position != -1:
            normalized = normalized[:position]
    return normalized.strip()


def _escape_phrase(value: str) -> str:
    """Escape a value for use inside a quoted Lucene phrase."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_exact_query(artist: str, album: str) -> str:
    """Lucene query matching artist and release-group title as phrases."""
    return (
        f'artist:"{_escape_phrase(artist)}" AND '
        f'releasegroup:"{_escape_phrase(album)}" AND primarytype:album'
    )


def build_fuzzy_query(artist: str, album: str) -> str:
    """Lucene query with fuzzy (~) terms, used when the exact query finds nothing good."""
    return f"artist:{artist}~ AND releasegroup:{album}~ AND primarytype:album"


class MusicBrainzClient(IMusicBrainzClient):
    """HTTP client for MusicBrainz API operations with rate limiting."""

    API_BASE_URL = "https://musicbrainz.org/ws/2"
    RATE_LIMIT_BACKOFF = 2.0  # Sleep after a 503 before surfacing the error

    # Hey future me, MusicBrainz is STRICT about rate limiting - 1 req/sec, NO EXCEPTIONS!
    # The limiter is passed in (one per process) so concurrent match jobs share it.
    # Violate it and they answer 503, keep violating it and they IP-ban you.
    def __init__(self, settings: MusicBrainzSettings, rate_limiter: RateLimiter) -> None:
        """
        Initialize MusicBrainz client.

        Args:
            settings: MusicBrainz configuration settings
            rate_limiter: Limiter enforcing the 1 req/sec budget
        """
        self.settings = settings
        self.rate_limiter = rate_limiter
        self._client: httpx.AsyncClient | None = None

    # Listen future me, MusicBrainz REQUIRES a User-Agent with app name, version AND
    # contact, in exactly the "AppName/Version ( contact )" format. Without it: 403.
    @property
    def user_agent(self) -> str:
        """User-Agent header value."""
        return (
            f"{self.settings.app_name}/{self.settings.app_version} "
            f"( {self.settings.contact} )"
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                },
                timeout=30.0,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rate_limited_request(
        self, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """
        Make a rate-limited request to MusicBrainz API.

        Raises:
            RateLimitExceededError: MusicBrainz answered 503 (after one backoff sleep)
            ExternalServiceError: Timeout, transport error or other non-2xx status
        """
        await self.rate_limiter.until_ready()
        client = await self._get_client()

        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                SERVICE_NAME, "request timed out", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"request failed: {e}", retryable=True
            ) from e

        if response.status_code == 503:
            logger.warning("MusicBrainz rate limit hit, backing off")
            await self.rate_limiter.backoff(self.RATE_LIMIT_BACKOFF)
            raise RateLimitExceededError(SERVICE_NAME, retry_after=self.RATE_LIMIT_BACKOFF)

        if response.is_error:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        return response

    async def _execute_search(self, query: str) -> list[ReleaseGroupCandidate]:
        """Run one release-group search and parse the candidates."""
        response = await self._rate_limited_request(
            "GET",
            "/release-group",
            params={"query": query, "fmt": "json", "limit": SEARCH_LIMIT},
        )
        data = response.json()
        return [
            ReleaseGroupCandidate.from_api(item)
            for item in data.get("release-groups", [])
            if item.get("id")
        ]

    # Hey future me - two-stage search! The exact phrase query is precise but misses
    # "Abbey Road (Remastered)" vs "Abbey Road". Only when it finds nothing scoring
    # >= 80 do we spend a second request (another 1s of budget) on the fuzzy variant.
    async def search_release_group(
        self, artist: str, album: str
    ) -> list[ReleaseGroupCandidate]:
        """Search release groups (albums) by artist and title.

        Args:
            artist: Artist name (featured artists are stripped)
            album: Album title

        Returns:
            Candidates scoring >= 80, best first. Empty list when nothing qualifies.
        """
        normalized_artist = normalize_artist(artist)

        candidates = await self._execute_search(
            build_exact_query(normalized_artist, album)
        )
        if not candidates or all(c.score < MIN_CANDIDATE_SCORE for c in candidates):
            logger.debug(
                f"No strong exact match for '{normalized_artist} - {album}', trying fuzzy query"
            )
            candidates = await self._execute_search(
                build_fuzzy_query(normalized_artist, album)
            )

        qualified = [c for c in candidates if c.score >= MIN_CANDIDATE_SCORE]
        # sorted() is stable, so equal scores keep MusicBrainz's own order
        return sorted(qualified, key=lambda c: c.score, reverse=True)

    async def __aenter__(self) -> "MusicBrainzClient":
        """Enter async context."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context and close client."""
        await self.close()
