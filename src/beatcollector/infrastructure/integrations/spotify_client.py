"""Spotify Web API client: library pagination and token refresh."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, cast

import httpx

from beatcollector.config.settings import SpotifySettings
from beatcollector.domain.exceptions import (
    ExternalServiceError,
    RateLimitExceededError,
    TokenRefreshException,
)
from beatcollector.domain.ports import ISpotifyClient
from beatcollector.infrastructure.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SERVICE_NAME = "spotify"

# Spotify caps page sizes per endpoint - asking for more is a 400.
SAVED_ALBUMS_PAGE_SIZE = 50
PLAYLISTS_PAGE_SIZE = 50
SAVED_TRACKS_PAGE_SIZE = 50
PLAYLIST_TRACKS_PAGE_SIZE = 100

# Refresh a bit before the real expiry so a long sync doesn't die mid-way.
TOKEN_EXPIRY_MARGIN = timedelta(minutes=5)


class SpotifyClient(ISpotifyClient):
    """HTTP client for the Spotify library endpoints.

    Every request waits on the shared rate limiter first. Pagination follows the
    "next" URL Spotify returns until it is null.
    """

    # Hey future me, the HTTP client is lazy-created in _get_client() - creating it in
    # __init__ ties it to whatever loop happens to be running at import time.
    def __init__(self, settings: SpotifySettings, rate_limiter: RateLimiter) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            rate_limiter: Limiter shared by every request of this client
        """
        self.settings = settings
        self.rate_limiter = rate_limiter
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Hey future me - ALL Spotify API calls go through here!
    # - waits on the token bucket before every request
    # - 429: ONE backoff sleep (Retry-After honored), then RateLimitExceededError.
    #   No retry loop - the job fails and a later trigger resubmits it.
    # - timeouts and 5xx become retryable ExternalServiceError
    async def _api_request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a rate-limited API request and return the decoded JSON body.

        Args:
            method: HTTP method
            url: Full URL (pagination "next" URLs already carry their params)
            access_token: OAuth access token
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            RateLimitExceededError: Spotify answered 429
            ExternalServiceError: Timeout, transport error or non-2xx response
        """
        client = await self._get_client()
        await self.rate_limiter.until_ready()

        try:
            response = await client.request(
                method,
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"request timed out: {url}", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"request failed: {e}", retryable=True
            ) from e

        if response.status_code == 429:
            retry_after_header = response.headers.get("Retry-After")
            retry_after = float(retry_after_header) if retry_after_header else None
            waited = await self.rate_limiter.backoff(retry_after)
            raise RateLimitExceededError(SERVICE_NAME, retry_after=waited)

        if response.is_error:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        return cast(dict[str, Any], response.json())

    async def _paginate(
        self, url: str, access_token: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Collect "items" from every page, following "next" until exhausted."""
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params = params

        while next_url:
            data = await self._api_request("GET", next_url, access_token, next_params)
            items.extend(data.get("items") or [])
            next_url = data.get("next")
            # the "next" URL already contains offset/limit
            next_params = None

        return items

    async def get_saved_albums(self, access_token: str) -> list[dict[str, Any]]:
        """Get all saved albums.

        Returns:
            Saved-album items, each {"added_at": ..., "album": {...}}
        """
        items = await self._paginate(
            f"{self.settings.api_base_url}/me/albums",
            access_token,
            {"limit": SAVED_ALBUMS_PAGE_SIZE},
        )
        logger.info(f"Fetched {len(items)} saved albums from Spotify")
        return items

    async def get_user_playlists(self, access_token: str) -> list[dict[str, Any]]:
        """Get all playlists the user owns or follows (simplified playlist objects)."""
        items = await self._paginate(
            f"{self.settings.api_base_url}/me/playlists",
            access_token,
            {"limit": PLAYLISTS_PAGE_SIZE},
        )
        logger.info(f"Fetched {len(items)} playlists from Spotify")
        return items

    async def get_playlist_tracks(
        self, playlist_id: str, access_token: str
    ) -> list[dict[str, Any]]:
        """Get all items of a playlist.

        Items look like {"added_at": ..., "is_local": bool, "track": {...} | None}.
        track is null for removed/unavailable tracks - callers must skip those.
        """
        return await self._paginate(
            f"{self.settings.api_base_url}/playlists/{playlist_id}/tracks",
            access_token,
            {"limit": PLAYLIST_TRACKS_PAGE_SIZE},
        )

    async def get_saved_tracks(self, access_token: str) -> list[dict[str, Any]]:
        """Get all liked songs (same item shape as playlist tracks)."""
        items = await self._paginate(
            f"{self.settings.api_base_url}/me/tracks",
            access_token,
            {"limit": SAVED_TRACKS_PAGE_SIZE},
        )
        logger.info(f"Fetched {len(items)} liked songs from Spotify")
        return items

    async def get_saved_tracks_total(self, access_token: str) -> int:
        """Number of liked songs, read from a single-item page."""
        data = await self._api_request(
            "GET",
            f"{self.settings.api_base_url}/me/tracks",
            access_token,
            {"limit": 1},
        )
        return int(data.get("total") or 0)

    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Refresh token from previous authentication

        Returns:
            Token response with access_token, expires_in and, if Spotify rotated
            it, a new refresh_token

        Raises:
            TokenRefreshException: If refresh token is invalid/revoked (requires re-auth)
            ExternalServiceError: For other HTTP or network failures
        """
        client = await self._get_client()
        await self.rate_limiter.until_ready()

        try:
            response = await client.post(
                self.settings.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.settings.client_id,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"token refresh failed: {e}", retryable=True
            ) from e

        # Hey future me - check invalid_grant BEFORE the generic error handling!
        # Spotify answers 400 {"error": "invalid_grant"} when the refresh token was
        # revoked. That means re-auth, not "try again later".
        if response.status_code == 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            if error_data.get("error") == "invalid_grant":
                description = error_data.get(
                    "error_description", "Refresh token is invalid or has been revoked"
                )
                raise TokenRefreshException(
                    message=f"Refresh token invalid: {description}. Please re-authenticate with Spotify.",
                    error_code="invalid_grant",
                    http_status=400,
                )

        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify access denied. Please re-authenticate with Spotify.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        if response.is_error:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"token refresh returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

        return cast(dict[str, Any], response.json())

    @staticmethod
    def is_token_expired(
        expires_at: datetime | None,
        margin: timedelta = TOKEN_EXPIRY_MARGIN,
        now: datetime | None = None,
    ) -> bool:
        """True when the token is expired or expires within margin.

        A missing expiry counts as expired.
        """
        if expires_at is None:
            return True
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        current = now or datetime.now(UTC)
        return expires_at <= current + margin

    async def __aenter__(self) -> "SpotifyClient":
        """Enter async context."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context and close client."""
        await self.close()
