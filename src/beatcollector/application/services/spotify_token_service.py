"""Spotify access-token provider backed by the user_settings row.

Hey future me - the OAuth handshake itself (authorize URL, code exchange) is NOT
here. Something else stored access/refresh tokens in user_settings; this service
only hands out a valid access token, refreshing it when it is about to expire.

IMPORTANT: Spotify might NOT return a new refresh_token on refresh - keep the old
one in that case, otherwise the next refresh has nothing to work with.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from beatcollector.domain.exceptions import ConfigurationError, TokenRefreshException
from beatcollector.domain.ports import ISpotifyClient, ITokenProvider
from beatcollector.infrastructure.integrations.spotify_client import (
    TOKEN_EXPIRY_MARGIN,
    SpotifyClient,
)
from beatcollector.infrastructure.persistence.repositories import (
    UserSettingsRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class SpotifyTokenService(ITokenProvider):
    """Hands out a valid Spotify access token, refreshing on demand."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        spotify_client: ISpotifyClient,
        margin: timedelta = TOKEN_EXPIRY_MARGIN,
    ) -> None:
        """Initialize token service.

        Args:
            session_factory: Factory for short-lived sessions
            spotify_client: Client used for the refresh call
            margin: Refresh this long before the real expiry
        """
        self._session_factory = session_factory
        self._client = spotify_client
        self._margin = margin

    async def get_valid_access_token(self) -> str:
        """Return a usable access token.

        Raises:
            ConfigurationError: Spotify was never connected
            TokenRefreshException: Token expired and cannot be refreshed
        """
        # read, refresh and write are separate steps: no session stays open
        # across the HTTP call to Spotify
        async with self._session_factory() as session:
            settings = await UserSettingsRepository(session).get()
            if settings is None or not settings.spotify_access_token:
                raise ConfigurationError("Spotify not connected")
            access_token = settings.spotify_access_token
            refresh_token = settings.spotify_refresh_token
            expires_at = settings.spotify_token_expires_at

        if not SpotifyClient.is_token_expired(expires_at, margin=self._margin):
            return access_token

        if not refresh_token:
            raise TokenRefreshException(
                message="Spotify token expired and no refresh token is stored. "
                "Please re-authenticate with Spotify.",
                error_code="missing_refresh_token",
            )

        logger.info("Spotify access token expires soon, refreshing")
        token_data = await self._client.refresh_token(refresh_token)

        new_access_token = token_data.get("access_token")
        if not new_access_token:
            raise TokenRefreshException(
                message="Spotify token response did not contain an access token",
                error_code="invalid_response",
            )

        expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN)
        async with self._session_factory() as session:
            settings = await UserSettingsRepository(session).get_or_create()
            settings.spotify_access_token = new_access_token
            # Keep the old refresh token unless Spotify rotated it
            if token_data.get("refresh_token"):
                settings.spotify_refresh_token = token_data["refresh_token"]
            settings.spotify_token_expires_at = datetime.now(UTC) + timedelta(
                seconds=expires_in
            )
            await session.commit()

        logger.info(f"Spotify access token refreshed, valid for {expires_in}s")
        return str(new_access_token)
