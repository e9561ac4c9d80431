"""Lidarr v1 API client.

Hey future me - Lidarr is the download manager. We only use a small slice of its
API: look an album up by MusicBrainz id, add it (monitored) if Lidarr doesn't know
it yet, or kick off an AlbumSearch if it does. Download progress comes back to
us through webhooks (see LidarrWebhookService), not polling - get_queue() is
only there for status displays.

Auth is the X-Api-Key header on every request.
"""

import logging
from typing import Any, cast

import httpx

from beatcollector.domain.exceptions import ExternalServiceError
from beatcollector.domain.ports import ILidarrClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "lidarr"


class LidarrClient(ILidarrClient):
    """HTTP client for a Lidarr instance."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0) -> None:
        """
        Initialize Lidarr client.

        Args:
            base_url: Lidarr root URL, e.g. http://localhost:8686
            api_key: API key from Lidarr's Settings > General
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def api_url(self) -> str:
        """Versioned API root."""
        return f"{self.base_url}/api/v1"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                headers={
                    "X-Api-Key": self.api_key,
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> httpx.Response:
        """Send a request, translating transport failures.

        Status handling is left to callers since some of them treat 404 as "none".
        """
        client = await self._get_client()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"{method} {path} timed out", retryable=True
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"{method} {path} failed: {e}", retryable=True
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_error:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"{action} returned {response.status_code}",
                status_code=response.status_code,
                retryable=response.status_code >= 500,
            )

    async def test_connection(self) -> bool:
        """Check that Lidarr is reachable and the API key is accepted."""
        try:
            response = await self._request("GET", "/system/status")
        except ExternalServiceError as e:
            logger.warning(f"Lidarr connection test failed: {e}")
            return False
        return response.is_success

    async def lookup_album(self, musicbrainz_id: str) -> dict[str, Any] | None:
        """Look up an album by MusicBrainz release-group id.

        Returns:
            First lookup result (has an "id" only when Lidarr already tracks it),
            or None when Lidarr doesn't know the release group
        """
        response = await self._request(
            "GET", "/album/lookup", params={"term": f"lidarr:{musicbrainz_id}"}
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "album lookup")

        results = response.json()
        if not results:
            return None
        return cast(dict[str, Any], results[0])

    async def search_album(self, album_id: int) -> dict[str, Any]:
        """Trigger an AlbumSearch command.

        Args:
            album_id: Lidarr's internal album id (not the MusicBrainz id!)

        Returns:
            The queued command resource
        """
        response = await self._request(
            "POST", "/command", json={"name": "AlbumSearch", "albumIds": [album_id]}
        )
        self._raise_for_status(response, "album search")
        logger.info(f"Triggered Lidarr AlbumSearch for album {album_id}")
        return cast(dict[str, Any], response.json())

    async def add_album(self, album: dict[str, Any]) -> dict[str, Any]:
        """Add an album (usually a lookup result with monitoring options set)."""
        response = await self._request("POST", "/album", json=album)
        self._raise_for_status(response, "add album")
        return cast(dict[str, Any], response.json())

    async def get_queue(self) -> list[dict[str, Any]]:
        """Current download queue records."""
        response = await self._request("GET", "/queue")
        self._raise_for_status(response, "queue")
        data = response.json()
        return cast(list[dict[str, Any]], data.get("records", []))

    async def __aenter__(self) -> "LidarrClient":
        """Enter async context."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context and close client."""
        await self.close()
