"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from beatcollector.domain.entities import CoverArtSize

# Long-running tasks report (processed, total) through this; total may be unknown.
ProgressCallback = Callable[[int, int | None], Awaitable[None]]


@dataclass(frozen=True)
class ReleaseGroupCandidate:
    """One scored release-group hit from a MusicBrainz search."""

    id: str
    title: str
    score: int
    primary_type: str | None = None
    artist_name: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ReleaseGroupCandidate":
        """Build from a "release-groups" entry of the search response."""
        credits = data.get("artist-credit") or []
        artist_name = credits[0].get("name") if credits else None
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            score=int(data.get("score", 0)),
            primary_type=data.get("primary-type"),
            artist_name=artist_name,
        )


# Hey future me, these are PORTS - services depend on the interfaces, the httpx
# implementations live in infrastructure/integrations. Tests hand services an
# AsyncMock(spec=IMusicBrainzClient) instead of patching HTTP.
class ISpotifyClient(ABC):
    """Port for Spotify library reads and token refresh."""

    @abstractmethod
    async def get_saved_albums(self, access_token: str) -> list[dict[str, Any]]:
        """Get every saved album item ({"added_at", "album"})."""
        pass

    @abstractmethod
    async def get_user_playlists(self, access_token: str) -> list[dict[str, Any]]:
        """Get every playlist the user owns or follows."""
        pass

    @abstractmethod
    async def get_playlist_tracks(
        self, playlist_id: str, access_token: str
    ) -> list[dict[str, Any]]:
        """Get every item of a playlist ({"added_at", "is_local", "track"})."""
        pass

    @abstractmethod
    async def get_saved_tracks(self, access_token: str) -> list[dict[str, Any]]:
        """Get every liked song item."""
        pass

    @abstractmethod
    async def get_saved_tracks_total(self, access_token: str) -> int:
        """Number of liked songs."""
        pass

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh access token.

        Args:
            refresh_token: Refresh token

        Returns:
            Token response with new access_token and expires_in
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


class IMusicBrainzClient(ABC):
    """Port for MusicBrainz API client operations."""

    @abstractmethod
    async def search_release_group(
        self, artist: str, album: str
    ) -> list[ReleaseGroupCandidate]:
        """
        Search release groups by artist and album title.

        Args:
            artist: Artist name
            album: Album title

        Returns:
            Candidates scoring >= 80, best first
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


class ICoverArtClient(ABC):
    """Port for cover image downloads."""

    @abstractmethod
    async def fetch_front_cover(
        self, release_group_mbid: str, size: CoverArtSize = CoverArtSize.MEDIUM
    ) -> bytes:
        """Download the front cover of a release group as raw bytes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


class ILidarrClient(ABC):
    """Port for the Lidarr v1 API."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """True when Lidarr answers /system/status."""
        pass

    @abstractmethod
    async def lookup_album(self, musicbrainz_id: str) -> dict[str, Any] | None:
        """Look up an album by MusicBrainz release-group id, None when unknown."""
        pass

    @abstractmethod
    async def search_album(self, album_id: int) -> dict[str, Any]:
        """Trigger an AlbumSearch command for an album Lidarr already knows."""
        pass

    @abstractmethod
    async def add_album(self, album: dict[str, Any]) -> dict[str, Any]:
        """Add (and monitor) an album from a lookup result."""
        pass

    @abstractmethod
    async def get_queue(self) -> list[dict[str, Any]]:
        """Current download queue records."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release HTTP resources."""
        pass


class ITokenProvider(ABC):
    """Port for anything that can hand out a valid Spotify access token."""

    @abstractmethod
    async def get_valid_access_token(self) -> str:
        """Return a non-expired access token, refreshing it if needed."""
        pass


__all__ = [
    "ICoverArtClient",
    "ILidarrClient",
    "IMusicBrainzClient",
    "ISpotifyClient",
    "ITokenProvider",
    "ProgressCallback",
    "ReleaseGroupCandidate",
]
