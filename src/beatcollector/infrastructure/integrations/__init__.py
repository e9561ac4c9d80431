"""External integration client implementations."""

from beatcollector.infrastructure.integrations.coverartarchive_client import (
    CoverArtArchiveClient,
)
from beatcollector.infrastructure.integrations.lidarr_client import LidarrClient
from beatcollector.infrastructure.integrations.musicbrainz_client import (
    MusicBrainzClient,
)
from beatcollector.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = [
    "CoverArtArchiveClient",
    "LidarrClient",
    "MusicBrainzClient",
    "SpotifyClient",
]
