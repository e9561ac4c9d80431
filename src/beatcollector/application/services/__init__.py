"""Application services - one per use case, all built in infrastructure/lifecycle.py."""

from beatcollector.application.services.cover_art_service import CoverArtService
from beatcollector.application.services.filesystem_scan_service import (
    FilesystemScanService,
)
from beatcollector.application.services.job_service import JobService
from beatcollector.application.services.library_sync_service import LibrarySyncService
from beatcollector.application.services.lidarr_search_service import (
    LidarrSearchService,
)
from beatcollector.application.services.lidarr_webhook_service import (
    LidarrWebhookService,
)
from beatcollector.application.services.metadata_match_service import (
    MetadataMatchService,
)
from beatcollector.application.services.playlist_stats_service import (
    PlaylistStatsService,
)
from beatcollector.application.services.spotify_token_service import (
    SpotifyTokenService,
)

__all__ = [
    "CoverArtService",
    "FilesystemScanService",
    "JobService",
    "LibrarySyncService",
    "LidarrSearchService",
    "LidarrWebhookService",
    "MetadataMatchService",
    "PlaylistStatsService",
    "SpotifyTokenService",
]
