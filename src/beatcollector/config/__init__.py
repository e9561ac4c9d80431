"""Configuration module for BeatCollector."""

from .settings import (
    DatabaseSettings,
    LidarrSettings,
    MusicBrainzSettings,
    ObservabilitySettings,
    Settings,
    SpotifySettings,
    StorageSettings,
    SyncSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "LidarrSettings",
    "MusicBrainzSettings",
    "ObservabilitySettings",
    "Settings",
    "SpotifySettings",
    "StorageSettings",
    "SyncSettings",
    "get_settings",
]
