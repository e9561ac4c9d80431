"""Application settings loaded from environment variables.

Hey future me - every section is its own BaseSettings with an env prefix, so
DATABASE_URL, SPOTIFY_CLIENT_ID, LIDARR_API_KEY, MUSIC_FOLDER etc. all work
without a nested delimiter. Settings() composes them. Tests build the sections
directly (MusicBrainzSettings(app_name=...)) without touching the environment.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///./beatcollector.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")


class SpotifySettings(BaseSettings):
    """Spotify API settings.

    Only the PKCE public-client id is needed - token refresh does not use a
    client secret.
    """

    model_config = SettingsConfigDict(env_prefix="SPOTIFY_", extra="ignore")

    client_id: str = Field(default="", description="Spotify application client id")
    redirect_uri: str = Field(
        default="http://localhost:3000/auth/callback",
        description="OAuth redirect URI registered with Spotify",
    )
    api_base_url: str = Field(default="https://api.spotify.com/v1")
    token_url: str = Field(default="https://accounts.spotify.com/api/token")
    requests_per_second: float = Field(default=2.0, gt=0)


class MusicBrainzSettings(BaseSettings):
    """MusicBrainz API settings.

    MusicBrainz rejects anonymous clients, so the User-Agent built from these
    fields is mandatory.
    """

    model_config = SettingsConfigDict(env_prefix="MUSICBRAINZ_", extra="ignore")

    app_name: str = Field(default="BeatCollector")
    app_version: str = Field(default="0.1.0")
    contact: str = Field(default="beatcollector@localhost")
    requests_per_second: float = Field(default=1.0, gt=0)


class LidarrSettings(BaseSettings):
    """Lidarr (download manager) settings.

    These are defaults - values stored in user_settings win when present.
    """

    model_config = SettingsConfigDict(env_prefix="LIDARR_", extra="ignore")

    url: str | None = Field(default=None, description="Lidarr base URL")
    api_key: str | None = Field(default=None, description="Lidarr API key")
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        """Normalize base URL so path joins stay predictable."""
        if value:
            return value.rstrip("/")
        return value


class StorageSettings(BaseSettings):
    """Filesystem locations."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    music_folder: Path | None = Field(
        default=None, description="Root of the local music library"
    )
    covers_dir: Path = Field(
        default=Path("static/covers"), description="Where cover images are stored"
    )


class SyncSettings(BaseSettings):
    """Background trigger settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_", extra="ignore")

    scheduler_enabled: bool = Field(default=True)
    check_interval_seconds: int = Field(default=60, ge=1)
    watch_filesystem: bool = Field(default=False)
    watcher_debounce_seconds: float = Field(default=5.0, ge=0)
    shutdown_timeout_seconds: float = Field(default=30.0, ge=0)


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    json_format: bool = Field(default=False)

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Reject unknown log levels early instead of silently using INFO."""
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return upper


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = Field(default="beatcollector")
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    musicbrainz: MusicBrainzSettings = Field(default_factory=MusicBrainzSettings)
    lidarr: LidarrSettings = Field(default_factory=LidarrSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(
        default_factory=ObservabilitySettings
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
