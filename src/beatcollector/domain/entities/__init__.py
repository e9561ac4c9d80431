"""Domain entities: closed enums and the job message."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from beatcollector.domain.exceptions import InvalidEnumValueError

# Hey future me, the liked-songs collection has no Spotify playlist id, so the
# synthetic playlist row is keyed by this sentinel in playlists.spotify_id instead.
LIKED_SONGS_SPOTIFY_ID = "__LIKED_SONGS__"
LIKED_SONGS_NAME = "Liked Songs"


class TextEnum(str, Enum):
    """String enum with a strict codec for persisted text values.

    Hey future me - ALWAYS decode stored strings with parse(), never with a
    try/except that falls back to a default! An unknown value means the schema
    drifted (somebody wrote "Owned" or "grabbing") and we want to know right away.
    """

    @classmethod
    def parse(cls, value: Any) -> "TextEnum":
        """Decode a stored string into a member, raising on anything unknown."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value == value:
                    return member
        raise InvalidEnumValueError(cls.__name__, value)

    @classmethod
    def values(cls) -> list[str]:
        """All wire values in declaration order."""
        return [member.value for member in cls]

    def __str__(self) -> str:
        return str(self.value)


class OwnershipStatus(TextEnum):
    """Whether the album exists in the local collection.

    Moves are not_owned -> downloading -> owned -> not_owned, plus
    downloading -> not_owned when a download fails and not_owned -> owned when
    the album shows up on disk (or Lidarr imports it without a Grab we saw).
    Staying in the same state is not a transition.
    """

    NOT_OWNED = "not_owned"
    OWNED = "owned"
    DOWNLOADING = "downloading"

    def can_transition_to(self, target: "OwnershipStatus") -> bool:
        """Check an ownership change against the album state machine."""
        return target.value in _OWNERSHIP_TRANSITIONS[self.value]


class AcquisitionSource(TextEnum):
    """How an owned album was acquired. NULL in the DB means "none"."""

    BANDCAMP = "bandcamp"
    PHYSICAL = "physical"
    LIDARR = "lidarr"
    UNKNOWN = "unknown"


class MatchStatus(TextEnum):
    """MusicBrainz match state. Only PENDING albums are ever sampled."""

    PENDING = "pending"
    MATCHED = "matched"
    MANUAL_REVIEW = "manual_review"
    NO_MATCH = "no_match"

    @classmethod
    def from_score(cls, score: int | None) -> "MatchStatus":
        """Classify a MusicBrainz confidence score (0-100).

        >=90 is trusted, 80-89 needs a human, anything else (or no candidate)
        is NO_MATCH.
        """
        if score is None:
            return cls.NO_MATCH
        if score >= 90:
            return cls.MATCHED
        if score >= 80:
            return cls.MANUAL_REVIEW
        return cls.NO_MATCH


class AlbumSource(TextEnum):
    """Where an album row came from."""

    SAVED_ALBUM = "saved_album"
    PLAYLIST_IMPORT = "playlist_import"


class JobType(TextEnum):
    """Fixed set of background job types."""

    SPOTIFY_SYNC = "spotify_sync"
    MUSICBRAINZ_MATCH = "musicbrainz_match"
    LIDARR_SEARCH = "lidarr_search"
    COVER_ART_FETCH = "cover_art_fetch"
    FILESYSTEM_SCAN = "filesystem_scan"


class JobStatus(TextEnum):
    """Job lifecycle: pending -> running -> completed|failed."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Completed and failed jobs never change again."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Check a status change against the job state machine.

        pending -> completed|failed is allowed because the Running update is
        best-effort: a job can finish before its Running write ever landed.
        """
        return target.value in _JOB_TRANSITIONS[self.value]


_JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"running", "completed", "failed"}),
    "running": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


_OWNERSHIP_TRANSITIONS: dict[str, frozenset[str]] = {
    "not_owned": frozenset({"downloading", "owned"}),
    "downloading": frozenset({"owned", "not_owned"}),
    "owned": frozenset({"not_owned"}),
}


class DownloadStatus(TextEnum):
    """Status of a Lidarr download-tracking row."""

    PENDING = "pending"
    SEARCHING = "searching"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class CoverArtSize(TextEnum):
    """Cover Art Archive thumbnail tiers."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def pixels(self) -> int:
        """Edge length in pixels used in the CAA URL suffix."""
        return {"small": 250, "medium": 500, "large": 1200}[self.value]


@dataclass(frozen=True)
class JobMessage:
    """Message placed on the job queue.

    The job row itself lives in the database - this is only the wake-up call
    telling the executor which row to run.
    """

    job_id: str
    job_type: JobType
    entity_id: str | None = None


__all__ = [
    "LIKED_SONGS_NAME",
    "LIKED_SONGS_SPOTIFY_ID",
    "AcquisitionSource",
    "AlbumSource",
    "CoverArtSize",
    "DownloadStatus",
    "JobMessage",
    "JobStatus",
    "JobType",
    "MatchStatus",
    "OwnershipStatus",
    "TextEnum",
]
