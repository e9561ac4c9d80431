"""Domain value objects."""

from beatcollector.domain.value_objects.string_similarity import (
    ALBUM_MATCH_THRESHOLD,
    ARTIST_MATCH_THRESHOLD,
    WEBHOOK_MATCH_THRESHOLD,
    best_match,
    normalize_for_matching,
    similarity,
)

__all__ = [
    "ALBUM_MATCH_THRESHOLD",
    "ARTIST_MATCH_THRESHOLD",
    "WEBHOOK_MATCH_THRESHOLD",
    "best_match",
    "normalize_for_matching",
    "similarity",
]
