"""Normalized Levenshtein similarity for reconciling free-text names.

Hey future me - Lidarr, the music folder and Spotify don't share ids with our
catalog, so the only thing we can compare is names. "The Beatles" vs "Beatles",
"Sigur Rós" vs "Sigur Ros", "AC/DC" vs "ACDC" - exact comparison fails, so we
fall back to edit distance:

    similarity(a, b) = 1 - levenshtein(a, b) / max(len(a), len(b))

computed on casefolded, stripped strings. Two empty strings are identical (1.0).

Matching is a linear scan over every candidate - O(n*m) for n folders and m
catalog entries. Fine for a personal library (thousands), slow for a big one.

Examples:
    >>> similarity("abc", "abc")
    1.0
    >>> similarity("", "")
    1.0
    >>> 0.5 < similarity("The Beatles", "Beatles") < 1.0
    True
"""

from collections.abc import Callable, Iterable
from typing import TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T")

# Filesystem folder names are noisy ("Album (2020)", "[FLAC]") so 0.80 there;
# webhook payloads carry clean Lidarr names so we can be stricter.
ARTIST_MATCH_THRESHOLD = 0.80
ALBUM_MATCH_THRESHOLD = 0.80
WEBHOOK_MATCH_THRESHOLD = 0.85


def normalize_for_matching(value: str) -> str:
    """Casefold and trim a name before comparison."""
    return value.strip().casefold()


def similarity(a: str, b: str) -> float:
    """Return normalized Levenshtein similarity in [0.0, 1.0].

    Args:
        a: First string
        b: Second string

    Returns:
        1.0 for identical (case-insensitive) strings, 0.0 for completely
        different strings of equal length.
    """
    left = normalize_for_matching(a)
    right = normalize_for_matching(b)
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    distance = Levenshtein.distance(left, right)
    return 1.0 - (distance / longest)


def best_match(
    query: str,
    candidates: Iterable[T],
    key: Callable[[T], str],
    threshold: float,
) -> tuple[T, float] | None:
    """Find the candidate whose name best matches query.

    Exact case-insensitive matches win immediately. Otherwise the candidate with
    the highest similarity strictly above threshold wins; ties keep the first one
    seen, so iteration order of candidates decides between equal scores.

    Args:
        query: Name to look up
        candidates: Catalog entries to scan
        key: Extracts the comparable name from a candidate
        threshold: Minimum similarity (exclusive)

    Returns:
        (candidate, score) or None when nothing clears the threshold
    """
    normalized_query = normalize_for_matching(query)
    best: T | None = None
    best_score = threshold
    found = False

    for candidate in candidates:
        name = key(candidate)
        if normalize_for_matching(name) == normalized_query:
            return candidate, 1.0
        score = similarity(query, name)
        # strict ">" keeps the first candidate on ties
        if score > best_score:
            best = candidate
            best_score = score
            found = True

    if not found:
        return None
    return best, best_score  # type: ignore[return-value]
