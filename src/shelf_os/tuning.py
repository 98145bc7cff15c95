"""Centralized tuning constants for metadata fusion, learning and suggestions.

All confidence weights, thresholds, caps and extension sets should be defined
here and referenced by the services (single source of truth).
"""

from __future__ import annotations

from typing import Any, Dict, Tuple

# ---------------------------------------------------------------------------
# Library conventions
AUDIO_EXTENSIONS: Tuple[str, ...] = (".m4b", ".mp3", ".m4a", ".flac", ".ogg")
LOSSY_CONVERTIBLE_EXTENSIONS: Tuple[str, ...] = (".mp3", ".m4a", ".ogg")
AUTHOR_ROOT_SEGMENT = "Authors"
SERIES_ROOT_SEGMENT = "Series"
GENRE_ROOT_SEGMENT = "Genres"
ARCHIVE_EXTENSIONS: Tuple[str, ...] = (".zip", ".rar", ".7z")
IGNORED_NAMES: Tuple[str, ...] = ("Thumbs.db", "desktop.ini")

# Library walk depths
SCAN_MAX_DEPTH = 5
SUGGESTION_SCAN_DEPTH = 3
ANALYSIS_SCAN_DEPTH = 3

# ---------------------------------------------------------------------------
# Metadata fusion
TAG_FIELD_WEIGHTS: Dict[str, float] = {
    "title": 0.2,
    "artist": 0.2,
    "album": 0.1,
    "track_number": 0.1,
    "genre": 0.1,
    "date": 0.1,
    "audiobook_bonus": 0.1,
}
AUDIOBOOK_MARKERS: Tuple[str, ...] = ("audiobook", "narrat")

FILENAME_BASE_CONFIDENCE = 0.3
AUTHOR_STRUCTURE_BONUS = 0.2
AUTHOR_DIRECTORY_BONUS = 0.1
NUMBERING_BONUS = 0.1

# ---------------------------------------------------------------------------
# Pattern learning
PATTERN_INITIAL_CONFIDENCE: Dict[str, float] = {
    "naming": 0.7,
    "organization": 0.8,
    "conversion": 0.7,
}
PATTERN_CONFIDENCE_STEP = 0.1
MAX_EXAMPLES = 10
RECENT_PATTERNS_LIMIT = 5
COMMON_PATTERNS_LIMIT = 5

# Retention policy, only applied by an explicit prune request
PATTERN_RETENTION_DAYS = 180
PATTERN_RETENTION_MIN_CONFIDENCE = 0.75

# ---------------------------------------------------------------------------
# Preferences
PREFERENCE_STRENGTH: Dict[str, float] = {
    "conservative": 0.5,
    "default": 0.8,
}
PREFERENCE_ADAPTABILITY: Dict[str, float] = {
    "explicit": 0.3,
    "default": 0.7,
}
IMPLICIT_PREFERENCE_STEP = 0.1
IMPLICIT_PREFERENCE_ADAPTABILITY = 0.8

# ---------------------------------------------------------------------------
# Suggestions
NAMING_PATTERN_MIN_CONFIDENCE = 0.7
NAMING_CONFIDENCE_FACTOR = 0.9
NUMBERING_PREFIX = "01 - "
ORGANIZATION_BASE_CONFIDENCE = 0.8
DEFAULT_PREFERENCE_STRENGTH = 0.5
DEFAULT_ORGANIZATION_STYLE = "author_first"
METADATA_CONFIDENCE_THRESHOLD = 0.7
METADATA_SUGGESTION_CONFIDENCE = 0.6

DEFAULT_MIN_CONFIDENCE = 0.7
DEFAULT_MAX_SUGGESTIONS = 10
DEFAULT_SUGGESTION_KINDS: Tuple[str, ...] = ("naming", "organization", "metadata")

# ---------------------------------------------------------------------------
# Insights
TIMEFRAME_DAYS: Dict[str, int] = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
    "all": 9999,
}
HIGH_CONFIDENCE_PATTERN = 0.8
EMERGING_PATTERN_MAX_FREQUENCY = 3
STRONG_PREFERENCE = 0.7
REJECTION_RATE_WARNING = 0.3
MODIFIED_OUTCOME_WEIGHT = 0.5
QUIET_ACTIVITY_MIN_ACTIONS = 10
QUIET_ACTIVITY_MAX_PATTERNS = 3
PREDICTION_MIN_CONFIDENCE = 0.8
DEFAULT_STRUCTURE_CONFIDENCE = 0.5


def apply_overrides(data: Dict[str, Any]) -> None:
    """Merge numeric/dict tuning overrides into module globals (best-effort)."""
    if not isinstance(data, dict):
        return

    module_globals = globals()
    for key, value in data.items():
        if key not in module_globals:
            continue
        current = module_globals[key]
        if isinstance(current, dict) and isinstance(value, dict):
            current.update(value)
        elif isinstance(current, (int, float)) and isinstance(value, (int, float)):
            module_globals[key] = value
        elif isinstance(current, str) and isinstance(value, str):
            module_globals[key] = value
        elif isinstance(current, tuple) and isinstance(value, list):
            module_globals[key] = tuple(str(v) for v in value)
