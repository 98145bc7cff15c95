"""Metadata fusion for Shelf OS.

Two independent estimates exist for every audio file:

* a *tag* estimate built from the embedded tags (see
  :mod:`shelf_os.tag_service`), scored by how many of the common fields are
  present;
* a *filename* estimate inferred from the file name and the directory
  structure above it (``Authors/<author>/<series>/01 - Title.mp3``).

:func:`fuse_metadata` reconciles both into one estimate:

1. title, author, series and series number come from the tag estimate unless
   the filename estimate is strictly more confident; a missing value falls
   back to the other source.
2. narrator, duration, genre, publisher, release date, description,
   language and ISBN can only come from tags.
3. The fused confidence is the larger of the two inputs.

A file whose tags cannot be read degrades to the filename estimate (the tag
side counts as confidence 0).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional, Tuple

from . import tuning
from .models import MetadataEstimate
from .tag_service import TagService, TagSnapshot

logger = logging.getLogger(__name__)

SHARED_FIELDS: Tuple[str, ...] = ("title", "author", "series", "series_number")
TAG_ONLY_FIELDS: Tuple[str, ...] = (
    "narrator",
    "duration",
    "genre",
    "publisher",
    "release_date",
    "description",
    "language",
    "isbn",
)

# Filename decomposition, tried in order; first match wins.
_LEADING_NUMBER_RE = re.compile(r"^(\d+)\s*[-–_.:]\s*(.+)$")
_BOOK_PREFIX_RE = re.compile(r"^(?:book|vol\.?|volume)\s*(\d+)\s*[-–_:.]\s*(.+)$", re.IGNORECASE)
_TRAILING_NUMBER_RE = re.compile(r"^(.+?)\s*(?:[-–,]\s*)?(?:book\s*|vol\.?\s*|part\s*)?(?<![#\d])(\d+)$", re.IGNORECASE)
_HASH_NUMBER_RE = re.compile(r"^(.+?)\s*#(\d+)(?:\s*[-–:]?\s*(.*))?$")

_AUTHOR_NAME_RES = (
    re.compile(r"^[A-Z][a-z]+\s+[A-Z]"),
    re.compile(r"^[A-Z][a-z]+,\s*[A-Z]"),
    re.compile(r"^\w+\s+\w+$"),
)

_NARRATOR_RE = re.compile(r"(?:narrated by|read by|narrator:)\s*([^,\n]+)", re.IGNORECASE)
_ALBUM_SERIES_RE = re.compile(r"^(.+?)\s*(?:book|#|vol\.?\s*\d+|series)", re.IGNORECASE)
_SERIES_NUMBER_RE = re.compile(r"(?:book|#|vol\.?)\s*(\d+)", re.IGNORECASE)
_ALBUM_AUTHOR_RE = re.compile(r"^([^-]+?)\s*-")


@dataclass(frozen=True)
class FilenameParse:
    parsed_title: str
    series_number: Optional[int] = None
    matched: bool = False


# ---------------------------------------------------------------------------
# Filename / path estimate
def parse_filename_components(stem: str) -> FilenameParse:
    """Split a file stem into a title and an optional series number."""
    text = (stem or "").strip()

    match = _LEADING_NUMBER_RE.match(text)
    if match:
        return FilenameParse(match.group(2).strip(), int(match.group(1)), True)

    match = _BOOK_PREFIX_RE.match(text)
    if match:
        return FilenameParse(match.group(2).strip(), int(match.group(1)), True)

    match = _TRAILING_NUMBER_RE.match(text)
    if match and match.group(1).strip(" -–,"):
        return FilenameParse(match.group(1).strip(" -–,"), int(match.group(2)), True)

    match = _HASH_NUMBER_RE.match(text)
    if match:
        subtitle = (match.group(3) or "").strip()
        return FilenameParse(subtitle or match.group(1).strip(), int(match.group(2)), True)

    return FilenameParse(text)


def looks_like_author_name(name: str) -> bool:
    return any(pattern.search(name or "") for pattern in _AUTHOR_NAME_RES)


def _path_parts(path: str) -> List[str]:
    normalized = str(path).replace("\\", "/")
    return [part for part in PurePosixPath(normalized).parts if part not in {"/", ".", ""}]


def estimate_from_path(path: str, is_directory: bool = False) -> MetadataEstimate:
    """Infer author/series/title from a library-relative path."""
    parts = _path_parts(path)
    if not parts:
        return MetadataEstimate(confidence=tuning.FILENAME_BASE_CONFIDENCE, provenance="filename")

    if is_directory:
        dir_parts = parts
        stem = parts[-1]
    else:
        dir_parts = parts[:-1]
        stem = PurePosixPath(parts[-1]).stem

    confidence = float(tuning.FILENAME_BASE_CONFIDENCE)
    author: Optional[str] = None
    series: Optional[str] = None

    root_index = -1
    for index, part in enumerate(dir_parts):
        if part == tuning.AUTHOR_ROOT_SEGMENT and index + 1 < len(dir_parts):
            root_index = index

    if root_index >= 0:
        author = dir_parts[root_index + 1]
        if root_index + 2 < len(dir_parts):
            series = dir_parts[root_index + 2]
            confidence += tuning.AUTHOR_STRUCTURE_BONUS
        else:
            confidence += tuning.AUTHOR_DIRECTORY_BONUS
    elif dir_parts and looks_like_author_name(dir_parts[-1]):
        author = dir_parts[-1]
        confidence += tuning.AUTHOR_DIRECTORY_BONUS

    parsed = parse_filename_components(stem)
    if parsed.matched:
        confidence += tuning.NUMBERING_BONUS

    return MetadataEstimate(
        title=parsed.parsed_title or stem,
        author=author,
        series=series,
        series_number=parsed.series_number,
        confidence=round(confidence, 6),
        provenance="filename",
    )


# ---------------------------------------------------------------------------
# Tag estimate
def _mentions_audiobook(texts: List[str]) -> bool:
    for text in texts:
        lower = text.lower()
        if any(marker in lower for marker in tuning.AUDIOBOOK_MARKERS):
            return True
    return False


def tag_confidence(tags: TagSnapshot) -> float:
    """Weighted presence score of the common tag fields, capped at 1.0."""
    weights = tuning.TAG_FIELD_WEIGHTS
    score = 0.0
    if tags.title:
        score += weights["title"]
    if tags.artist or tags.album_artist:
        score += weights["artist"]
    if tags.album:
        score += weights["album"]
    if tags.track_number:
        score += weights["track_number"]
    if tags.genres:
        score += weights["genre"]
    if tags.date:
        score += weights["date"]
    if _mentions_audiobook(list(tags.genres) + list(tags.comments)):
        score += weights["audiobook_bonus"]
    return round(min(score, 1.0), 6)


def _author_from_tags(tags: TagSnapshot) -> Optional[str]:
    if tags.artist or tags.album_artist or tags.composer:
        return tags.artist or tags.album_artist or tags.composer
    if tags.album:
        match = _ALBUM_AUTHOR_RE.match(tags.album)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def _narrator_from_tags(tags: TagSnapshot) -> Optional[str]:
    for comment in tags.comments:
        match = _NARRATOR_RE.search(comment)
        if match:
            return match.group(1).strip()
    return None


def _series_from_tags(tags: TagSnapshot) -> Optional[str]:
    if tags.album:
        match = _ALBUM_SERIES_RE.match(tags.album)
        if match and match.group(1).strip():
            return match.group(1).strip()
    if tags.grouping and not tags.grouping.isdigit():
        return tags.grouping
    return None


def _series_number_from_tags(tags: TagSnapshot) -> Optional[int]:
    if tags.track_number:
        return tags.track_number
    for text in (tags.album, tags.title):
        if not text:
            continue
        match = _SERIES_NUMBER_RE.search(text)
        if match:
            return int(match.group(1))
    return None


def estimate_from_tags(tags: TagSnapshot) -> MetadataEstimate:
    return MetadataEstimate(
        title=tags.title,
        author=_author_from_tags(tags),
        narrator=_narrator_from_tags(tags),
        series=_series_from_tags(tags),
        series_number=_series_number_from_tags(tags),
        duration=tags.duration,
        genre=tags.genres[0] if tags.genres else None,
        publisher=tags.publisher,
        release_date=tags.date,
        description=tags.comments[0] if tags.comments else None,
        language=tags.language,
        isbn=tags.isbn,
        confidence=tag_confidence(tags),
        provenance="tag",
    )


# ---------------------------------------------------------------------------
# Fusion
def _select_field(tag_value: Any, filename_value: Any, prefer_filename: bool) -> Any:
    preferred, other = (filename_value, tag_value) if prefer_filename else (tag_value, filename_value)
    return preferred if preferred not in (None, "") else other


def fuse_metadata(tag_estimate: MetadataEstimate, filename_estimate: MetadataEstimate) -> MetadataEstimate:
    """Combine a tag-derived and a filename-derived estimate of one file."""
    prefer_filename = filename_estimate.confidence > tag_estimate.confidence
    values = {
        name: _select_field(getattr(tag_estimate, name), getattr(filename_estimate, name), prefer_filename)
        for name in SHARED_FIELDS
    }
    for name in TAG_ONLY_FIELDS:
        values[name] = getattr(tag_estimate, name)
    return MetadataEstimate(
        confidence=max(tag_estimate.confidence, filename_estimate.confidence),
        provenance="fused",
        **values,
    )


def extract_metadata(
    file_path: Path,
    tag_service: Optional[TagService] = None,
    relative_path: Optional[str] = None,
) -> MetadataEstimate:
    """Read tags from ``file_path`` and fuse them with the path estimate.

    ``relative_path`` is the library-relative path used for the directory
    heuristics; it defaults to ``file_path`` itself.
    """
    service = tag_service or TagService()
    filename_estimate = estimate_from_path(relative_path or str(file_path))
    try:
        tag_estimate = estimate_from_tags(service.read(Path(file_path)))
    except Exception as exc:
        logger.debug("Tag read failed for %s: %s", file_path, exc)
        tag_estimate = MetadataEstimate(confidence=0.0, provenance="tag")
    return fuse_metadata(tag_estimate, filename_estimate)
