"""Embedded tag reading for Shelf OS.

:class:`TagService` wraps :mod:`mutagen` and reduces the per-format tag
dialects (ID3, MP4 atoms, Vorbis comments) to a single
:class:`TagSnapshot` of the "common" fields that metadata fusion scores.
mutagen's *easy* interface already maps the format-specific frame names to
lower-case keys such as ``title``, ``artist`` or ``tracknumber``; the
service only picks the first value of each list and normalises track
numbers of the form ``"3/12"``.

Reading is the only responsibility here.  Scoring the snapshot and turning
it into a :class:`~shelf_os.models.MetadataEstimate` lives in
:mod:`shelf_os.fusion`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional

import mutagen

logger = logging.getLogger(__name__)


class TagReadError(Exception):
    """Raised when a file has no readable tag container."""


@dataclass(frozen=True)
class TagSnapshot:
    title: Optional[str] = None
    artist: Optional[str] = None
    album_artist: Optional[str] = None
    album: Optional[str] = None
    composer: Optional[str] = None
    track_number: Optional[int] = None
    genres: List[str] = field(default_factory=list)
    date: Optional[str] = None
    comments: List[str] = field(default_factory=list)
    grouping: Optional[str] = None
    publisher: Optional[str] = None
    language: Optional[str] = None
    isbn: Optional[str] = None
    duration: Optional[float] = None


def _values(tags: Any, *keys: str) -> List[str]:
    out: List[str] = []
    if tags is None:
        return out
    for key in keys:
        try:
            raw = tags.get(key)
        except (KeyError, ValueError):
            continue
        if raw is None:
            continue
        items = raw if isinstance(raw, (list, tuple)) else [raw]
        for item in items:
            text = str(item).strip()
            if text:
                out.append(text)
    return out


def _first(tags: Any, *keys: str) -> Optional[str]:
    values = _values(tags, *keys)
    return values[0] if values else None


def _track_number(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    head = raw.split("/", 1)[0].strip()
    try:
        number = int(head)
    except ValueError:
        return None
    return number if number > 0 else None


@dataclass
class TagService:
    """Read embedded tags with mutagen."""

    def read(self, file_path: Path) -> TagSnapshot:
        """Return the common tags of ``file_path``.

        Raises :class:`TagReadError` when mutagen does not recognise the
        container; I/O and parser errors from mutagen propagate unchanged.
        """
        audio = mutagen.File(str(file_path), easy=True)
        if audio is None:
            raise TagReadError(f"Unrecognised audio container: {file_path}")

        tags = audio.tags
        info = getattr(audio, "info", None)
        length = getattr(info, "length", None) if info is not None else None

        snapshot = TagSnapshot(
            title=_first(tags, "title"),
            artist=_first(tags, "artist"),
            album_artist=_first(tags, "albumartist", "album artist"),
            album=_first(tags, "album"),
            composer=_first(tags, "composer"),
            track_number=_track_number(_first(tags, "tracknumber")),
            genres=_values(tags, "genre"),
            date=_first(tags, "date", "originaldate"),
            comments=_values(tags, "comment", "description"),
            grouping=_first(tags, "grouping"),
            publisher=_first(tags, "organization", "label", "publisher"),
            language=_first(tags, "language"),
            isbn=_first(tags, "isbn"),
            duration=float(length) if length else None,
        )
        logger.debug("Read tags from %s: title=%r artist=%r", file_path, snapshot.title, snapshot.artist)
        return snapshot
