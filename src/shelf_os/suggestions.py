"""Suggestion synthesis for Shelf OS.

For every file and requested kind the engine produces zero or more
candidate actions, then filters them by a confidence threshold, sorts them
by descending confidence (ties keep generation order) and truncates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional

from . import tuning
from .models import REQUEST_KINDS, FileDescriptor, InvalidRequestError, Pattern, SmartSuggestion, new_id
from .patterns import PatternStore
from .preferences import ORGANIZATION_STYLE_KEY, PREFER_M4B_KEY, PreferenceModel

_INVALID_CHARS_RE = re.compile(r'[<>:"|?*\\]')
_WHITESPACE_RE = re.compile(r"\s+")
_DIGIT_RE = re.compile(r"\d")

AUTHOR_FIRST_STYLES = {"author_first", "author_based", "hybrid"}


def sanitize_filename(name: str) -> str:
    return _WHITESPACE_RE.sub(" ", _INVALID_CHARS_RE.sub("", name)).strip()


def add_numbering(name: str) -> str:
    path = PurePosixPath(name)
    return f"{tuning.NUMBERING_PREFIX}{path.stem}{path.suffix}"


def validate_request(kinds: Iterable[str], min_confidence: float, max_count: int) -> List[str]:
    requested = list(kinds)
    unknown = [k for k in requested if k not in REQUEST_KINDS]
    if unknown:
        raise InvalidRequestError(f"Unknown suggestion type(s): {', '.join(map(str, unknown))}")
    if not 0.0 <= float(min_confidence) <= 1.0:
        raise InvalidRequestError(f"min_confidence must be within [0, 1], got {min_confidence}")
    if int(max_count) < 0:
        raise InvalidRequestError(f"max_suggestions must be non-negative, got {max_count}")
    return requested


@dataclass
class SuggestionEngine:
    """Build ranked suggestions from learned patterns and preferences."""

    patterns: PatternStore
    preferences: PreferenceModel
    id_factory: Callable[[], str] = field(default=lambda: new_id("sug"))

    def generate(
        self,
        files: Iterable[FileDescriptor],
        kinds: Iterable[str],
        min_confidence: float = tuning.DEFAULT_MIN_CONFIDENCE,
        max_count: int = tuning.DEFAULT_MAX_SUGGESTIONS,
    ) -> List[SmartSuggestion]:
        requested = validate_request(kinds, min_confidence, max_count)
        generators: Dict[str, Callable[[FileDescriptor], List[SmartSuggestion]]] = {
            "naming": self._naming_suggestions,
            "organization": self._organization_suggestions,
            "metadata": self._metadata_suggestions,
            "conversion": self._conversion_suggestions,
            "series_detection": lambda _file: [],
        }

        candidates: List[SmartSuggestion] = []
        for file in files:
            for kind in requested:
                candidates.extend(generators[kind](file))

        kept = [s for s in candidates if s.confidence >= float(min_confidence)]
        ranked = sorted(kept, key=lambda s: s.confidence, reverse=True)
        return ranked[: int(max_count)]

    # ------------------------------------------------------------------
    # Generators
    def _naming_suggestions(self, file: FileDescriptor) -> List[SmartSuggestion]:
        suggestions: List[SmartSuggestion] = []
        for pattern in self.patterns.by_kind("naming"):
            if pattern.confidence <= tuning.NAMING_PATTERN_MIN_CONFIDENCE:
                continue
            suggestion = self._naming_suggestion(file, pattern)
            if suggestion is not None:
                suggestions.append(suggestion)
        return suggestions

    def _naming_suggestion(self, file: FileDescriptor, pattern: Pattern) -> Optional[SmartSuggestion]:
        if pattern.key != "add_numbering" or _DIGIT_RE.search(PurePosixPath(file.name).stem):
            return None
        return SmartSuggestion(
            id=self.id_factory(),
            kind="rename",
            description=f'Add numbering to "{file.name}" based on learned pattern',
            action={
                "operation": "rename",
                "current_path": file.path,
                "suggested_name": add_numbering(file.name),
            },
            confidence=round(pattern.confidence * tuning.NAMING_CONFIDENCE_FACTOR, 6),
            reasoning=(
                f'Pattern "{pattern.key}" ({pattern.id}) suggests adding numbering '
                f"(used {pattern.frequency} times)"
            ),
            patterns=[pattern.id],
        )

    def _organization_suggestions(self, file: FileDescriptor) -> List[SmartSuggestion]:
        metadata = file.metadata
        if metadata is None or not metadata.author or not metadata.series:
            return []

        style = self.preferences.value_of(ORGANIZATION_STYLE_KEY, tuning.DEFAULT_ORGANIZATION_STYLE)
        if style not in AUTHOR_FIRST_STYLES:
            return []

        strength = self.preferences.strength_of(ORGANIZATION_STYLE_KEY, tuning.DEFAULT_PREFERENCE_STRENGTH)
        author = sanitize_filename(metadata.author)
        series = sanitize_filename(metadata.series)
        return [
            SmartSuggestion(
                id=self.id_factory(),
                kind="move",
                description=f"Move to {tuning.AUTHOR_ROOT_SEGMENT}/{metadata.author}/{metadata.series}/",
                action={
                    "operation": "move",
                    "current_path": file.path,
                    "suggested_path": f"{tuning.AUTHOR_ROOT_SEGMENT}/{author}/{series}/",
                },
                confidence=round(tuning.ORGANIZATION_BASE_CONFIDENCE * strength, 6),
                reasoning="Based on metadata and learned preferences for author-first organization",
                patterns=["metadata_organization"],
            )
        ]

    def _metadata_suggestions(self, file: FileDescriptor) -> List[SmartSuggestion]:
        if file.is_directory or file.extension not in tuning.AUDIO_EXTENSIONS:
            return []
        if file.metadata is not None and file.metadata.confidence >= tuning.METADATA_CONFIDENCE_THRESHOLD:
            return []
        return [
            SmartSuggestion(
                id=self.id_factory(),
                kind="metadata",
                description="Enhance metadata for better organization",
                action={
                    "operation": "extract_metadata",
                    "file_path": file.path,
                    "enhance_from_filename": True,
                },
                confidence=float(tuning.METADATA_SUGGESTION_CONFIDENCE),
                reasoning="Low metadata confidence detected",
                patterns=["metadata_enhancement"],
            )
        ]

    def _conversion_suggestions(self, file: FileDescriptor) -> List[SmartSuggestion]:
        pref = self.preferences.get(PREFER_M4B_KEY)
        if pref is None or pref.preference != "true":
            return []
        extension = file.extension
        if file.is_directory or extension not in tuning.LOSSY_CONVERTIBLE_EXTENSIONS:
            return []
        output = str(PurePosixPath(file.path.replace("\\", "/")).with_suffix(".m4b"))
        return [
            SmartSuggestion(
                id=self.id_factory(),
                kind="convert",
                description="Convert to M4B format based on preferences",
                action={
                    "operation": "convert_to_m4b",
                    "input_file": file.path,
                    "output_file": output,
                },
                confidence=pref.strength,
                reasoning="User prefers M4B format for audiobooks",
                patterns=["conversion_preference"],
            )
        ]
