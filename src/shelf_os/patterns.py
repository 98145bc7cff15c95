"""Pattern store and pattern learning for Shelf OS.

Patterns are learned from recorded user actions:

* a **rename** yields a *naming* pattern describing the transformation
  (``add_numbering``, ``change_separator_<old>_to_<new>`` or
  ``general_rename``);
* a **move** yields an *organization* pattern describing the target
  structure (``move_to_author_structure``, ``move_to_series_structure`` or
  ``organize_into_subdirectories``);
* a **convert** yields a *conversion* pattern ``convert_<from>_to_<to>``.

Every pattern is identified by ``(kind, key)``.  Observing an identity for
the first time creates it with the kind's initial confidence; every repeat
observation bumps its frequency, raises its confidence by a fixed step
(capped at 1.0) and appends the new examples, keeping the most recent ten.
Patterns are never removed implicitly; :meth:`PatternStore.prune` is the
only way to drop stale ones.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from . import tuning
from .models import LearningData, Pattern, UserAction, new_id

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"\d+")
_SEPARATOR_RE = re.compile(r"[-_.\s]")
_SEPARATOR_RUN_RE = re.compile(r"[-_.\s]+")

SEPARATOR_NAMES: Dict[str, str] = {
    " ": "space",
    "-": "dash",
    "_": "underscore",
    ".": "dot",
}


@dataclass(frozen=True)
class NameParts:
    base: str
    number: Optional[str]
    separator: str


@dataclass(frozen=True)
class PatternCandidate:
    kind: str
    key: str
    confidence: float
    context: Dict[str, Any] = field(default_factory=dict)
    examples: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Name / path analysis
def _posix(path: str) -> PurePosixPath:
    return PurePosixPath(str(path or "").replace("\\", "/"))


def parse_name_parts(name: str) -> NameParts:
    """Split a base filename into normalized text, first number and dominant separator."""
    number = _NUMBER_RE.search(name)
    separators = _SEPARATOR_RE.findall(name)
    if separators:
        counts = Counter(" " if s.isspace() else s for s in separators)
        top = max(counts.values())
        dominant = next(s for s in (" " if c.isspace() else c for c in separators) if counts[s] == top)
    else:
        dominant = " "
    base = _SEPARATOR_RUN_RE.sub(" ", _NUMBER_RE.sub("", name, count=1)).strip()
    return NameParts(base=base, number=number.group(0) if number else None, separator=dominant)


def detect_naming_change(old_name: str, new_name: str) -> bool:
    old_parts = parse_name_parts(old_name)
    new_parts = parse_name_parts(new_name)
    return old_parts.base != new_parts.base or old_parts.separator != new_parts.separator


def classify_naming_change(old_name: str, new_name: str) -> str:
    old_parts = parse_name_parts(old_name)
    new_parts = parse_name_parts(new_name)
    if new_parts.number and not old_parts.number:
        return "add_numbering"
    if new_parts.separator != old_parts.separator:
        old_sep = SEPARATOR_NAMES.get(old_parts.separator, old_parts.separator)
        new_sep = SEPARATOR_NAMES.get(new_parts.separator, new_parts.separator)
        return f"change_separator_{old_sep}_to_{new_sep}"
    return "general_rename"


def classify_move(source_path: str, dest_path: str) -> Optional[str]:
    source_dir = [p for p in _posix(source_path).parent.parts if p not in {"/", "."}]
    dest_dir = [p for p in _posix(dest_path).parent.parts if p not in {"/", "."}]
    if tuning.AUTHOR_ROOT_SEGMENT in dest_dir and tuning.AUTHOR_ROOT_SEGMENT not in source_dir:
        return "move_to_author_structure"
    if tuning.SERIES_ROOT_SEGMENT in dest_dir and tuning.SERIES_ROOT_SEGMENT not in source_dir:
        return "move_to_series_structure"
    if len(dest_dir) > len(source_dir):
        return "organize_into_subdirectories"
    return None


# ---------------------------------------------------------------------------
# Store
class PatternStore:
    """Identity-indexed view over ``LearningData.detected_patterns``."""

    def __init__(self, learning_data: LearningData, clock: Callable[[], int]) -> None:
        self._data = learning_data
        self._clock = clock
        self._index: Dict[Tuple[str, str], Pattern] = {}
        self._recent: List[Pattern] = []
        self._rebuild_index()

    def _rebuild_index(self) -> None:
        self._index = {}
        deduplicated: List[Pattern] = []
        for pattern in self._data.detected_patterns:
            if pattern.identity in self._index:
                logger.warning("Dropping duplicate pattern %s:%s from learning data", pattern.kind, pattern.key)
                continue
            self._index[pattern.identity] = pattern
            deduplicated.append(pattern)
        self._data.detected_patterns[:] = deduplicated

    def __len__(self) -> int:
        return len(self._data.detected_patterns)

    def __iter__(self) -> Iterator[Pattern]:
        return iter(list(self._data.detected_patterns))

    def get(self, kind: str, key: str) -> Optional[Pattern]:
        return self._index.get((kind, key))

    def by_kind(self, kind: str) -> List[Pattern]:
        return [p for p in self._data.detected_patterns if p.kind == kind]

    def observe(self, candidate: PatternCandidate) -> Pattern:
        """Create or reinforce the pattern identified by the candidate."""
        now = self._clock()
        pattern = self._index.get((candidate.kind, candidate.key))
        if pattern is not None:
            pattern.reinforce(list(candidate.examples), now)
            logger.debug(
                "Reinforced pattern %s:%s frequency=%d confidence=%.2f",
                pattern.kind,
                pattern.key,
                pattern.frequency,
                pattern.confidence,
            )
        else:
            pattern = Pattern(
                id=new_id("pat"),
                kind=candidate.kind,
                key=candidate.key,
                confidence=candidate.confidence,
                frequency=1,
                last_seen=now,
                context=dict(candidate.context),
                examples=list(candidate.examples)[-tuning.MAX_EXAMPLES:],
            )
            self._data.detected_patterns.append(pattern)
            self._index[pattern.identity] = pattern
            logger.debug("Created pattern %s:%s", pattern.kind, pattern.key)

        if pattern in self._recent:
            self._recent.remove(pattern)
        self._recent.append(pattern)
        return pattern

    def recent(self, limit: Optional[int] = None) -> List[Pattern]:
        """Last created-or-touched patterns, oldest first."""
        cap = int(limit if limit is not None else tuning.RECENT_PATTERNS_LIMIT)
        return self._recent[-cap:] if cap > 0 else []

    def prune(self, cutoff: int, min_confidence: float) -> List[Pattern]:
        """Drop patterns last seen before ``cutoff`` with confidence below ``min_confidence``."""
        kept: List[Pattern] = []
        removed: List[Pattern] = []
        for pattern in self._data.detected_patterns:
            if pattern.last_seen < cutoff and pattern.confidence < min_confidence:
                removed.append(pattern)
            else:
                kept.append(pattern)
        if removed:
            self._data.detected_patterns[:] = kept
            for pattern in removed:
                self._index.pop(pattern.identity, None)
            self._recent = [p for p in self._recent if p not in removed]
            logger.info("Pruned %d stale pattern(s)", len(removed))
        return removed


# ---------------------------------------------------------------------------
# Learning
class PatternLearner:
    """Derive pattern candidates from user actions and feed them to the store."""

    def __init__(self, store: PatternStore) -> None:
        self.store = store

    def extract_candidates(self, action: UserAction) -> List[PatternCandidate]:
        candidates: List[PatternCandidate] = []
        original = action.context.original_path
        new_path = action.new_path or ""

        if action.action_kind == "rename":
            old_name = _posix(original).stem
            new_name = _posix(new_path).stem
            if new_name and detect_naming_change(old_name, new_name):
                candidates.append(
                    PatternCandidate(
                        kind="naming",
                        key=classify_naming_change(old_name, new_name),
                        confidence=float(tuning.PATTERN_INITIAL_CONFIDENCE["naming"]),
                        context={"action_kind": action.action_kind},
                        examples=[_posix(new_path).name],
                    )
                )

        elif action.action_kind == "move":
            key = classify_move(original, new_path) if new_path else None
            if key:
                candidates.append(
                    PatternCandidate(
                        kind="organization",
                        key=key,
                        confidence=float(tuning.PATTERN_INITIAL_CONFIDENCE["organization"]),
                        context={"source_path": original, "dest_path": new_path},
                        examples=[new_path],
                    )
                )

        elif action.action_kind == "convert":
            source_ext = _posix(original).suffix.lower().lstrip(".")
            target_ext = _posix(new_path).suffix.lower().lstrip(".")
            if source_ext and target_ext and source_ext != target_ext:
                candidates.append(
                    PatternCandidate(
                        kind="conversion",
                        key=f"convert_{source_ext}_to_{target_ext}",
                        confidence=float(tuning.PATTERN_INITIAL_CONFIDENCE["conversion"]),
                        context={"action_kind": action.action_kind},
                        examples=[_posix(new_path).name],
                    )
                )

        return candidates

    def learn_from_action(self, action: UserAction) -> List[Pattern]:
        return [self.store.observe(candidate) for candidate in self.extract_candidates(action)]

    def recent_patterns(self) -> List[Pattern]:
        return self.store.recent()
