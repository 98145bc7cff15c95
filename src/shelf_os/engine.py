"""Core engine for Shelf OS.

The :class:`ShelfOSEngine` owns the learned state (one
:class:`~shelf_os.models.LearningData` and one
:class:`~shelf_os.preferences.PreferenceModel`) and exposes the operations
an assistant calls:

- ``generate_suggestions``: ranked rename/move/convert/metadata proposals;
- ``learn_from_action``: record a user action and learn from it;
- ``update_preferences``: explicit preference updates;
- ``pattern_insights`` and ``analyze_patterns``: reports over the state;
- ``prune_patterns``: explicit retention pass over stale patterns;
- ``describe_file`` and ``scan_library``: build file descriptors from disk.

Every mutating call saves the affected documents through
:class:`~shelf_os.state_service.StateService` before returning.  The engine
is single-threaded; concurrent writers to the same state directory are not
guarded against.
"""

from __future__ import annotations

import logging
import os
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypedDict, Union

from . import tuning
from .fusion import extract_metadata
from .models import (
    ACTION_KINDS,
    FileDescriptor,
    InvalidRequestError,
    LearningData,
    SuggestionBatch,
    UserAction,
)
from .patterns import PatternLearner, PatternStore
from .preferences import PREFER_M4B_KEY, PreferenceModel
from .state_service import StateService
from .suggestions import SuggestionEngine, validate_request
from .tag_service import TagService

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
INSIGHT_TYPES = ("summary", "patterns", "preferences", "suggestions_performance", "learning_stats")
ANALYSIS_TYPES = ("naming_patterns", "organization_patterns", "user_preferences", "all")

_DIGIT_RE = re.compile(r"\d")

FileInput = Union[FileDescriptor, Mapping[str, Any]]


class InsightReport(TypedDict, total=False):
    insight_type: str
    timeframe: str
    timestamp: int
    data: Any


class AnalysisReport(TypedDict, total=False):
    analysis_type: str
    timestamp: int
    insights: Dict[str, Any]
    predictions: Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_descriptor(item: FileInput) -> FileDescriptor:
    if isinstance(item, FileDescriptor):
        return item
    return FileDescriptor.from_dict(item)


@dataclass
class ShelfOSEngine:
    """Shelf OS engine responsible for learning and suggestions."""

    state_service: StateService
    tag_service: TagService = field(default_factory=TagService)
    clock: Callable[[], int] = _now_ms
    library_root: Optional[Path] = None

    # Internal state
    learning_data: LearningData = field(init=False)
    preferences: PreferenceModel = field(init=False)
    pattern_store: PatternStore = field(init=False)
    learner: PatternLearner = field(init=False)
    suggestion_engine: SuggestionEngine = field(init=False)

    def __post_init__(self) -> None:
        if self.library_root is not None:
            self.library_root = Path(self.library_root)
        self.learning_data = self.state_service.load_learning_data()
        self.preferences = self.state_service.load_preferences(clock=self.clock)
        self.pattern_store = PatternStore(self.learning_data, clock=self.clock)
        self.learner = PatternLearner(self.pattern_store)
        self.suggestion_engine = SuggestionEngine(self.pattern_store, self.preferences)
        logger.debug(
            "Loaded state: %d actions, %d patterns, %d preferences",
            len(self.learning_data.user_actions),
            len(self.pattern_store),
            len(self.preferences),
        )

    # ------------------------------------------------------------------
    # Persistence
    def save(self) -> bool:
        saved_data = self.state_service.save_learning_data(self.learning_data)
        saved_prefs = self.state_service.save_preferences(self.preferences)
        return saved_data and saved_prefs

    def _require_root(self, root: Optional[Path]) -> Path:
        resolved = root if root is not None else self.library_root
        if resolved is None:
            raise InvalidRequestError("No library root configured (use --root or SHELF_OS_ROOT)")
        return Path(resolved)

    # ------------------------------------------------------------------
    # File descriptors
    def describe_file(
        self,
        root: Optional[Path],
        relative_path: str,
        include_metadata: bool = True,
    ) -> FileDescriptor:
        """Build the descriptor of one library-relative path."""
        base = self._require_root(root)
        full_path = base / relative_path
        try:
            stats = full_path.stat()
        except OSError as exc:
            raise InvalidRequestError(f"File not found: {relative_path}") from exc

        name = full_path.name
        if full_path.is_dir():
            return FileDescriptor(path=relative_path, name=name, size=0, is_directory=True)

        extension = full_path.suffix.lower()
        metadata = None
        if include_metadata and extension in tuning.AUDIO_EXTENSIONS:
            metadata = extract_metadata(full_path, self.tag_service, relative_path=relative_path)
        return FileDescriptor(
            path=relative_path,
            name=name,
            size=int(stats.st_size),
            is_directory=False,
            extension=extension,
            metadata=metadata,
        )

    def _walk(
        self,
        root: Path,
        max_depth: int,
        include_metadata: bool,
        scan_root: Optional[Path] = None,
    ) -> List[FileDescriptor]:
        """Walk ``scan_root`` (default ``root``); paths stay relative to ``root``."""
        items: List[FileDescriptor] = []

        def _scan(dir_path: Path, depth: int) -> None:
            if depth > max_depth:
                return
            try:
                with os.scandir(dir_path) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as exc:
                logger.warning("Error reading directory %s: %s", dir_path, exc)
                return
            for entry in entries:
                if entry.name.startswith(".") or entry.name in tuning.IGNORED_NAMES:
                    continue
                full_path = Path(entry.path)
                relative = full_path.relative_to(root).as_posix()
                is_dir = entry.is_dir()
                if is_dir:
                    items.append(FileDescriptor(path=relative, name=entry.name, is_directory=True))
                    _scan(full_path, depth + 1)
                    continue

                extension = full_path.suffix.lower()
                size = 0
                metadata = None
                try:
                    size = int(entry.stat().st_size)
                    if include_metadata and extension in tuning.AUDIO_EXTENSIONS:
                        metadata = extract_metadata(full_path, self.tag_service, relative_path=relative)
                except OSError as exc:
                    logger.warning("Error reading file %s: %s", full_path, exc)
                items.append(
                    FileDescriptor(
                        path=relative,
                        name=entry.name,
                        size=size,
                        is_directory=False,
                        extension=extension,
                        metadata=metadata,
                    )
                )

        _scan(scan_root if scan_root is not None else root, 0)
        return items

    def scan_library(
        self,
        root: Optional[Path] = None,
        subfolder: str = "",
        max_depth: Optional[int] = None,
        include_metadata: bool = False,
    ) -> Dict[str, Any]:
        """Walk the library (or one subfolder) and report what is there."""
        depth = tuning.SCAN_MAX_DEPTH if max_depth is None else int(max_depth)
        if depth < 0:
            raise InvalidRequestError(f"max_depth must be non-negative, got {max_depth}")
        base = self._require_root(root)
        scan_root = base / subfolder if subfolder else base
        if not scan_root.is_dir():
            raise InvalidRequestError(f"Not a directory: {scan_root}")

        files = self._walk(base, depth, include_metadata, scan_root=scan_root)
        return {
            "root_path": str(scan_root),
            "subfolder": subfolder,
            "total_files": len(files),
            "audio_files": sum(1 for f in files if f.extension in tuning.AUDIO_EXTENSIONS),
            "archive_files": sum(1 for f in files if f.extension in tuning.ARCHIVE_EXTENSIONS),
            "directories": sum(1 for f in files if f.is_directory),
            "files": [f.to_dict() for f in files],
        }

    # ------------------------------------------------------------------
    # Suggestions
    def generate_suggestions(
        self,
        files: Optional[Iterable[FileInput]] = None,
        suggestion_types: Optional[Iterable[str]] = None,
        min_confidence: Optional[float] = None,
        max_suggestions: Optional[int] = None,
        target_path: str = "",
    ) -> SuggestionBatch:
        """Rank suggestions for ``files`` (or the target path / whole library).

        Every emitted suggestion is appended to the suggestion log.
        """
        kinds = list(suggestion_types) if suggestion_types is not None else list(tuning.DEFAULT_SUGGESTION_KINDS)
        threshold = tuning.DEFAULT_MIN_CONFIDENCE if min_confidence is None else float(min_confidence)
        limit = tuning.DEFAULT_MAX_SUGGESTIONS if max_suggestions is None else int(max_suggestions)
        validate_request(kinds, threshold, limit)

        if files is not None:
            descriptors = [_as_descriptor(item) for item in files]
        elif target_path:
            descriptors = [self.describe_file(None, target_path, include_metadata=True)]
        else:
            descriptors = self._walk(self._require_root(None), tuning.SUGGESTION_SCAN_DEPTH, include_metadata=True)

        suggestions = self.suggestion_engine.generate(descriptors, kinds, threshold, limit)

        now = self.clock()
        for suggestion in suggestions:
            self.learning_data.record_suggestion(suggestion.to_record(now))
        if suggestions:
            self.state_service.save_learning_data(self.learning_data)
        logger.info("Generated %d suggestion(s) from %d file(s)", len(suggestions), len(descriptors))

        return {
            "target_path": target_path or "entire library",
            "suggestion_types": kinds,
            "min_confidence": threshold,
            "max_suggestions": limit,
            "total_suggestions": len(suggestions),
            "suggestions": [s.to_dict() for s in suggestions],
        }

    # ------------------------------------------------------------------
    # Learning
    def learn_from_action(
        self,
        action_kind: str,
        context: Mapping[str, Any],
        outcome: str,
        feedback: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record one user action, learn patterns and preferences, then save."""
        if action_kind not in ACTION_KINDS:
            raise InvalidRequestError(f"Unknown action kind: {action_kind}")
        action = UserAction.create(action_kind, context, outcome, timestamp=self.clock(), feedback=feedback)

        self.learning_data.record_action(action)
        self.learner.learn_from_action(action)
        self.learning_data.refresh_pattern_statistics()
        self.preferences.reinforce_from_action(action)
        self.save()

        stats = self.learning_data.statistics
        return {
            "status": "learned",
            "action_id": action.id,
            "new_patterns": [p.to_dict() for p in self.learner.recent_patterns()],
            "updated_preferences": self.preferences.keys(),
            "learning_stats": {
                "total_actions": stats.total_actions,
                "acceptance_rate": round(stats.acceptance_rate, 2),
            },
        }

    def update_preferences(self, preferences: Mapping[str, Any], learning_mode: str = "adaptive") -> Dict[str, Any]:
        updated = self.preferences.apply_explicit(preferences, learning_mode)
        self.state_service.save_preferences(self.preferences)
        return {
            "status": "updated",
            "learning_mode": learning_mode,
            "updated_preferences": updated,
            "total_preferences": len(self.preferences),
            "preferences": self.preferences.to_dict(),
        }

    def prune_patterns(
        self,
        max_age_days: Optional[float] = None,
        min_confidence: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Drop patterns unseen for ``max_age_days`` with confidence below ``min_confidence``."""
        days = tuning.PATTERN_RETENTION_DAYS if max_age_days is None else float(max_age_days)
        threshold = tuning.PATTERN_RETENTION_MIN_CONFIDENCE if min_confidence is None else float(min_confidence)
        if days < 0:
            raise InvalidRequestError(f"max_age_days must be non-negative, got {max_age_days}")
        if not 0.0 <= threshold <= 1.0:
            raise InvalidRequestError(f"min_confidence must be within [0, 1], got {min_confidence}")

        cutoff = self.clock() - int(days * DAY_MS)
        removed = self.pattern_store.prune(cutoff, threshold)
        if removed:
            self.learning_data.refresh_pattern_statistics()
            self.state_service.save_learning_data(self.learning_data)
        return {
            "status": "pruned",
            "max_age_days": days,
            "min_confidence": threshold,
            "removed": [{"id": p.id, "kind": p.kind, "key": p.key} for p in removed],
            "remaining": len(self.pattern_store),
        }

    # ------------------------------------------------------------------
    # Insights
    def pattern_insights(self, insight_type: str = "summary", timeframe: str = "month") -> InsightReport:
        if insight_type not in INSIGHT_TYPES:
            raise InvalidRequestError(f"Unknown insight type: {insight_type}")
        days = tuning.TIMEFRAME_DAYS.get(timeframe)
        if days is None:
            logger.warning("Unknown timeframe %r, using month", timeframe)
            days = tuning.TIMEFRAME_DAYS["month"]

        now = self.clock()
        cutoff = now - days * DAY_MS
        builders: Dict[str, Callable[[int], Any]] = {
            "summary": self._insights_summary,
            "patterns": self._insights_patterns,
            "preferences": self._insights_preferences,
            "suggestions_performance": self._insights_suggestions,
            "learning_stats": self._insights_learning,
        }
        return {
            "insight_type": insight_type,
            "timeframe": timeframe,
            "timestamp": now,
            "data": builders[insight_type](cutoff),
        }

    def _recent_actions(self, cutoff: int) -> List[UserAction]:
        return [a for a in self.learning_data.user_actions if a.timestamp > cutoff]

    def _insights_summary(self, cutoff: int) -> Dict[str, Any]:
        actions = self._recent_actions(cutoff)
        patterns = [p for p in self.pattern_store if p.last_seen > cutoff]
        accepted = sum(1 for a in actions if a.outcome == "accepted")
        rejected = sum(1 for a in actions if a.outcome == "rejected")
        counts = Counter(a.action_kind for a in actions)

        recommendations: List[str] = []
        if len(actions) > tuning.QUIET_ACTIVITY_MIN_ACTIONS and len(patterns) < tuning.QUIET_ACTIVITY_MAX_PATTERNS:
            recommendations.append("Consider running pattern analysis to identify optimization opportunities")
        if actions and rejected > len(actions) * tuning.REJECTION_RATE_WARNING:
            recommendations.append("High rejection rate detected - consider adjusting suggestion confidence threshold")

        return {
            "recent_activity": {
                "total_actions": len(actions),
                "acceptance_rate": accepted / len(actions) if actions else 0.0,
                "most_common_action": counts.most_common(1)[0][0] if counts else "none",
            },
            "patterns": {
                "total": len(patterns),
                "high_confidence": sum(1 for p in patterns if p.confidence > tuning.HIGH_CONFIDENCE_PATTERN),
                "emerging": sum(1 for p in patterns if p.frequency < tuning.EMERGING_PATTERN_MAX_FREQUENCY),
            },
            "recommendations": recommendations,
        }

    def _insights_patterns(self, cutoff: int) -> List[Dict[str, Any]]:
        return [
            {
                "id": p.id,
                "kind": p.kind,
                "key": p.key,
                "confidence": p.confidence,
                "frequency": p.frequency,
                "examples": p.examples[:3],
            }
            for p in self.pattern_store
            if p.last_seen > cutoff
        ]

    def _insights_preferences(self, cutoff: int) -> Dict[str, Any]:
        recent = [(key, pref) for key, pref in self.preferences.items() if pref.last_updated > cutoff]
        return {
            "recently_updated": len(recent),
            "strong_preferences": sum(1 for _, p in recent if p.strength > tuning.STRONG_PREFERENCE),
            "adaptable_preferences": sum(1 for _, p in recent if p.adaptability > tuning.STRONG_PREFERENCE),
            "preferences": [dict(key=key, **pref.to_dict()) for key, pref in recent],
        }

    def _insights_suggestions(self, cutoff: int) -> Dict[str, Any]:
        recent = [s for s in self.learning_data.suggestions if s.timestamp > cutoff]
        return {
            "total": len(recent),
            "accepted": sum(1 for s in recent if s.accepted),
            "average_confidence": sum(s.confidence for s in recent) / len(recent) if recent else 0.0,
            "by_kind": dict(Counter(s.kind for s in recent)),
        }

    def _insights_learning(self, cutoff: int) -> Dict[str, Any]:
        actions = self._recent_actions(cutoff)
        if actions:
            accepted = sum(1 for a in actions if a.outcome == "accepted")
            modified = sum(1 for a in actions if a.outcome == "modified")
            adaptation = (accepted + modified * tuning.MODIFIED_OUTCOME_WEIGHT) / len(actions)
        else:
            adaptation = 0.0
        return {
            "learning_velocity": len(actions),
            "pattern_discovery_rate": sum(1 for p in self.pattern_store if p.last_seen > cutoff),
            "adaptation_score": adaptation,
            "confidence": self.learning_data.statistics.acceptance_rate,
        }

    # ------------------------------------------------------------------
    # Library analysis
    def analyze_patterns(
        self,
        files: Optional[Iterable[FileInput]] = None,
        analysis_type: str = "all",
        include_predictions: bool = True,
    ) -> AnalysisReport:
        """Describe the naming/organization habits visible in ``files``.

        Without ``files`` the library root is walked (metadata is not read).
        """
        if analysis_type not in ANALYSIS_TYPES:
            raise InvalidRequestError(f"Unknown analysis type: {analysis_type}")

        wants_naming = analysis_type in ("all", "naming_patterns")
        wants_organization = analysis_type in ("all", "organization_patterns")

        descriptors: List[FileDescriptor] = []
        if files is not None:
            descriptors = [_as_descriptor(item) for item in files]
        elif wants_naming or wants_organization:
            descriptors = self._walk(self._require_root(None), tuning.ANALYSIS_SCAN_DEPTH, include_metadata=False)

        insights: Dict[str, Any] = {}
        if wants_naming:
            insights["naming_patterns"] = self._analyze_naming(descriptors)
        if wants_organization:
            insights["organization_patterns"] = self._analyze_organization(descriptors)
        if analysis_type in ("all", "user_preferences"):
            insights["user_preferences"] = self._analyze_preferences()

        report: AnalysisReport = {
            "analysis_type": analysis_type,
            "timestamp": self.clock(),
            "insights": insights,
        }
        if include_predictions:
            report["predictions"] = self._predictions(descriptors, insights)
        return report

    def _analyze_naming(self, files: List[FileDescriptor]) -> Dict[str, Any]:
        directories = [f for f in files if f.is_directory]
        author_first = sum(1 for d in directories if f"{tuning.AUTHOR_ROOT_SEGMENT}/" in d.path.replace("\\", "/"))
        series_first = sum(1 for d in directories if f"{tuning.SERIES_ROOT_SEGMENT}/" in d.path.replace("\\", "/"))
        numbered = sum(1 for d in directories if _DIGIT_RE.search(d.name))
        confidence = (
            max(author_first, series_first) / len(directories)
            if directories
            else tuning.DEFAULT_STRUCTURE_CONFIDENCE
        )
        return {
            "author_first": author_first,
            "series_first": series_first,
            "numbered": numbered,
            "confidence": round(confidence, 4),
            "learned_patterns": [p.key for p in self.pattern_store.by_kind("naming")],
        }

    def _analyze_organization(self, files: List[FileDescriptor]) -> Dict[str, Any]:
        structures = {"author_based": 0, "series_based": 0, "genre_based": 0, "hybrid": 0}
        for directory in (f for f in files if f.is_directory):
            top = directory.path.replace("\\", "/").split("/", 1)[0]
            if top == tuning.AUTHOR_ROOT_SEGMENT:
                structures["author_based"] += 1
            elif top == tuning.SERIES_ROOT_SEGMENT:
                structures["series_based"] += 1
            elif top == tuning.GENRE_ROOT_SEGMENT:
                structures["genre_based"] += 1
            else:
                structures["hybrid"] += 1

        depths = [f.path.replace("\\", "/").count("/") for f in files if not f.is_directory]
        total_dirs = sum(structures.values())
        confidence = max(structures.values()) / total_dirs if total_dirs else tuning.DEFAULT_STRUCTURE_CONFIDENCE
        return {
            "structures": structures,
            "depth": {
                "average": round(sum(depths) / len(depths), 2) if depths else 0,
                "max": max(depths) if depths else 0,
                "min": min(depths) if depths else 0,
            },
            "confidence": round(confidence, 4),
            "learned_structures": list(self.learning_data.statistics.preferred_structures),
        }

    def _analyze_preferences(self) -> Dict[str, Any]:
        preferences = [
            {
                "key": key,
                "category": pref.category,
                "preference": pref.preference,
                "strength": pref.strength,
                "last_updated": pref.last_updated,
            }
            for key, pref in self.preferences.items()
        ]
        categories: List[str] = []
        for pref in preferences:
            if pref["category"] not in categories:
                categories.append(pref["category"])
        return {
            "total_preferences": len(preferences),
            "categories": categories,
            "preferences": preferences,
        }

    def _predictions(self, files: List[FileDescriptor], insights: Dict[str, Any]) -> Dict[str, Any]:
        strong = sorted(
            (p for p in self.pattern_store if p.confidence >= tuning.PREDICTION_MIN_CONFIDENCE),
            key=lambda p: (-p.confidence, -p.frequency),
        )
        improvements: List[str] = []
        naming = insights.get("naming_patterns")
        if naming is not None and naming["confidence"] < tuning.NAMING_PATTERN_MIN_CONFIDENCE:
            improvements.append("standardize_naming")
        if self.preferences.value_of(PREFER_M4B_KEY) == "true" and any(
            f.extension in tuning.LOSSY_CONVERTIBLE_EXTENSIONS for f in files if not f.is_directory
        ):
            improvements.append("convert_to_m4b")
        return {
            "likely_actions": [p.key for p in strong],
            "suggested_improvements": improvements,
            "confidence": round(sum(p.confidence for p in strong) / len(strong), 2) if strong else 0.0,
        }
