"""Data model shared by the fusion, learning and suggestion services.

Everything that is persisted round-trips through ``to_dict``/``from_dict``
using plain JSON types.  Timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypedDict

from . import tuning

SCHEMA_VERSION = "1.0.0"

ACTION_KINDS: Tuple[str, ...] = ("rename", "move", "organize", "convert", "metadata_edit", "structure_change")
OUTCOMES: Tuple[str, ...] = ("accepted", "rejected", "modified")
REQUEST_KINDS: Tuple[str, ...] = ("naming", "organization", "metadata", "conversion", "series_detection")
LEARNING_MODES: Tuple[str, ...] = ("explicit", "adaptive", "conservative")
PROVENANCES: Tuple[str, ...] = ("tag", "filename", "fused")


class InvalidRequestError(ValueError):
    """Raised when a caller passes an unknown kind, mode or out-of-range value."""


def _clamp(val: float, min_val: float = 0.0, max_val: float = 1.0) -> float:
    """Clamp val between min_val and max_val."""
    return max(min_val, min(max_val, val))


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def bounded_append(examples: List[str], new_examples: List[str], limit: Optional[int] = None) -> List[str]:
    """Append examples and keep only the most recent ``limit`` entries."""
    cap = int(limit if limit is not None else tuning.MAX_EXAMPLES)
    merged = list(examples) + [str(e) for e in new_examples]
    return merged[-cap:] if cap > 0 else []


def normalize_extension(extension: Optional[str], name: str, is_directory: bool = False) -> Optional[str]:
    """Lower-case ``extension`` with a leading dot, taken from ``name`` when absent."""
    if is_directory:
        return None
    ext = str(extension).strip().lower() if extension else PurePosixPath(name.replace("\\", "/")).suffix.lower()
    if not ext:
        return None
    return ext if ext.startswith(".") else f".{ext}"


# ---------------------------------------------------------------------------
# Metadata
@dataclass(frozen=True)
class MetadataEstimate:
    """One estimate of a file's identity with a confidence and provenance."""

    title: Optional[str] = None
    author: Optional[str] = None
    narrator: Optional[str] = None
    series: Optional[str] = None
    series_number: Optional[int] = None
    duration: Optional[float] = None
    genre: Optional[str] = None
    publisher: Optional[str] = None
    release_date: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    isbn: Optional[str] = None
    confidence: float = 0.0
    provenance: str = "filename"

    def __post_init__(self) -> None:
        if self.provenance not in PROVENANCES:
            raise InvalidRequestError(f"Unknown provenance: {self.provenance}")
        object.__setattr__(self, "confidence", _clamp(float(self.confidence or 0.0)))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MetadataEstimate":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class FileDescriptor:
    """A file or directory as reported by the scanning collaborator."""

    path: str
    name: str
    size: int = 0
    is_directory: bool = False
    extension: Optional[str] = None
    metadata: Optional[MetadataEstimate] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "extension", normalize_extension(self.extension, self.name, self.is_directory))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "is_directory": self.is_directory,
            "extension": self.extension,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileDescriptor":
        """Build a descriptor from caller input, rejecting malformed fields."""
        if not isinstance(data, Mapping) or not data.get("path"):
            raise InvalidRequestError("File entries need at least a path")
        metadata = data.get("metadata")
        extension = data.get("extension")
        try:
            return cls(
                path=str(data["path"]),
                name=str(data.get("name") or str(data["path"]).replace("\\", "/").rsplit("/", 1)[-1]),
                size=int(data.get("size", 0) or 0),
                is_directory=bool(data.get("is_directory", False)),
                extension=str(extension) if extension else None,
                metadata=MetadataEstimate.from_dict(metadata) if isinstance(metadata, Mapping) else None,
            )
        except InvalidRequestError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidRequestError(f"Invalid file entry {data.get('path')!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Recorded actions (context is a tagged union keyed by action kind)
@dataclass(frozen=True)
class ActionContext:
    original_path: str
    reasoning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class PathChangeContext(ActionContext):
    """rename / move / organize / structure_change."""

    new_path: Optional[str] = None


@dataclass(frozen=True)
class ConversionContext(ActionContext):
    """convert: ``new_path`` is the produced output file."""

    new_path: Optional[str] = None


@dataclass(frozen=True)
class MetadataEditContext(ActionContext):
    metadata: Dict[str, Any] = field(default_factory=dict)


CONTEXT_TYPES: Dict[str, Type[ActionContext]] = {
    "rename": PathChangeContext,
    "move": PathChangeContext,
    "organize": PathChangeContext,
    "structure_change": PathChangeContext,
    "convert": ConversionContext,
    "metadata_edit": MetadataEditContext,
}


def build_context(action_kind: str, payload: Mapping[str, Any]) -> ActionContext:
    """Build the context variant for ``action_kind`` from a loose mapping."""
    if action_kind not in CONTEXT_TYPES:
        raise InvalidRequestError(f"Unknown action kind: {action_kind}")
    if not isinstance(payload, Mapping):
        raise InvalidRequestError("Action context must be a mapping")
    original = payload.get("original_path", payload.get("originalPath"))
    if not original:
        raise InvalidRequestError("Action context requires original_path")
    context_type = CONTEXT_TYPES[action_kind]
    reasoning = payload.get("reasoning")
    kwargs: Dict[str, Any] = {
        "original_path": str(original),
        "reasoning": str(reasoning) if reasoning is not None else None,
    }
    if context_type is MetadataEditContext:
        metadata = payload.get("metadata") or {}
        kwargs["metadata"] = dict(metadata) if isinstance(metadata, Mapping) else {}
    else:
        new_path = payload.get("new_path", payload.get("newPath"))
        kwargs["new_path"] = str(new_path) if new_path else None
    return context_type(**kwargs)


@dataclass(frozen=True)
class UserAction:
    """Immutable record of one user-observed operation."""

    id: str
    timestamp: int
    action_kind: str
    context: ActionContext
    outcome: str
    feedback: Optional[str] = None

    @classmethod
    def create(
        cls,
        action_kind: str,
        context: Mapping[str, Any],
        outcome: str,
        timestamp: int,
        feedback: Optional[str] = None,
    ) -> "UserAction":
        if outcome not in OUTCOMES:
            raise InvalidRequestError(f"Unknown outcome: {outcome}")
        return cls(
            id=new_id("act"),
            timestamp=int(timestamp),
            action_kind=action_kind,
            context=build_context(action_kind, context),
            outcome=outcome,
            feedback=feedback,
        )

    @property
    def new_path(self) -> Optional[str]:
        return getattr(self.context, "new_path", None)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "action_kind": self.action_kind,
            "context": self.context.to_dict(),
            "outcome": self.outcome,
        }
        if self.feedback is not None:
            data["feedback"] = self.feedback
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserAction":
        kind = str(data["action_kind"])
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            action_kind=kind,
            context=build_context(kind, data.get("context") or {}),
            outcome=str(data["outcome"]),
            feedback=data.get("feedback"),
        )


# ---------------------------------------------------------------------------
# Learned state
@dataclass
class Pattern:
    """A recurring transformation identified by (kind, key)."""

    id: str
    kind: str
    key: str
    confidence: float
    frequency: int
    last_seen: int
    context: Dict[str, Any] = field(default_factory=dict)
    examples: List[str] = field(default_factory=list)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.kind, self.key)

    def reinforce(self, examples: List[str], now: int) -> None:
        self.frequency += 1
        self.confidence = round(min(1.0, self.confidence + tuning.PATTERN_CONFIDENCE_STEP), 6)
        self.last_seen = int(now)
        self.examples = bounded_append(self.examples, examples)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "key": self.key,
            "confidence": self.confidence,
            "frequency": self.frequency,
            "last_seen": self.last_seen,
            "context": dict(self.context),
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Pattern":
        return cls(
            id=str(data["id"]),
            kind=str(data["kind"]),
            key=str(data["key"]),
            confidence=_clamp(float(data.get("confidence", 0.0))),
            frequency=max(1, int(data.get("frequency", 1))),
            last_seen=int(data.get("last_seen", 0)),
            context=dict(data.get("context") or {}),
            examples=[str(e) for e in data.get("examples", [])][-tuning.MAX_EXAMPLES:],
        )


@dataclass
class UserPreference:
    category: str
    preference: str
    strength: float
    adaptability: float
    last_updated: int
    examples: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "preference": self.preference,
            "strength": self.strength,
            "adaptability": self.adaptability,
            "last_updated": self.last_updated,
            "examples": list(self.examples),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserPreference":
        return cls(
            category=str(data["category"]),
            preference=str(data["preference"]),
            strength=_clamp(float(data.get("strength", 0.0))),
            adaptability=_clamp(float(data.get("adaptability", 0.0))),
            last_updated=int(data.get("last_updated", 0)),
            examples=[str(e) for e in data.get("examples", [])],
        )


# ---------------------------------------------------------------------------
# Suggestions
@dataclass(frozen=True)
class SuggestionRecord:
    id: str
    timestamp: int
    kind: str
    suggestion: Dict[str, Any]
    confidence: float
    reasoning: str
    accepted: bool = False
    feedback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "suggestion": dict(self.suggestion),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "accepted": self.accepted,
        }
        if self.feedback is not None:
            data["feedback"] = self.feedback
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SuggestionRecord":
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            kind=str(data["kind"]),
            suggestion=dict(data.get("suggestion") or {}),
            confidence=float(data.get("confidence", 0.0)),
            reasoning=str(data.get("reasoning", "")),
            accepted=bool(data.get("accepted", False)),
            feedback=data.get("feedback"),
        )


@dataclass(frozen=True)
class SmartSuggestion:
    id: str
    kind: str
    description: str
    action: Dict[str, Any]
    confidence: float
    reasoning: str
    patterns: List[str] = field(default_factory=list)
    alternatives: List["SmartSuggestion"] = field(default_factory=list)

    def to_record(self, timestamp: int) -> SuggestionRecord:
        return SuggestionRecord(
            id=self.id,
            timestamp=int(timestamp),
            kind=self.kind,
            suggestion=dict(self.action),
            confidence=self.confidence,
            reasoning=self.reasoning,
            accepted=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "description": self.description,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "patterns": list(self.patterns),
            "action": dict(self.action),
        }
        if self.alternatives:
            data["alternatives"] = [alt.to_dict() for alt in self.alternatives]
        return data


# ---------------------------------------------------------------------------
# Aggregate root
@dataclass
class LearningStatistics:
    total_actions: int = 0
    acceptance_rate: float = 0.0
    common_patterns: List[str] = field(default_factory=list)
    preferred_structures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "acceptance_rate": self.acceptance_rate,
            "common_patterns": list(self.common_patterns),
            "preferred_structures": list(self.preferred_structures),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LearningStatistics":
        return cls(
            total_actions=int(data.get("total_actions", 0)),
            acceptance_rate=float(data.get("acceptance_rate", 0.0)),
            common_patterns=[str(p) for p in data.get("common_patterns", [])],
            preferred_structures=[str(p) for p in data.get("preferred_structures", [])],
        )


@dataclass
class LearningData:
    """Owns the action log, the learned patterns and the suggestion log."""

    version: str = SCHEMA_VERSION
    user_actions: List[UserAction] = field(default_factory=list)
    detected_patterns: List[Pattern] = field(default_factory=list)
    suggestions: List[SuggestionRecord] = field(default_factory=list)
    statistics: LearningStatistics = field(default_factory=LearningStatistics)

    def record_action(self, action: UserAction) -> None:
        self.user_actions.append(action)
        self.statistics.total_actions += 1
        accepted = sum(1 for a in self.user_actions if a.outcome == "accepted")
        self.statistics.acceptance_rate = accepted / len(self.user_actions)

    def record_suggestion(self, record: SuggestionRecord) -> None:
        self.suggestions.append(record)

    def refresh_pattern_statistics(self) -> None:
        ranked = sorted(self.detected_patterns, key=lambda p: (-p.frequency, -p.last_seen))
        self.statistics.common_patterns = [p.key for p in ranked[: tuning.COMMON_PATTERNS_LIMIT]]
        self.statistics.preferred_structures = [
            p.key
            for p in ranked
            if p.kind == "organization" and p.confidence > tuning.NAMING_PATTERN_MIN_CONFIDENCE
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "user_actions": [a.to_dict() for a in self.user_actions],
            "detected_patterns": [p.to_dict() for p in self.detected_patterns],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "statistics": self.statistics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LearningData":
        return cls(
            version=str(data.get("version") or SCHEMA_VERSION),
            user_actions=[UserAction.from_dict(a) for a in data.get("user_actions", [])],
            detected_patterns=[Pattern.from_dict(p) for p in data.get("detected_patterns", [])],
            suggestions=[SuggestionRecord.from_dict(s) for s in data.get("suggestions", [])],
            statistics=LearningStatistics.from_dict(data.get("statistics") or {}),
        )


class SuggestionBatch(TypedDict, total=False):
    target_path: str
    suggestion_types: list[str]
    min_confidence: float
    max_suggestions: int
    total_suggestions: int
    suggestions: list[dict[str, Any]]
