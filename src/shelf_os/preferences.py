"""User preference model for Shelf OS.

Preferences are stored flat under ``"<category>.<key>"`` (a scalar value
given directly for a category is stored under the category name itself).
Each preference carries a *strength* (how strongly it is held) and an
*adaptability* (how willing the user is to change it).

Explicit updates always overwrite.  Implicit updates only come from accepted
actions: an accepted rename nudges the ``naming.style`` preference towards
the structure of the new path.  Rejected and modified actions are recorded
by the learning data but never weaken a preference.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from . import tuning
from .models import LEARNING_MODES, InvalidRequestError, UserAction, UserPreference, bounded_append

logger = logging.getLogger(__name__)

NAMING_STYLE_KEY = "naming.style"
ORGANIZATION_STYLE_KEY = "organizationStyle"
PREFER_M4B_KEY = "qualityPreferences.preferM4B"


def stringify_preference(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def infer_naming_style(new_path: str) -> str:
    normalized = str(new_path).replace("\\", "/")
    if f"{tuning.AUTHOR_ROOT_SEGMENT}/" in normalized:
        return "author_first"
    if f"{tuning.SERIES_ROOT_SEGMENT}/" in normalized:
        return "series_first"
    return "hybrid"


class PreferenceModel:
    """Mapping of preference keys to :class:`UserPreference` state."""

    def __init__(
        self,
        preferences: Optional[Dict[str, UserPreference]] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._preferences: Dict[str, UserPreference] = dict(preferences or {})
        self._clock = clock or (lambda: 0)

    def __len__(self) -> int:
        return len(self._preferences)

    def __contains__(self, key: object) -> bool:
        return key in self._preferences

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._preferences))

    def keys(self) -> List[str]:
        return list(self._preferences)

    def items(self) -> List[Tuple[str, UserPreference]]:
        return list(self._preferences.items())

    def get(self, key: str) -> Optional[UserPreference]:
        return self._preferences.get(key)

    def value_of(self, key: str, default: Optional[str] = None) -> Optional[str]:
        pref = self._preferences.get(key)
        return pref.preference if pref is not None else default

    def strength_of(self, key: str, default: float) -> float:
        pref = self._preferences.get(key)
        return pref.strength if pref is not None else default

    # ------------------------------------------------------------------
    # Updates
    def apply_explicit(self, preferences: Mapping[str, Any], learning_mode: str = "adaptive") -> List[str]:
        """Overwrite preferences from a nested category -> key -> value mapping."""
        if learning_mode not in LEARNING_MODES:
            raise InvalidRequestError(f"Unknown learning mode: {learning_mode}")
        if not isinstance(preferences, Mapping):
            raise InvalidRequestError("Preferences must be a mapping of categories")

        strength = tuning.PREFERENCE_STRENGTH.get(learning_mode, tuning.PREFERENCE_STRENGTH["default"])
        adaptability = tuning.PREFERENCE_ADAPTABILITY.get(learning_mode, tuning.PREFERENCE_ADAPTABILITY["default"])
        now = self._clock()

        updated: List[str] = []
        for category, prefs in preferences.items():
            if isinstance(prefs, Mapping):
                entries = [(f"{category}.{key}", value) for key, value in prefs.items()]
            elif prefs is None:
                continue
            else:
                entries = [(str(category), prefs)]
            for pref_key, value in entries:
                self._preferences[pref_key] = UserPreference(
                    category=str(category),
                    preference=stringify_preference(value),
                    strength=float(strength),
                    adaptability=float(adaptability),
                    last_updated=now,
                    examples=[],
                )
                updated.append(pref_key)

        logger.debug("Explicit preference update (%s): %s", learning_mode, updated)
        return updated

    def reinforce_from_action(self, action: UserAction) -> Optional[UserPreference]:
        """Strengthen preferences implied by an accepted action."""
        if action.outcome != "accepted":
            return None
        if action.action_kind != "rename" or not action.new_path:
            return None

        now = self._clock()
        new_path = action.new_path
        existing = self._preferences.get(NAMING_STYLE_KEY)
        if existing is not None:
            existing.strength = round(min(1.0, existing.strength + tuning.IMPLICIT_PREFERENCE_STEP), 6)
            existing.last_updated = now
            existing.examples = bounded_append(existing.examples, [new_path])
            return existing

        created = UserPreference(
            category="naming",
            preference=infer_naming_style(new_path),
            strength=float(tuning.IMPLICIT_PREFERENCE_STEP),
            adaptability=float(tuning.IMPLICIT_PREFERENCE_ADAPTABILITY),
            last_updated=now,
            examples=[new_path],
        )
        self._preferences[NAMING_STYLE_KEY] = created
        return created

    # ------------------------------------------------------------------
    # Persistence helpers
    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {key: pref.to_dict() for key, pref in self._preferences.items()}

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        clock: Optional[Callable[[], int]] = None,
    ) -> "PreferenceModel":
        prefs = {str(key): UserPreference.from_dict(value) for key, value in data.items()}
        return cls(prefs, clock=clock)
