"""Persistence of the learned state.

Two JSON documents are owned by Shelf OS and fully rewritten on every save:

* ``.shelf_learning_data.json``: the action log, learned patterns, the
  suggestion log and summary statistics;
* ``.shelf_user_preferences.json``: a flat map of preference key to
  preference record.

Loading never fails.  A missing document yields an empty default; an
unreadable or schema-invalid one is logged as a warning and replaced by
the default.  Saving writes a temp file and swaps it in with
:func:`os.replace`; write failures are logged and reported through the
return value while the in-memory state stays authoritative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from .config_service import SCHEMA_DIR, _load_json, _save_json, _validate_json
from .models import LearningData
from .preferences import PreferenceModel

logger = logging.getLogger(__name__)

LEARNING_DATA_FILENAME = ".shelf_learning_data.json"
PREFERENCES_FILENAME = ".shelf_user_preferences.json"


@dataclass
class StateService:
    """Load and save the learning-data and preference documents."""

    state_dir: Path
    schema_dir: Path = SCHEMA_DIR
    learning_data_filename: str = LEARNING_DATA_FILENAME
    preferences_filename: str = PREFERENCES_FILENAME

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir)
        self.schema_dir = Path(self.schema_dir)

    @property
    def learning_data_path(self) -> Path:
        return self.state_dir / self.learning_data_filename

    @property
    def preferences_path(self) -> Path:
        return self.state_dir / self.preferences_filename

    def _read_document(self, path: Path, schema_name: str) -> Optional[Any]:
        data = _load_json(path)
        if data is None:
            return None
        schema_path = self.schema_dir / schema_name
        if schema_path.exists():
            _validate_json(data, schema_path)
        return data

    # ------------------------------------------------------------------
    def load_learning_data(self) -> LearningData:
        path = self.learning_data_path
        try:
            data = self._read_document(path, "learning_data.schema.json")
            if data is None:
                return LearningData()
            return LearningData.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding malformed learning data %s: %s", path, exc)
            return LearningData()

    def load_preferences(self, clock: Optional[Callable[[], int]] = None) -> PreferenceModel:
        path = self.preferences_path
        try:
            data = self._read_document(path, "preferences.schema.json")
            if data is None:
                return PreferenceModel(clock=clock)
            return PreferenceModel.from_dict(data, clock=clock)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Discarding malformed preferences %s: %s", path, exc)
            return PreferenceModel(clock=clock)

    # ------------------------------------------------------------------
    def _write_document(self, data: Any, path: Path) -> bool:
        try:
            _save_json(data, path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save %s: %s", path, exc)
            return False
        return True

    def save_learning_data(self, learning_data: LearningData) -> bool:
        return self._write_document(learning_data.to_dict(), self.learning_data_path)

    def save_preferences(self, preferences: PreferenceModel) -> bool:
        return self._write_document(preferences.to_dict(), self.preferences_path)
