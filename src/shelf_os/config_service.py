"""Configuration management for Shelf OS.

This module centralises all logic related to finding and loading
configuration files.  It supports both AppData and portable installation
modes, resolves the appropriate configuration directory, and exposes
helper functions to read/write JSON files with JSON schema validation.

Portable mode is controlled via a ``portable.flag`` file located in the
application directory or by passing ``--portable`` to the CLI.  The flag
file takes precedence over the command line.

The library root is resolved from (in order) the ``--root`` argument, the
``SHELF_OS_ROOT`` environment variable and the ``library_root`` config
key.  The learned state lives in ``state_dir`` when configured, otherwise
next to the library.

Example usage::

    from shelf_os.config_service import ConfigService

    config_service = ConfigService(app_dir=Path.cwd())
    cfg = config_service.load_config()
    cfg["library_root"] = "/srv/audiobooks"
    config_service.save_config(cfg)

"""

from __future__ import annotations

import json
import logging
import os
import platform
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from . import tuning

logger = logging.getLogger(__name__)

APP_NAME = "ShelfOS"
ROOT_ENV_VAR = "SHELF_OS_ROOT"
SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"


def _get_appdata_root(app_name: str = APP_NAME) -> Path:
    """Return the platform-specific base directory for config files."""
    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / app_name
        # Fallback to user profile
        return Path.home() / f"AppData/Roaming/{app_name}"
    # On Linux/macOS use XDG_CONFIG_HOME or ~/.config
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / app_name
    return Path.home() / ".config" / app_name


def _load_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _save_json(data: Any, file_path: Path) -> None:
    """Write ``data`` to a temp file next to ``file_path`` and swap it in."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=str(file_path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, file_path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def _validate_json(data: Any, schema_path: Path) -> None:
    """Validate JSON against a schema, raising ``ValueError`` on mismatch."""
    schema = _load_json(schema_path)
    if not schema:
        return
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise ValueError(f"Invalid {schema_path.name.split('.')[0]} document: {exc.message}") from exc


@dataclass
class ConfigService:
    """Resolve and manage Shelf OS configuration."""

    app_dir: Path
    portable_flag_filename: str = "portable.flag"
    config_filename: str = "config.json"
    tuning_filename: str = "tuning.json"
    schema_dir: Path = SCHEMA_DIR
    config_schema_name: str = "config.schema.json"
    _cached_mode: Optional[bool] = field(default=None, init=False, repr=False)

    def _portable_flag_exists(self) -> bool:
        return (Path(self.app_dir) / self.portable_flag_filename).exists()

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """Return ``True`` if portable mode should be used.

        Portable mode is selected if any of the following conditions hold
        (checked in order):

        1. A ``portable.flag`` file exists in the application directory.
        2. ``cli_portable`` is truthy.

        The result is cached for subsequent calls.
        """
        if self._cached_mode is None:
            if self._portable_flag_exists():
                self._cached_mode = True
            else:
                self._cached_mode = bool(cli_portable)
        return self._cached_mode

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        """Return the resolved configuration directory."""
        if self.detect_mode(cli_portable=cli_portable):
            return Path(self.app_dir)
        return _get_appdata_root()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_filename

    def get_schema_path(self, schema_name: str) -> Path:
        return Path(self.schema_dir) / schema_name

    def load_config(self, cli_portable: bool = False) -> Dict[str, Any]:
        """Load configuration from the resolved path, validating against schema.

        An unreadable or invalid file is reported and replaced by an empty
        configuration.
        """
        cfg_path = self.get_config_path(cli_portable)
        try:
            data = _load_json(cfg_path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s (%s). Falling back to defaults.", cfg_path, exc)
            return {}
        cfg: Dict[str, Any] = data if data is not None else {}
        schema_path = self.get_schema_path(self.config_schema_name)
        if schema_path.exists():
            try:
                _validate_json(cfg, schema_path)
            except ValueError as exc:
                logger.warning("%s. Falling back to defaults.", exc)
                cfg = {}
        return cfg

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False) -> None:
        """Write configuration to disk, validating against the schema first."""
        schema_path = self.get_schema_path(self.config_schema_name)
        if schema_path.exists():
            _validate_json(config, schema_path)
        _save_json(config, self.get_config_path(cli_portable))

    # ------------------------------------------------------------------
    # Path resolution
    # ------------------------------------------------------------------
    def resolve_library_root(self, config: Dict[str, Any], cli_root: Optional[str] = None) -> Optional[Path]:
        """Return the library root from CLI, environment or config (first wins)."""
        for candidate in (cli_root, os.environ.get(ROOT_ENV_VAR), config.get("library_root")):
            text = str(candidate or "").strip()
            if text:
                return Path(text).expanduser().resolve()
        return None

    def resolve_state_dir(
        self,
        config: Dict[str, Any],
        library_root: Optional[Path],
        cli_portable: bool = False,
    ) -> Path:
        """Directory holding the learning-data and preference documents."""
        configured = str(config.get("state_dir") or "").strip()
        if configured:
            return Path(configured).expanduser().resolve()
        if library_root is not None:
            return library_root
        return self.get_config_dir(cli_portable)

    # ------------------------------------------------------------------
    # Tuning overrides
    # ------------------------------------------------------------------
    def load_tuning_overrides(self, config: Dict[str, Any], cli_portable: bool = False) -> Optional[Path]:
        """Apply the first ``tuning.json`` found; return its path.

        ``tuning_path`` (a file or a directory) is tried before the
        configuration directory.
        """
        tuning_paths: List[Path] = []
        tuning_path = config.get("tuning_path")
        if tuning_path:
            path_obj = Path(tuning_path).expanduser()
            tuning_paths.append(path_obj if path_obj.suffix.lower() == ".json" else path_obj / self.tuning_filename)
        tuning_paths.append(self.get_config_dir(cli_portable) / self.tuning_filename)

        for path in tuning_paths:
            if not path.exists():
                continue
            try:
                data = _load_json(path)
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable tuning file %s: %s", path, exc)
                continue
            if isinstance(data, dict):
                tuning.apply_overrides(data)
                logger.debug("Applied tuning overrides from %s", path)
                return path
            logger.warning("Ignoring tuning file %s: expected a JSON object", path)
        return None
