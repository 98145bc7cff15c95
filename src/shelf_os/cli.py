"""Command-line interface for Shelf OS.

Each subcommand delegates to :class:`shelf_os.engine.ShelfOSEngine` and
prints the resulting report as JSON.  Run ``python -m shelf_os --help`` for
usage.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import tuning
from .config_service import ConfigService
from .engine import ANALYSIS_TYPES, INSIGHT_TYPES, ShelfOSEngine
from .models import ACTION_KINDS, LEARNING_MODES, OUTCOMES, REQUEST_KINDS, InvalidRequestError
from .state_service import StateService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelf-os",
        description="Shelf OS - metadata fusion and adaptive suggestions for audiobook libraries",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Common arguments shared by every command
    def add_common(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("--root", help="Library root (overrides SHELF_OS_ROOT and config)")
        subparser.add_argument(
            "--portable",
            "-p",
            action="store_true",
            help="Force portable mode (ignored if portable.flag is present)",
        )
        subparser.add_argument(
            "--verbose",
            action="store_true",
            help="Enable debug logging",
        )

    # suggest
    sp = subparsers.add_parser("suggest", help="Generate ranked suggestions from learned patterns")
    add_common(sp)
    sp.add_argument("--files", help="JSON file with file descriptors (defaults to scanning the library)")
    sp.add_argument("--target", default="", help="Library-relative path to analyze instead of the whole library")
    sp.add_argument(
        "--types",
        nargs="+",
        choices=REQUEST_KINDS,
        default=list(tuning.DEFAULT_SUGGESTION_KINDS),
        help="Suggestion kinds to generate",
    )
    sp.add_argument("--min-confidence", type=float, default=tuning.DEFAULT_MIN_CONFIDENCE)
    sp.add_argument("--max", dest="max_suggestions", type=int, default=tuning.DEFAULT_MAX_SUGGESTIONS)

    # learn
    sp = subparsers.add_parser("learn", help="Record a user action and learn from it")
    add_common(sp)
    sp.add_argument("action_kind", choices=ACTION_KINDS)
    sp.add_argument("original_path", help="Path before the action")
    sp.add_argument("--new-path", help="Path after the action (rename/move/convert)")
    sp.add_argument("--outcome", choices=OUTCOMES, default="accepted")
    sp.add_argument("--feedback", help="Free-form user feedback")
    sp.add_argument("--reasoning", help="Why the action was taken")
    sp.add_argument("--metadata", help="JSON object with the edited metadata (metadata_edit)")

    # prefs
    sp = subparsers.add_parser("prefs", help="Set explicit preferences")
    add_common(sp)
    sp.add_argument("preferences", help='JSON object, e.g. \'{"qualityPreferences": {"preferM4B": true}}\'')
    sp.add_argument("--mode", choices=LEARNING_MODES, default="adaptive", help="Learning mode")

    # insights
    sp = subparsers.add_parser("insights", help="Report on learned patterns and learning progress")
    add_common(sp)
    sp.add_argument("--type", dest="insight_type", choices=INSIGHT_TYPES, default="summary")
    sp.add_argument("--timeframe", choices=sorted(tuning.TIMEFRAME_DAYS), default="month")

    # analyze
    sp = subparsers.add_parser("analyze", help="Analyze naming and organization habits of the library")
    add_common(sp)
    sp.add_argument("--type", dest="analysis_type", choices=ANALYSIS_TYPES, default="all")
    sp.add_argument("--files", help="JSON file with file descriptors (defaults to scanning the library)")
    sp.add_argument("--no-predictions", action="store_true", help="Skip predictions")

    # inspect
    sp = subparsers.add_parser("inspect", help="Describe one file with fused metadata")
    add_common(sp)
    sp.add_argument("path", help="Library-relative path")
    sp.add_argument("--no-metadata", action="store_true", help="Do not read tags")

    # scan
    sp = subparsers.add_parser("scan", help="Walk the library and list files")
    add_common(sp)
    sp.add_argument("--subfolder", default="", help="Library-relative folder to scan")
    sp.add_argument("--max-depth", type=int, default=tuning.SCAN_MAX_DEPTH)
    sp.add_argument("--metadata", action="store_true", help="Read tags of audio files")

    # prune
    sp = subparsers.add_parser("prune", help="Drop stale low-confidence patterns")
    add_common(sp)
    sp.add_argument("--max-age-days", type=float, default=None)
    sp.add_argument("--min-confidence", type=float, default=None)
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_json_argument(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise InvalidRequestError(f"{what} is not valid JSON: {exc}") from exc


def _load_files(path: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """Read file descriptors from a JSON list or a ``scan`` report."""
    if not path:
        return None
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidRequestError(f"Cannot read {path}: {exc}") from exc
    except ValueError as exc:
        raise InvalidRequestError(f"{path} is not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("files")
    if not isinstance(data, list):
        raise InvalidRequestError(f"{path} must hold a list of files or a scan report")
    return data


def _construct_engine(args: argparse.Namespace) -> ShelfOSEngine:
    portable = bool(getattr(args, "portable", False))
    config_service = ConfigService(app_dir=Path.cwd())
    config = config_service.load_config(cli_portable=portable)
    config_service.load_tuning_overrides(config, cli_portable=portable)
    library_root = config_service.resolve_library_root(config, getattr(args, "root", None))
    state_dir = config_service.resolve_state_dir(config, library_root, cli_portable=portable)
    return ShelfOSEngine(state_service=StateService(state_dir), library_root=library_root)


def _run_command(engine: ShelfOSEngine, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "suggest":
        return engine.generate_suggestions(
            files=_load_files(args.files),
            suggestion_types=args.types,
            min_confidence=args.min_confidence,
            max_suggestions=args.max_suggestions,
            target_path=args.target,
        )
    if command == "learn":
        context: Dict[str, Any] = {"original_path": args.original_path}
        if args.new_path:
            context["new_path"] = args.new_path
        if args.reasoning:
            context["reasoning"] = args.reasoning
        if args.metadata:
            context["metadata"] = _parse_json_argument(args.metadata, "--metadata")
        return engine.learn_from_action(args.action_kind, context, args.outcome, feedback=args.feedback)
    if command == "prefs":
        preferences = _parse_json_argument(args.preferences, "preferences")
        return engine.update_preferences(preferences, learning_mode=args.mode)
    if command == "insights":
        return engine.pattern_insights(insight_type=args.insight_type, timeframe=args.timeframe)
    if command == "analyze":
        return engine.analyze_patterns(
            files=_load_files(args.files),
            analysis_type=args.analysis_type,
            include_predictions=not args.no_predictions,
        )
    if command == "inspect":
        return engine.describe_file(None, args.path, include_metadata=not args.no_metadata).to_dict()
    if command == "scan":
        return engine.scan_library(
            subfolder=args.subfolder,
            max_depth=args.max_depth,
            include_metadata=args.metadata,
        )
    if command == "prune":
        return engine.prune_patterns(max_age_days=args.max_age_days, min_confidence=args.min_confidence)
    raise InvalidRequestError(f"unrecognized command {command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(bool(getattr(args, "verbose", False)))
    try:
        engine = _construct_engine(args)
        report = _run_command(engine, args)
    except InvalidRequestError as exc:
        print(f"Error: {exc}")
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
