import sys
from pathlib import Path

import pytest

# Add the src directory to sys.path so that shelf_os can be imported
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from shelf_os.models import LearningData, Pattern, UserAction
from shelf_os.patterns import (
    PatternLearner,
    PatternStore,
    classify_move,
    classify_naming_change,
    detect_naming_change,
    parse_name_parts,
)


class FakeClock:
    def __init__(self, now: int = 1_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def make_learner(data: LearningData = None, clock: FakeClock = None) -> PatternLearner:
    return PatternLearner(PatternStore(data or LearningData(), clock or FakeClock()))


def action(kind: str, original: str, new: str, outcome: str = "accepted") -> UserAction:
    return UserAction.create(kind, {"original_path": original, "new_path": new}, outcome, timestamp=1_000)


# ---------------------------------------------------------------------------
# Name analysis

def test_parse_name_parts():
    parts = parse_name_parts("01 - Chapter One")
    assert parts.number == "01"
    assert parts.separator == " "
    assert parts.base == "Chapter One"

    parts = parse_name_parts("01-chapter")
    assert parts.separator == "-"
    assert parts.base == "chapter"


def test_separator_change_is_classified():
    assert detect_naming_change("01-chapter", "01 - Chapter One")
    assert classify_naming_change("01-chapter", "01 - Chapter One") == "change_separator_dash_to_space"


def test_added_number_is_classified():
    assert classify_naming_change("chapter", "01 - Chapter") == "add_numbering"


def test_identical_base_is_not_a_change():
    assert not detect_naming_change("chapter one", "01 chapter one")


def test_classify_move():
    assert classify_move("Inbox/dune.mp3", "Authors/Frank Herbert/Dune/dune.mp3") == "move_to_author_structure"
    assert classify_move("Inbox/dune.mp3", "Series/Dune/dune.mp3") == "move_to_series_structure"
    assert classify_move("Series/Dune/dune.mp3", "Series/Dune/Book 1/dune.mp3") == "organize_into_subdirectories"
    assert classify_move("a/x.mp3", "b/x.mp3") is None


# ---------------------------------------------------------------------------
# Learning

def test_rename_learned_twice_reinforces_one_pattern():
    learner = make_learner()
    for _ in range(2):
        learner.learn_from_action(action("rename", "Library/01-chapter.mp3", "Library/01 - Chapter One.mp3"))

    patterns = list(learner.store)
    assert len(patterns) == 1
    pattern = patterns[0]
    assert pattern.kind == "naming"
    assert pattern.key == "change_separator_dash_to_space"
    assert pattern.frequency == 2
    assert pattern.confidence == pytest.approx(0.8)
    assert pattern.examples == ["01 - Chapter One.mp3", "01 - Chapter One.mp3"]


def test_confidence_is_capped_and_examples_bounded():
    learner = make_learner()
    confidences = []
    for i in range(1, 13):
        learner.learn_from_action(action("rename", "Dune/chapter.mp3", f"Dune/{i:02d} - Chapter.mp3"))
        confidences.append(learner.store.get("naming", "add_numbering").confidence)

    pattern = learner.store.get("naming", "add_numbering")
    assert pattern.frequency == 12
    assert pattern.confidence == 1.0
    assert confidences == sorted(confidences)
    assert len(pattern.examples) == 10
    assert pattern.examples[0] == "03 - Chapter.mp3"
    assert pattern.examples[-1] == "12 - Chapter.mp3"


def test_move_creates_organization_pattern():
    learner = make_learner()
    created = learner.learn_from_action(
        action("move", "Inbox/dune.mp3", "Authors/Frank Herbert/Dune/dune.mp3")
    )
    assert [p.key for p in created] == ["move_to_author_structure"]
    assert created[0].confidence == pytest.approx(0.8)
    assert created[0].context["dest_path"] == "Authors/Frank Herbert/Dune/dune.mp3"


def test_move_without_structure_change_learns_nothing():
    learner = make_learner()
    assert learner.learn_from_action(action("move", "a/x.mp3", "b/x.mp3")) == []
    assert len(learner.store) == 0


def test_convert_creates_conversion_pattern():
    learner = make_learner()
    created = learner.learn_from_action(action("convert", "Dune/dune.mp3", "Dune/dune.m4b"))
    assert [(p.kind, p.key) for p in created] == [("conversion", "convert_mp3_to_m4b")]
    assert created[0].confidence == pytest.approx(0.7)


def test_recent_patterns_returns_last_five():
    learner = make_learner()
    for ext in ("mp3", "ogg", "m4a", "flac", "wav", "aac", "opus"):
        learner.learn_from_action(action("convert", f"x/book.{ext}", "x/book.m4b"))
    keys = [p.key for p in learner.recent_patterns()]
    assert keys == [
        "convert_m4a_to_m4b",
        "convert_flac_to_m4b",
        "convert_wav_to_m4b",
        "convert_aac_to_m4b",
        "convert_opus_to_m4b",
    ]


def test_touching_a_pattern_moves_it_to_most_recent():
    learner = make_learner()
    learner.learn_from_action(action("convert", "x/a.mp3", "x/a.m4b"))
    learner.learn_from_action(action("convert", "x/a.ogg", "x/a.m4b"))
    learner.learn_from_action(action("convert", "x/b.mp3", "x/b.m4b"))
    assert [p.key for p in learner.recent_patterns()] == ["convert_ogg_to_m4b", "convert_mp3_to_m4b"]


# ---------------------------------------------------------------------------
# Store

def test_duplicate_identities_are_dropped_on_load():
    data = LearningData(
        detected_patterns=[
            Pattern(id="p1", kind="naming", key="add_numbering", confidence=0.8, frequency=2, last_seen=1),
            Pattern(id="p2", kind="naming", key="add_numbering", confidence=0.7, frequency=1, last_seen=2),
        ]
    )
    store = PatternStore(data, FakeClock())
    assert len(store) == 1
    assert store.get("naming", "add_numbering").id == "p1"
    assert len(data.detected_patterns) == 1


def test_prune_drops_only_stale_low_confidence_patterns():
    clock = FakeClock(0)
    learner = make_learner(clock=clock)
    learner.learn_from_action(action("convert", "x/a.mp3", "x/a.m4b"))
    learner.learn_from_action(action("move", "Inbox/a.mp3", "Authors/A B/a.mp3"))
    clock.now = 100
    learner.learn_from_action(action("convert", "x/a.ogg", "x/a.m4b"))

    removed = learner.store.prune(cutoff=50, min_confidence=0.75)

    assert [p.key for p in removed] == ["convert_mp3_to_m4b"]
    assert learner.store.get("conversion", "convert_mp3_to_m4b") is None
    assert learner.store.get("organization", "move_to_author_structure") is not None
    assert learner.store.get("conversion", "convert_ogg_to_m4b") is not None
    assert "convert_mp3_to_m4b" not in [p.key for p in learner.recent_patterns()]
