"""
Suggestion engine tests: per-kind generators, filtering, ranking and
request validation.

Run with: pytest tests/test_suggestions.py -v
"""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from shelf_os.models import (
    FileDescriptor,
    InvalidRequestError,
    LearningData,
    MetadataEstimate,
    Pattern,
    UserPreference,
)
from shelf_os.patterns import PatternStore
from shelf_os.preferences import PreferenceModel
from shelf_os.suggestions import SuggestionEngine, add_numbering, sanitize_filename


# ============================================================================
# FIXTURES
# ============================================================================

def build_engine(patterns=None, preferences=None) -> SuggestionEngine:
    data = LearningData(detected_patterns=list(patterns or []))
    store = PatternStore(data, clock=lambda: 1_000)
    model = PreferenceModel(dict(preferences or {}), clock=lambda: 1_000)
    return SuggestionEngine(store, model)


def numbering_pattern(confidence: float) -> Pattern:
    return Pattern(
        id="pat_numbering",
        kind="naming",
        key="add_numbering",
        confidence=confidence,
        frequency=3,
        last_seen=1_000,
    )


def preference(category: str, value: str, strength: float) -> UserPreference:
    return UserPreference(
        category=category,
        preference=value,
        strength=strength,
        adaptability=0.7,
        last_updated=1_000,
    )


def audio(path: str, metadata: MetadataEstimate = None, extension: str = ".mp3") -> FileDescriptor:
    return FileDescriptor(
        path=path,
        name=path.rsplit("/", 1)[-1],
        size=1024,
        extension=extension,
        metadata=metadata,
    )


@pytest.fixture
def sanderson() -> MetadataEstimate:
    return MetadataEstimate(
        title="The Final Empire",
        author="Brandon Sanderson",
        series="Mistborn: Era One",
        confidence=0.8,
        provenance="fused",
    )


# ============================================================================
# HELPERS
# ============================================================================

def test_sanitize_filename():
    assert sanitize_filename('Mistborn: Era One') == "Mistborn Era One"
    assert sanitize_filename('  What?  If  ') == "What If"


def test_add_numbering():
    assert add_numbering("chapter.mp3") == "01 - chapter.mp3"


# ============================================================================
# NAMING
# ============================================================================

def test_naming_suggestion_from_strong_pattern():
    engine = build_engine(patterns=[numbering_pattern(0.8)])
    result = engine.generate([audio("Dune/chapter.mp3")], ["naming"], 0.7, 10)
    assert len(result) == 1
    suggestion = result[0]
    assert suggestion.kind == "rename"
    assert suggestion.action["suggested_name"] == "01 - chapter.mp3"
    assert suggestion.confidence == pytest.approx(0.72)
    assert suggestion.patterns == ["pat_numbering"]
    assert "add_numbering" in suggestion.reasoning
    assert "3" in suggestion.reasoning


@pytest.mark.parametrize("name", ["chapter.mp3", "chapter.m4a", "chapter.m4b", "chapter.flac"])
def test_naming_ignores_digits_in_extension(name):
    engine = build_engine(patterns=[numbering_pattern(0.8)])
    extension = "." + name.rsplit(".", 1)[-1]
    result = engine.generate([audio(f"Dune/{name}", extension=extension)], ["naming"], 0.7, 10)
    assert [s.action["suggested_name"] for s in result] == [f"01 - {name}"]


def test_naming_skips_numbered_files_and_weak_patterns():
    engine = build_engine(patterns=[numbering_pattern(0.8)])
    assert engine.generate([audio("Dune/01 chapter.mp3")], ["naming"], 0.0, 10) == []

    weak = build_engine(patterns=[numbering_pattern(0.7)])
    assert weak.generate([audio("Dune/chapter.mp3")], ["naming"], 0.0, 10) == []


# ============================================================================
# ORGANIZATION
# ============================================================================

def test_organization_without_preference_uses_default_strength(sanderson):
    engine = build_engine()
    result = engine.generate([audio("Inbox/final.mp3", sanderson)], ["organization"], 0.3, 10)
    assert len(result) == 1
    assert result[0].kind == "move"
    assert result[0].action["suggested_path"] == "Authors/Brandon Sanderson/Mistborn Era One/"
    assert result[0].confidence == pytest.approx(0.4)
    assert result[0].patterns == ["metadata_organization"]


def test_organization_scales_with_preference_strength(sanderson):
    engine = build_engine(preferences={"organizationStyle": preference("organizationStyle", "author_first", 0.8)})
    result = engine.generate([audio("Inbox/final.mp3", sanderson)], ["organization"], 0.3, 10)
    assert result[0].confidence == pytest.approx(0.64)


@pytest.mark.parametrize("style, expected", [("author_based", 1), ("hybrid", 1), ("series_first", 0)])
def test_organization_respects_style(sanderson, style, expected):
    engine = build_engine(preferences={"organizationStyle": preference("organizationStyle", style, 0.8)})
    result = engine.generate([audio("Inbox/final.mp3", sanderson)], ["organization"], 0.0, 10)
    assert len(result) == expected


def test_organization_needs_author_and_series():
    engine = build_engine()
    partial = MetadataEstimate(author="Brandon Sanderson", confidence=0.8, provenance="tag")
    assert engine.generate([audio("Inbox/final.mp3", partial)], ["organization"], 0.0, 10) == []
    assert engine.generate([audio("Inbox/final.mp3")], ["organization"], 0.0, 10) == []


# ============================================================================
# METADATA
# ============================================================================

def test_metadata_suggestion_for_weak_or_missing_metadata():
    engine = build_engine()
    weak = MetadataEstimate(title="x", confidence=0.3, provenance="filename")
    result = engine.generate([audio("a/x.mp3"), audio("a/y.flac", weak, ".flac")], ["metadata"], 0.5, 10)
    assert [s.action["file_path"] for s in result] == ["a/x.mp3", "a/y.flac"]
    assert all(s.confidence == pytest.approx(0.6) for s in result)
    assert all(s.action["operation"] == "extract_metadata" for s in result)


def test_metadata_skips_confident_and_non_audio(sanderson):
    engine = build_engine()
    files = [
        audio("a/x.mp3", sanderson),
        audio("a/notes.txt", extension=".txt"),
        FileDescriptor(path="a", name="a", is_directory=True),
    ]
    assert engine.generate(files, ["metadata"], 0.0, 10) == []


# ============================================================================
# CONVERSION
# ============================================================================

def test_conversion_follows_m4b_preference():
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "true", 0.8)}
    )
    files = [
        audio("Dune/chapter.mp3"),
        audio("Dune/book.m4b", extension=".m4b"),
        audio("Dune/master.flac", extension=".flac"),
    ]
    result = engine.generate(files, ["conversion"], 0.5, 10)
    assert len(result) == 1
    assert result[0].kind == "convert"
    assert result[0].action["output_file"] == "Dune/chapter.m4b"
    assert result[0].confidence == pytest.approx(0.8)


def test_conversion_needs_true_preference():
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "false", 0.8)}
    )
    assert engine.generate([audio("Dune/chapter.mp3")], ["conversion"], 0.0, 10) == []
    assert build_engine().generate([audio("Dune/chapter.mp3")], ["conversion"], 0.0, 10) == []


@pytest.mark.parametrize(
    "data, extension",
    [
        ({"path": "Dune/chapter.mp3", "extension": "MP3"}, ".mp3"),
        ({"path": "Dune/chapter.M4A"}, ".m4a"),
        ({"path": "Dune/README"}, None),
        ({"path": "Dune", "is_directory": True, "extension": "mp3"}, None),
    ],
)
def test_descriptor_extension_is_normalized(data, extension):
    assert FileDescriptor.from_dict(data).extension == extension


def test_conversion_accepts_undotted_extension():
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "true", 0.8)}
    )
    files = [FileDescriptor.from_dict({"path": "Dune/chapter.mp3", "extension": "mp3"})]
    assert [s.kind for s in engine.generate(files, ["conversion"], 0.5, 10)] == ["convert"]


@pytest.mark.parametrize(
    "data",
    [
        {"path": "a.mp3", "size": "big"},
        {"path": "a.mp3", "metadata": {"confidence": "high"}},
        {"path": "a.mp3", "metadata": {"provenance": "guess"}},
        {"name": "a.mp3"},
        ["a.mp3"],
    ],
)
def test_malformed_descriptor_is_rejected(data):
    with pytest.raises(InvalidRequestError):
        FileDescriptor.from_dict(data)


def test_series_detection_produces_nothing():
    engine = build_engine(patterns=[numbering_pattern(0.9)])
    assert engine.generate([audio("Dune/chapter.mp3")], ["series_detection"], 0.0, 10) == []


# ============================================================================
# AGGREGATION
# ============================================================================

def test_threshold_above_every_candidate_returns_empty():
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "true", 0.8)}
    )
    assert engine.generate([audio("Dune/chapter.mp3")], ["metadata", "conversion"], 0.9, 10) == []


def test_max_count_keeps_the_strongest():
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "true", 0.95)}
    )
    result = engine.generate([audio("Dune/chapter.mp3")], ["metadata", "conversion"], 0.5, 1)
    assert len(result) == 1
    assert result[0].kind == "convert"
    assert result[0].confidence == pytest.approx(0.95)


def test_ranking_is_descending_and_stable(sanderson):
    engine = build_engine(
        preferences={"qualityPreferences.preferM4B": preference("qualityPreferences", "true", 0.8)}
    )
    files = [audio("a/one.mp3"), audio("a/two.mp3")]
    result = engine.generate(files, ["metadata", "conversion"], 0.0, 10)
    assert [s.kind for s in result] == ["convert", "convert", "metadata", "metadata"]
    assert [s.action.get("file_path") for s in result if s.kind == "metadata"] == ["a/one.mp3", "a/two.mp3"]
    confidences = [s.confidence for s in result]
    assert confidences == sorted(confidences, reverse=True)


def test_zero_max_count_returns_empty():
    engine = build_engine()
    assert engine.generate([audio("a/one.mp3")], ["metadata"], 0.0, 0) == []


@pytest.mark.parametrize(
    "kinds, min_confidence, max_count",
    [
        (["bogus"], 0.7, 10),
        (["naming"], 1.5, 10),
        (["naming"], -0.1, 10),
        (["naming"], 0.7, -1),
    ],
)
def test_invalid_requests_are_rejected(kinds, min_confidence, max_count):
    with pytest.raises(InvalidRequestError):
        build_engine().generate([audio("a/one.mp3")], kinds, min_confidence, max_count)
