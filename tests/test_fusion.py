"""
Tests for filename parsing, tag scoring and metadata fusion.

Run with: pytest tests/test_fusion.py -v
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add src to path for imports
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from shelf_os import tag_service as tag_service_module
from shelf_os.fusion import (
    estimate_from_path,
    estimate_from_tags,
    extract_metadata,
    fuse_metadata,
    looks_like_author_name,
    parse_filename_components,
    tag_confidence,
)
from shelf_os.models import InvalidRequestError, MetadataEstimate
from shelf_os.tag_service import TagReadError, TagService, TagSnapshot


# ============================================================================
# FIXTURES
# ============================================================================

class BrokenTagService:
    def read(self, file_path):
        raise TagReadError(f"no tags in {file_path}")


class StaticTagService:
    def __init__(self, snapshot: TagSnapshot):
        self.snapshot = snapshot

    def read(self, file_path):
        return self.snapshot


@pytest.fixture
def full_tags() -> TagSnapshot:
    return TagSnapshot(
        title="Dune",
        artist="Frank Herbert",
        album="Dune",
        track_number=1,
        genres=["Audiobook"],
        date="1965",
        comments=["Narrated by Scott Brick"],
    )


# ============================================================================
# FILENAME PARSING
# ============================================================================

@pytest.mark.parametrize(
    "stem, title, number",
    [
        ("Book 3 - The Return", "The Return", 3),
        ("01 - Chapter One", "Chapter One", 1),
        ("Vol. 2 - Shadows", "Shadows", 2),
        ("Dune Messiah - Book 2", "Dune Messiah", 2),
        ("Mistborn #2", "Mistborn", 2),
        ("Wheel of Time #4 - The Shadow Rising", "The Shadow Rising", 4),
        ("The Hobbit", "The Hobbit", None),
    ],
)
def test_parse_filename_components(stem, title, number):
    parsed = parse_filename_components(stem)
    assert parsed.parsed_title == title
    assert parsed.series_number == number
    assert parsed.matched is (number is not None)


def test_author_name_heuristics():
    assert looks_like_author_name("Stephen King")
    assert looks_like_author_name("King, Stephen")
    assert looks_like_author_name("tolkien jrr")
    assert not looks_like_author_name("misc")


# ============================================================================
# PATH ESTIMATE
# ============================================================================

def test_author_series_directory_shape():
    est = estimate_from_path("Authors/J.R.R. Tolkien/Lord of the Rings", is_directory=True)
    assert est.author == "J.R.R. Tolkien"
    assert est.series == "Lord of the Rings"
    assert est.confidence >= 0.5
    assert est.provenance == "filename"


def test_numbered_file_in_author_structure():
    est = estimate_from_path("Authors/Brandon Sanderson/Mistborn/01 - The Final Empire.mp3")
    assert est.author == "Brandon Sanderson"
    assert est.series == "Mistborn"
    assert est.title == "The Final Empire"
    assert est.series_number == 1
    assert est.confidence == pytest.approx(0.6)


def test_author_like_parent_directory():
    est = estimate_from_path("Stephen King/It.mp3")
    assert est.author == "Stephen King"
    assert est.series is None
    assert est.title == "It"
    assert est.confidence == pytest.approx(0.4)


def test_plain_file_gets_base_confidence():
    est = estimate_from_path("misc/notes.mp3")
    assert est.author is None
    assert est.title == "notes"
    assert est.confidence == pytest.approx(0.3)


# ============================================================================
# TAG ESTIMATE
# ============================================================================

def test_tag_confidence_counts_audiobook_bonus_once(full_tags):
    # genre and comment both mention it; the bonus applies a single time
    assert tag_confidence(full_tags) == pytest.approx(0.9)


def test_tag_confidence_title_only():
    assert tag_confidence(TagSnapshot(title="Something")) == pytest.approx(0.2)


def test_tag_confidence_is_capped():
    tags = TagSnapshot(
        title="t",
        artist="a",
        album_artist="aa",
        album="al",
        track_number=2,
        genres=["Audiobook"],
        date="2001",
        comments=["narrated"],
    )
    assert tag_confidence(tags) <= 1.0


def test_estimate_from_tags_extracts_series_and_narrator():
    tags = TagSnapshot(
        artist="Brandon Sanderson",
        album="Mistborn Book 1",
        comments=["Narrated by Michael Kramer"],
    )
    est = estimate_from_tags(tags)
    assert est.author == "Brandon Sanderson"
    assert est.narrator == "Michael Kramer"
    assert est.series == "Mistborn"
    assert est.series_number == 1
    assert est.provenance == "tag"


def test_estimate_from_tags_author_from_album_prefix():
    est = estimate_from_tags(TagSnapshot(album="Terry Pratchett - Guards! Guards!"))
    assert est.author == "Terry Pratchett"


# ============================================================================
# FUSION
# ============================================================================

def test_fusion_prefers_tags_and_falls_back():
    tag_est = MetadataEstimate(title="T", author="A", narrator="N", confidence=0.8, provenance="tag")
    file_est = MetadataEstimate(title="F", series="S", series_number=2, confidence=0.5, provenance="filename")
    fused = fuse_metadata(tag_est, file_est)
    assert fused.title == "T"
    assert fused.author == "A"
    assert fused.series == "S"
    assert fused.series_number == 2
    assert fused.narrator == "N"
    assert fused.confidence == pytest.approx(0.8)
    assert fused.provenance == "fused"


def test_fusion_prefers_stronger_filename_for_shared_fields_only():
    tag_est = MetadataEstimate(title="T", genre="Fantasy", confidence=0.3, provenance="tag")
    file_est = MetadataEstimate(title="F", genre="Ignored", confidence=0.6, provenance="filename")
    fused = fuse_metadata(tag_est, file_est)
    assert fused.title == "F"
    assert fused.genre == "Fantasy"
    assert fused.confidence == pytest.approx(0.6)


def test_fusion_tie_keeps_tag_values():
    tag_est = MetadataEstimate(title="T", confidence=0.5, provenance="tag")
    file_est = MetadataEstimate(title="F", confidence=0.5, provenance="filename")
    assert fuse_metadata(tag_est, file_est).title == "T"


def test_fusion_is_deterministic(full_tags):
    tag_est = estimate_from_tags(full_tags)
    file_est = estimate_from_path("Authors/Frank Herbert/Dune/01 - Dune.mp3")
    assert fuse_metadata(tag_est, file_est) == fuse_metadata(tag_est, file_est)


def test_metadata_estimate_validation():
    assert MetadataEstimate(confidence=1.7).confidence == 1.0
    assert MetadataEstimate(confidence=-0.2).confidence == 0.0
    with pytest.raises(InvalidRequestError):
        MetadataEstimate(provenance="guess")


# ============================================================================
# EXTRACTION
# ============================================================================

def test_extract_metadata_degrades_to_filename(tmp_path):
    est = extract_metadata(
        tmp_path / "01 - Dune.mp3",
        BrokenTagService(),
        relative_path="Authors/Frank Herbert/Dune/01 - Dune.mp3",
    )
    assert est.provenance == "fused"
    assert est.author == "Frank Herbert"
    assert est.series == "Dune"
    assert est.title == "Dune"
    assert est.series_number == 1
    assert est.narrator is None
    assert est.confidence == pytest.approx(0.6)


def test_extract_metadata_fuses_tags(tmp_path, full_tags):
    est = extract_metadata(tmp_path / "dune.mp3", StaticTagService(full_tags), relative_path="misc/dune.mp3")
    assert est.title == "Dune"
    assert est.author == "Frank Herbert"
    assert est.narrator == "Scott Brick"
    assert est.confidence == pytest.approx(0.9)


# ============================================================================
# MUTAGEN ADAPTER
# ============================================================================

def test_tag_service_reads_easy_tags(monkeypatch):
    fake_audio = SimpleNamespace(
        tags={
            "title": ["Dune"],
            "artist": ["Frank Herbert"],
            "tracknumber": ["3/12"],
            "genre": ["Audiobook", "Science Fiction"],
        },
        info=SimpleNamespace(length=3600.5),
    )
    monkeypatch.setattr(tag_service_module.mutagen, "File", lambda path, easy=True: fake_audio)
    snapshot = TagService().read(Path("dune.mp3"))
    assert snapshot.title == "Dune"
    assert snapshot.artist == "Frank Herbert"
    assert snapshot.track_number == 3
    assert snapshot.genres == ["Audiobook", "Science Fiction"]
    assert snapshot.duration == pytest.approx(3600.5)


def test_tag_service_rejects_unknown_container(monkeypatch):
    monkeypatch.setattr(tag_service_module.mutagen, "File", lambda path, easy=True: None)
    with pytest.raises(TagReadError):
        TagService().read(Path("notes.txt"))
