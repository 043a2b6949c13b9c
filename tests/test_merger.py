"""Segment merge engine: containment, overlap-append, speaker change."""
import pytest

from livemeet.transcript.merger import (
    CREATED,
    DISCARDED,
    EXTENDED,
    REPLACED,
    merge,
    overlap_word_count,
)
from livemeet.transcript.models import Fragment

from conftest import make_segment


def _frag(text: str, speaker: str = "alice", confidence: float = 0.8) -> Fragment:
    return Fragment(speaker_id=speaker, speaker_name=speaker.title(), text=text, confidence=confidence)


def _ids():
    counter = iter(range(1, 100))
    return lambda: f"seg_{next(counter)}"


class TestOverlapWordCount:
    def test_longest_suffix_prefix_match(self):
        assert overlap_word_count("the quick brown", "quick brown fox") == 2

    def test_case_insensitive(self):
        assert overlap_word_count("We Agreed", "agreed on friday") == 1

    def test_no_overlap(self):
        assert overlap_word_count("hello", "world") == 0

    def test_prefers_longest(self):
        assert overlap_word_count("a b a b", "a b a b c") == 4


def test_first_fragment_creates_segment():
    result = merge([], _frag("hello everyone"), now=1.5, new_id=_ids())
    assert result.action == CREATED
    assert [s.text for s in result.segments] == ["hello everyone"]
    seg = result.affected
    assert seg.id == "seg_1"
    assert seg.start_time == seg.end_time == 1.5
    assert seg.speaker_id == "alice"


def test_speaker_change_always_creates_segment():
    prior = [make_segment("s1", "alice", "hello everyone")]
    result = merge(prior, _frag("hello everyone", speaker="bob"), now=2.0, new_id=_ids())
    assert result.action == CREATED
    assert [s.speaker_id for s in result.segments] == ["alice", "bob"]


def test_contained_fragment_is_discarded():
    prior = [make_segment("s1", "alice", "Let's review the  budget today")]
    result = merge(prior, _frag("the budget"), now=3.0)
    assert result.action == DISCARDED
    assert result.affected is None
    assert result.segments == prior


def test_superset_fragment_replaces_text():
    prior = [make_segment("s1", "alice", "let's review", start=0.0, end=1.0, confidence=0.7)]
    result = merge(prior, _frag("Let's review the budget", confidence=0.6), now=4.0)
    assert result.action == REPLACED
    seg = result.affected
    assert seg.id == "s1"
    assert seg.text == "Let's review the budget"
    assert seg.start_time == 0.0
    assert seg.end_time == 4.0
    assert seg.confidence == 0.7
    assert len(result.segments) == 1


def test_overlap_is_appended_once():
    prior = [make_segment("s1", "alice", "the quick brown")]
    result = merge(prior, _frag("quick brown fox jumps", confidence=0.95), now=5.0)
    assert result.action == EXTENDED
    assert result.affected.text == "the quick brown fox jumps"
    assert result.affected.confidence == 0.95
    assert result.affected.id == "s1"


def test_disjoint_same_speaker_text_is_appended():
    prior = [make_segment("s1", "alice", "hello")]
    result = merge(prior, _frag("world"), now=1.0)
    assert result.action == EXTENDED
    assert result.affected.text == "hello world"


def test_prior_list_is_not_mutated():
    original = make_segment("s1", "alice", "good")
    prior = [original]
    result = merge(prior, _frag("good morning"), now=1.0)
    assert prior == [original]
    assert prior[0].text == "good"
    assert result.segments is not prior


def test_only_last_segment_is_considered():
    prior = [
        make_segment("s1", "alice", "first point"),
        make_segment("s2", "bob", "sure"),
    ]
    result = merge(prior, _frag("first point"), now=2.0, new_id=_ids())
    assert result.action == CREATED
    assert len(result.segments) == 3


def test_empty_fragment_is_rejected():
    with pytest.raises(ValueError):
        merge([], _frag("   "), now=0.0)


def test_containment_ignores_spacing_and_case():
    prior = [make_segment("s1", "alice", "let's   review")]
    result = merge(prior, _frag("Let's review\tthe budget"), now=2.0)
    assert result.action == REPLACED
    assert result.affected.text == "Let's review\tthe budget"
