import pytest

from livemeet.errors import InvariantViolation
from livemeet.transcript.aggregate import recompute, verify
from livemeet.transcript.models import TranscriptAggregate

from conftest import make_segment


def test_empty_transcript_has_zero_aggregate():
    agg = recompute([])
    assert agg == TranscriptAggregate()
    assert agg.to_dict() == {
        "fullText": "",
        "totalWords": 0,
        "speakerCount": 0,
        "avgConfidence": 0.0,
        "speakingTime": [],
    }
    verify([], agg)


def test_aggregate_fields_follow_segments():
    segments = [
        make_segment("s1", "alice", "hello there", start=0.0, end=2.0, confidence=0.9),
        make_segment("s2", "bob", "hi", start=2.5, end=3.0, confidence=0.5),
        make_segment("s3", "alice", "shall we start", start=3.0, end=4.5, confidence=0.7),
    ]
    agg = recompute(segments)
    assert agg.full_text == "hello there hi shall we start"
    assert agg.total_words == 6
    assert agg.speaker_count == 2
    assert agg.avg_confidence == pytest.approx(0.7)
    assert agg.speaking_time["alice"]["duration"] == pytest.approx(3.5)
    assert agg.speaking_time["bob"]["duration"] == pytest.approx(0.5)
    verify(segments, agg)


def test_counters_omit_full_text():
    agg = recompute([make_segment("s1", "alice", "hello")])
    counters = agg.counters()
    assert "fullText" not in counters
    assert counters["totalWords"] == 1
    assert counters["speakingTime"] == [{"speakerId": "alice", "speakerName": "Alice", "duration": 1.0}]


def test_negative_durations_do_not_count():
    agg = recompute([make_segment("s1", "alice", "x", start=5.0, end=4.0)])
    assert agg.speaking_time["alice"]["duration"] == 0.0


@pytest.mark.parametrize(
    "field, value",
    [
        ("full_text", "something else"),
        ("total_words", 99),
        ("speaker_count", 5),
        ("avg_confidence", 0.1),
    ],
)
def test_verify_rejects_drifted_aggregate(field, value):
    segments = [make_segment("s1", "alice", "hello world", confidence=0.9)]
    good = recompute(segments)
    bad = TranscriptAggregate(**{**good.__dict__, field: value})
    with pytest.raises(InvariantViolation):
        verify(segments, bad)
