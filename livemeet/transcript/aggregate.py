"""Derived transcript statistics. Always recomputed from the whole segment list."""
from __future__ import annotations

import math
from typing import Any

from livemeet.errors import InvariantViolation
from livemeet.transcript.models import TranscriptAggregate, TranscriptSegment


def recompute(segments: list[TranscriptSegment]) -> TranscriptAggregate:
    """Build every derived field in one pass so they can never drift apart."""
    if not segments:
        return TranscriptAggregate()

    full_text = " ".join(s.text for s in segments)
    speaking_time: dict[str, dict[str, Any]] = {}
    total_confidence = 0.0
    for s in segments:
        total_confidence += s.confidence
        entry = speaking_time.setdefault(s.speaker_id, {"speakerName": s.speaker_name, "duration": 0.0})
        entry["speakerName"] = s.speaker_name
        entry["duration"] += max(0.0, s.end_time - s.start_time)

    return TranscriptAggregate(
        full_text=full_text,
        total_words=len(full_text.split()),
        speaker_count=len(speaking_time),
        avg_confidence=total_confidence / len(segments),
        speaking_time=speaking_time,
    )


def verify(segments: list[TranscriptSegment], aggregate: TranscriptAggregate) -> None:
    """Raise InvariantViolation if aggregate does not describe segments exactly."""
    expected_text = " ".join(s.text for s in segments)
    if aggregate.full_text != expected_text:
        raise InvariantViolation("fullText does not match segment texts")
    if aggregate.total_words != len(expected_text.split()):
        raise InvariantViolation(
            f"totalWords={aggregate.total_words} but fullText has {len(expected_text.split())} words"
        )
    speakers = {s.speaker_id for s in segments}
    if aggregate.speaker_count != len(speakers):
        raise InvariantViolation(f"speakerCount={aggregate.speaker_count} but {len(speakers)} distinct speakers")
    expected_conf = sum(s.confidence for s in segments) / len(segments) if segments else 0.0
    if not math.isclose(aggregate.avg_confidence, expected_conf, rel_tol=1e-9, abs_tol=1e-12):
        raise InvariantViolation(f"avgConfidence={aggregate.avg_confidence} expected {expected_conf}")
