"""
Transcript data: fragments in, segments stored, aggregate derived.

Segments are frozen. A continuation from the same speaker produces a new
TranscriptSegment with the same id (dataclasses.replace), so a list handed out
earlier is never changed underneath its holder.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any


def generate_segment_id() -> str:
    return f"seg_{uuid.uuid4().hex[:12]}"


def generate_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


def unix_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Fragment:
    """Raw recognizer output for one speaker. Arrival order is the only ordering signal."""

    speaker_id: str
    speaker_name: str
    text: str
    confidence: float
    language: str = "en-US"


@dataclass(frozen=True)
class TranscriptSegment:
    id: str
    speaker_id: str
    speaker_name: str
    text: str
    start_time: float  # seconds since the session record was created
    end_time: float
    confidence: float  # 0.0-1.0
    language: str = "en-US"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "speakerId": self.speaker_id,
            "speakerName": self.speaker_name,
            "text": self.text,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "confidence": self.confidence,
            "language": self.language,
        }


@dataclass(frozen=True)
class TranscriptAggregate:
    """Derived statistics. Only aggregate.recompute() builds these."""

    full_text: str = ""
    total_words: int = 0
    speaker_count: int = 0
    avg_confidence: float = 0.0
    # speaker_id -> {"speakerName": str, "duration": float}
    speaking_time: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fullText": self.full_text,
            "totalWords": self.total_words,
            "speakerCount": self.speaker_count,
            "avgConfidence": self.avg_confidence,
            "speakingTime": [
                {"speakerId": sid, **info} for sid, info in self.speaking_time.items()
            ],
        }

    def counters(self) -> dict[str, Any]:
        """Aggregate without the full text; what live updates broadcast."""
        out = self.to_dict()
        out.pop("fullText")
        return out


AI_MARKER = "__ai__"


@dataclass(frozen=True)
class CorrelatedAnswer:
    source_question_id: str
    confidence_score: float
    cited_segment_ids: tuple[str, ...] = ()
    processing_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceQuestionId": self.source_question_id,
            "confidenceScore": self.confidence_score,
            "citedSegmentIds": list(self.cited_segment_ids),
            "processingMs": self.processing_ms,
        }


@dataclass(frozen=True)
class ChatMessage:
    id: str
    author_participant_id: str  # AI_MARKER for assistant replies
    author_name: str
    text: str
    kind: str  # "user" | "ai"
    timestamp: int  # unix_ms
    correlated_answer: CorrelatedAnswer | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "authorParticipantId": self.author_participant_id,
            "authorName": self.author_name,
            "text": self.text,
            "kind": self.kind,
            "timestamp": self.timestamp,
        }
        if self.correlated_answer is not None:
            payload["correlatedAnswer"] = self.correlated_answer.to_dict()
        return payload
