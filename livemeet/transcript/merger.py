"""
Segment merge engine: folds one recognizer fragment into the segment list.

Recognizers re-send the tail of an utterance as their sliding window
finalizes, so consecutive fragments from one speaker overlap. Appending them
blindly duplicates words; ignoring them loses new words. For a same-speaker
fragment we therefore classify:

- containment-subset: fragment already inside the last segment -> discard
- containment-superset: last segment inside the fragment -> replace its text
- overlap-append: longest word suffix/prefix overlap is dropped, rest appended

A fragment from a different speaker always starts a new segment.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Callable

from livemeet.transcript.models import Fragment, TranscriptSegment, generate_segment_id

CREATED = "created"
REPLACED = "replaced"
EXTENDED = "extended"
DISCARDED = "discarded"


@dataclass(frozen=True)
class MergeResult:
    segments: list[TranscriptSegment]
    affected: TranscriptSegment | None  # None when the fragment was discarded
    action: str  # created | replaced | extended | discarded


def _normalize(text: str) -> str:
    """
    Lowercase, trim, and collapse internal whitespace runs to one space, so
    containment checks ignore spacing differences between recognizer windows.
    """
    return re.sub(r"\s+", " ", (text or "").strip()).lower()


def overlap_word_count(existing_text: str, new_text: str) -> int:
    """
    Longest k such that the last k words of existing_text equal the first k
    words of new_text (case-insensitive). Scans k from the largest possible
    value down to 1 and returns the first match; 0 when nothing overlaps.
    """
    a = [w.lower() for w in existing_text.split()]
    b = [w.lower() for w in new_text.split()]
    for k in range(min(len(a), len(b)), 0, -1):
        if a[-k:] == b[:k]:
            return k
    return 0


def merge(
    prior_segments: list[TranscriptSegment],
    fragment: Fragment,
    *,
    now: float,
    new_id: Callable[[], str] = generate_segment_id,
) -> MergeResult:
    """
    Return the updated segment list and the segment that was created or updated.
    prior_segments is never mutated.
    """
    raw = (fragment.text or "").strip()
    if not raw:
        raise ValueError("empty fragment text must be rejected before merge")

    last = prior_segments[-1] if prior_segments else None
    if last is None or last.speaker_id != fragment.speaker_id:
        segment = TranscriptSegment(
            id=new_id(),
            speaker_id=fragment.speaker_id,
            speaker_name=fragment.speaker_name,
            text=raw,
            start_time=now,
            end_time=now,
            confidence=fragment.confidence,
            language=fragment.language,
        )
        return MergeResult(segments=[*prior_segments, segment], affected=segment, action=CREATED)

    last_norm = _normalize(last.text)
    frag_norm = _normalize(raw)

    if frag_norm in last_norm:
        # Stale partial re-send
        return MergeResult(segments=list(prior_segments), affected=None, action=DISCARDED)

    confidence = max(last.confidence, fragment.confidence)

    if last_norm in frag_norm:
        # Completed or corrected version of the same utterance
        updated = replace(last, text=raw, end_time=now, confidence=confidence)
        return MergeResult(segments=[*prior_segments[:-1], updated], affected=updated, action=REPLACED)

    overlap = overlap_word_count(last.text, raw)
    remainder = " ".join(raw.split()[overlap:])
    if not remainder:
        return MergeResult(segments=list(prior_segments), affected=None, action=DISCARDED)
    updated = replace(
        last,
        text=f"{last.text.rstrip()} {remainder}",
        end_time=now,
        confidence=confidence,
    )
    return MergeResult(segments=[*prior_segments[:-1], updated], affected=updated, action=EXTENDED)
