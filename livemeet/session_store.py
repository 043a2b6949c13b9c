"""
In-memory session store: one record per session (segments, aggregate, chat,
recording state) plus the per-session lock that serializes every mutation.

Transcript and chat are only changed through commit_transcript() and
append_chat(); callers must hold lock(session_id) while computing and
committing so no writer ever works from a stale segment list.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from livemeet.transcript.models import ChatMessage, TranscriptAggregate, TranscriptSegment
from livemeet.transcript.writer import NoOpSnapshotWriter, SnapshotWriterBase


@dataclass
class SessionRecord:
    session_id: str
    created_at: float = field(default_factory=time.time)
    segments: list[TranscriptSegment] = field(default_factory=list)
    aggregate: TranscriptAggregate = field(default_factory=TranscriptAggregate)
    chat_messages: list[ChatMessage] = field(default_factory=list)
    is_recording: bool = False
    is_paused: bool = False

    def elapsed(self) -> float:
        """Seconds since the record was created; segment times use this clock."""
        return round(time.time() - self.created_at, 3)

    def summary(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "segmentCount": len(self.segments),
            **self.aggregate.counters(),
            "chatMessageCount": len(self.chat_messages),
            "recording": {"isRecording": self.is_recording, "isPaused": self.is_paused},
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "segments": [s.to_dict() for s in self.segments],
            "aggregate": self.aggregate.to_dict(),
            "chatMessages": [m.to_dict() for m in self.chat_messages],
            "recording": {"isRecording": self.is_recording, "isPaused": self.is_paused},
        }


class SessionStore:
    def __init__(self, writer: SnapshotWriterBase | None = None) -> None:
        self._records: dict[str, SessionRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._writer = writer or NoOpSnapshotWriter()

    def lock(self, session_id: str) -> asyncio.Lock:
        """Per-session critical section. asyncio.Lock wakes waiters FIFO, so arrival order is kept."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def get(self, session_id: str) -> SessionRecord | None:
        return self._records.get(session_id)

    def get_or_create(self, session_id: str) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            record = self._records[session_id] = SessionRecord(session_id=session_id)
        return record

    async def commit_transcript(
        self,
        session_id: str,
        segments: list[TranscriptSegment],
        aggregate: TranscriptAggregate,
    ) -> SessionRecord:
        """Swap in a new segment list and its aggregate together."""
        record = self.get_or_create(session_id)
        record.segments, record.aggregate = list(segments), aggregate
        self._writer.enqueue(session_id, record.to_dict())
        return record

    async def append_chat(self, session_id: str, message: ChatMessage) -> SessionRecord:
        record = self.get_or_create(session_id)
        record.chat_messages.append(message)
        self._writer.enqueue(session_id, record.to_dict())
        return record

    async def set_recording(self, session_id: str, is_recording: bool, is_paused: bool) -> SessionRecord:
        record = self.get_or_create(session_id)
        record.is_recording = is_recording
        record.is_paused = is_paused
        self._writer.enqueue(session_id, record.to_dict())
        return record

    def discard_if_unused(self, session_id: str) -> bool:
        """
        Drop a record that never received transcript, chat, or recording state.
        The lock is kept: a waiter may already hold it, and a fresh Lock would
        split the critical section.
        """
        record = self._records.get(session_id)
        if record is None or record.segments or record.chat_messages or record.is_recording:
            return False
        del self._records[session_id]
        return True

    def session_ids(self) -> list[str]:
        return list(self._records)
