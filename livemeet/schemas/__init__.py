"""Pydantic schemas for WebSocket commands and the HTTP API."""
from livemeet.schemas.api import (
    EnhanceResponse,
    RegisterSessionRequest,
    RegisterSessionResponse,
    SegmentUpdateRequest,
)
from livemeet.schemas.commands import (
    ChatMessageIn,
    Command,
    JoinSession,
    LeaveSession,
    ParticipantStatus,
    RecordingState,
    TranscriptAudio,
    TranscriptFragment,
    parse_command,
)

__all__ = [
    "ChatMessageIn",
    "Command",
    "EnhanceResponse",
    "JoinSession",
    "LeaveSession",
    "ParticipantStatus",
    "RecordingState",
    "RegisterSessionRequest",
    "RegisterSessionResponse",
    "SegmentUpdateRequest",
    "TranscriptAudio",
    "TranscriptFragment",
    "parse_command",
]
