"""
Inbound WebSocket commands. Clients send JSON objects with a "type" field;
payload keys are camelCase on the wire.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from livemeet.errors import InvalidCommand


# Session ids become file names for snapshots; keep them to a safe alphabet.
SESSION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class _Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", pattern=SESSION_ID_PATTERN)


class JoinSession(_Command):
    type: Literal["join-session"]


class LeaveSession(_Command):
    type: Literal["leave-session"]


class FragmentIn(BaseModel):
    text: str = Field(..., description="Recognized text; blank text is rejected")
    confidence: float | None = Field(None, ge=0.0, le=1.0, description="Recognizer confidence 0-1")
    language: str | None = None


class TranscriptFragment(_Command):
    type: Literal["transcript-fragment"]
    fragment: FragmentIn


class TranscriptAudio(_Command):
    type: Literal["transcript-audio"]
    audio: str = Field(..., description="Base64 PCM 16-bit mono at SAMPLE_RATE")
    language: str | None = None


class ChatMessageIn(_Command):
    type: Literal["chat-message"]
    text: str


class RecordingState(_Command):
    type: Literal["recording-state"]
    is_recording: bool = Field(..., alias="isRecording")
    is_paused: bool = Field(False, alias="isPaused")


class ParticipantStatus(_Command):
    type: Literal["participant-status"]
    status: dict[str, Any] = Field(default_factory=dict, description="e.g. {\"muted\": true}")


Command = Annotated[
    Union[
        JoinSession,
        LeaveSession,
        TranscriptFragment,
        TranscriptAudio,
        ChatMessageIn,
        RecordingState,
        ParticipantStatus,
    ],
    Field(discriminator="type"),
]

_command_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(data: Any) -> Command:
    """Validate one inbound message; raise InvalidCommand with a short reason."""
    try:
        return _command_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ()))
        reason = first.get("msg", "invalid")
        raise InvalidCommand(f"Invalid command: {loc + ': ' if loc else ''}{reason}") from e
