"""Schemas for the HTTP API (session access registration, segment edits, enhancement)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from livemeet.schemas.commands import SESSION_ID_PATTERN


class RegisterSessionRequest(BaseModel):
    """Request body for POST /api/sessions. The caller becomes the host."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(
        None, alias="sessionId", pattern=SESSION_ID_PATTERN, description="Generated when absent"
    )
    invited: list[str] = Field(default_factory=list, description="Participant ids allowed to join")
    is_public: bool = Field(False, alias="isPublic")


class RegisterSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    host_id: str = Field(..., alias="hostId")
    invited: list[str]
    is_public: bool = Field(..., alias="isPublic")


class SegmentUpdateRequest(BaseModel):
    """Body for PATCH /api/sessions/{id}/segments/{segment_id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    text: str | None = Field(None, min_length=1)
    speaker_name: str | None = Field(None, alias="speakerName")
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class EnhanceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    text: str = Field(..., description="Enhanced transcript text, or the original on failure")
    enhanced: bool = Field(..., description="False when the AI service failed and the original is returned")
