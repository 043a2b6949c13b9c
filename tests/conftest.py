"""
Shared test fixtures for the session coordinator.

Provides:
- Settings that never read .env and never touch the network
- RecordingSink: captures outbound events per connection
- Fake AI and speech-to-text collaborators
- A coordinator factory wired to the fakes
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

import pytest

from livemeet.asr.base import ASRResult, SpeechToText
from livemeet.config import Settings
from livemeet.coordinator import EventSink, SessionCoordinator
from livemeet.errors import CollaboratorUnavailable
from livemeet.rooms import RoomRegistry
from livemeet.services.ai_service import AIAnswer, AIService
from livemeet.services.auth import InMemoryAccessPolicy, TokenVerifier
from livemeet.session_store import SessionStore
from livemeet.transcript.models import TranscriptSegment


class RecordingSink(EventSink):
    def __init__(self) -> None:
        self.events: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.closed: list[tuple[str, int]] = []

    async def send(self, connection_id: str, event: dict[str, Any]) -> None:
        self.events[connection_id].append(event)

    async def close(self, connection_id: str, code: int = 1000, reason: str = "") -> None:
        self.closed.append((connection_id, code))

    def types(self, connection_id: str) -> list[str]:
        return [e["type"] for e in self.events[connection_id]]

    def of_type(self, connection_id: str, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events[connection_id] if e["type"] == event_type]

    def clear(self) -> None:
        self.events.clear()


class FakeAIService(AIService):
    def __init__(self, answer_text: str = "The budget is ten thousand.", confidence: float = 0.8) -> None:
        self.answer_text = answer_text
        self.confidence = confidence
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.questions: list[tuple[str, str]] = []

    async def answer(self, question: str, context: str) -> AIAnswer:
        self.questions.append((question, context))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise CollaboratorUnavailable("AI service down")
        return AIAnswer(text=self.answer_text, confidence=self.confidence)

    async def enhance(self, text: str) -> str:
        if self.fail:
            raise CollaboratorUnavailable("AI service down")
        return text.upper()


class FakeSpeechToText(SpeechToText):
    def __init__(self, text: str = "", confidence: float = 0.75) -> None:
        self.text = text
        self.confidence = confidence
        self.calls: list[bytes] = []

    async def transcribe(self, pcm_bytes: bytes) -> ASRResult:
        self.calls.append(pcm_bytes)
        return ASRResult(text=self.text, confidence=self.confidence)


def make_segment(
    seg_id: str,
    speaker_id: str,
    text: str,
    start: float = 0.0,
    end: float = 1.0,
    confidence: float = 0.9,
) -> TranscriptSegment:
    return TranscriptSegment(
        id=seg_id,
        speaker_id=speaker_id,
        speaker_name=speaker_id.title(),
        text=text,
        start_time=start,
        end_time=end,
        confidence=confidence,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        JWT_SECRET="test-secret",
        ASR_BACKEND="none",
        AI_ENABLED=False,
        PUBLIC_SESSIONS_BY_DEFAULT=True,
        TRANSCRIPT_SAVE_ENABLED=False,
        LOG_FILE="",
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ai() -> FakeAIService:
    return FakeAIService()


@pytest.fixture
def stt() -> FakeSpeechToText:
    return FakeSpeechToText()


@pytest.fixture
def policy(settings: Settings) -> InMemoryAccessPolicy:
    return InMemoryAccessPolicy(public_by_default=settings.PUBLIC_SESSIONS_BY_DEFAULT)


@pytest.fixture
def verifier(settings: Settings) -> TokenVerifier:
    return TokenVerifier(settings)


@pytest.fixture
def make_coordinator(settings, sink, ai, stt, policy, verifier):
    def _make(store: SessionStore | None = None, registry: RoomRegistry | None = None) -> SessionCoordinator:
        return SessionCoordinator(
            registry=registry or RoomRegistry(),
            store=store or SessionStore(),
            verifier=verifier,
            access_policy=policy,
            ai_service=ai,
            speech_to_text=stt,
            sink=sink,
            settings=settings,
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator) -> SessionCoordinator:
    return make_coordinator()


@pytest.fixture
def connect(verifier: TokenVerifier):
    """connect(coordinator, participant_id, connection_id=None) -> connection id."""

    async def _connect(coord: SessionCoordinator, participant_id: str, connection_id: str | None = None) -> str:
        cid = connection_id or f"conn-{participant_id}"
        await coord.connect(cid, verifier.issue(participant_id, participant_id.title()))
        return cid

    return _connect
