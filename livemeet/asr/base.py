"""
SpeechToText: abstract interface for the speech-to-text collaborator.

Input is raw PCM 16-bit mono audio; output is recognized text (possibly
empty) with a confidence estimate. Empty text never becomes a segment.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ASRResult:
    """Result of one transcribe call."""

    text: str
    confidence: float  # 0.0-1.0 estimate


class SpeechToText(ABC):
    @abstractmethod
    async def transcribe(self, pcm_bytes: bytes) -> ASRResult:
        """
        Transcribe one chunk of PCM 16-bit mono audio.
        Must not block the event loop; failures return empty text.
        """
        ...


class NoOpSpeechToText(SpeechToText):
    """ASR_BACKEND=none: audio events never produce text."""

    async def transcribe(self, pcm_bytes: bytes) -> ASRResult:
        return ASRResult(text="", confidence=0.0)
