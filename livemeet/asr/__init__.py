"""ASR: speech-to-text collaborator for transcript-audio events."""
from livemeet.asr.base import ASRResult, NoOpSpeechToText, SpeechToText
from livemeet.asr.cloudflare import CloudflareWhisperEngine, pcm_bytes_to_float32
from livemeet.config import Settings, get_settings


def create_speech_to_text(settings: Settings | None = None) -> SpeechToText:
    settings = settings or get_settings()
    if settings.ASR_BACKEND == "cloudflare":
        return CloudflareWhisperEngine(settings)
    return NoOpSpeechToText()


__all__ = [
    "ASRResult",
    "CloudflareWhisperEngine",
    "NoOpSpeechToText",
    "SpeechToText",
    "create_speech_to_text",
    "pcm_bytes_to_float32",
]
