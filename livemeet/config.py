"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Auth: HS256 tokens with "sub" (participant id) and "name" (display name) claims
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # Access policy for sessions that were never registered via POST /api/sessions
    PUBLIC_SESSIONS_BY_DEFAULT: bool = False

    # Cloudflare Workers AI: ASR (when ASR_BACKEND=cloudflare) and answer/enhance (LLM)
    CLOUDFLARE_ACCOUNT_ID: str = ""
    CLOUDFLARE_API_TOKEN: str = ""

    # Speech-to-text for transcript-audio events. Audio: PCM 16-bit mono.
    ASR_BACKEND: Literal["cloudflare", "none"] = "cloudflare"
    SAMPLE_RATE: int = 16000
    ASR_SILENCE_RMS: float = 0.005  # chunks quieter than this (float32 RMS) are not sent to ASR
    ASR_TIMEOUT_SECONDS: float = 30.0

    # AI answer / enhancement
    AI_ENABLED: bool = True
    AI_CF_MODEL: str = "@cf/meta/llama-3.1-8b-instruct"
    AI_MAX_TOKENS: int = 1024
    AI_TIMEOUT_SECONDS: float = 45.0
    AI_RELATED_SEGMENTS_MAX: int = 3
    AI_ANSWER_CONFIDENCE: float = 0.9

    # Transcript defaults
    DEFAULT_LANGUAGE: str = "en-US"
    DEFAULT_CONFIDENCE: float = 0.9
    # Re-check derived aggregate fields before every commit; a mismatch aborts the mutation.
    VERIFY_AGGREGATES: bool = True

    # Chat
    CHAT_MESSAGE_MAX_CHARS: int = 1000

    # Session snapshot storage: one JSON file per session, rewritten on every commit.
    TRANSCRIPT_SAVE_ENABLED: bool = False
    TRANSCRIPT_DIR: str = "./transcripts"

    # Logging: level (DEBUG, INFO, WARNING, ERROR); LOG_FILE empty = console only.
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"


def get_settings() -> Settings:
    return Settings()
