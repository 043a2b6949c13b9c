"""
CloudflareWhisperEngine: Whisper via Cloudflare Workers AI.

Accepts PCM 16-bit mono bytes. Near-silent chunks are skipped before any
network call. The blocking HTTP call runs in an executor.
"""
from __future__ import annotations

import asyncio
import logging

import numpy as np
import httpx

from livemeet.asr.base import ASRResult, SpeechToText
from livemeet.config import Settings, get_settings

logger = logging.getLogger(__name__)


def pcm_bytes_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """Convert PCM 16-bit mono bytes to float32 [-1.0, 1.0]. A trailing odd byte is dropped."""
    usable = len(pcm_bytes) - (len(pcm_bytes) % 2)
    samples = np.frombuffer(pcm_bytes[:usable], dtype=np.int16)
    return samples.astype(np.float32) / 32768.0


def rms(audio: np.ndarray) -> float:
    if audio.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(audio, dtype=np.float64))))


class CloudflareWhisperEngine(SpeechToText):
    def __init__(self, settings: Settings | None = None, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    def _sync_transcribe(self, pcm_bytes: bytes) -> ASRResult:
        """Blocking HTTP call; run in executor."""
        s = self._settings
        account_id = (s.CLOUDFLARE_ACCOUNT_ID or "").strip()
        token = (s.CLOUDFLARE_API_TOKEN or "").strip()
        if not account_id or not token:
            logger.warning("Cloudflare credentials missing; audio not transcribed")
            return ASRResult(text="", confidence=0.0)

        url = f"https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/@cf/openai/whisper"
        headers = {"Authorization": f"Bearer {token}"}
        body = {"audio": list(pcm_bytes)}

        try:
            with httpx.Client(timeout=s.ASR_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = client.post(url, headers=headers, json=body)
            if resp.status_code != 200:
                logger.warning("Whisper request returned HTTP %s", resp.status_code)
                return ASRResult(text="", confidence=0.0)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Whisper request failed: %s", e)
            return ASRResult(text="", confidence=0.0)

        result = data.get("result", data) if isinstance(data, dict) else data
        if isinstance(result, dict):
            text = result.get("text", result.get("transcript", ""))
        elif isinstance(result, str):
            text = result
        else:
            text = ""
        text = (text or "").strip()
        return ASRResult(text=text, confidence=1.0 if text else 0.0)

    async def transcribe(self, pcm_bytes: bytes) -> ASRResult:
        audio = pcm_bytes_to_float32(pcm_bytes)
        if rms(audio) < self._settings.ASR_SILENCE_RMS:
            return ASRResult(text="", confidence=0.0)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._sync_transcribe, pcm_bytes)
