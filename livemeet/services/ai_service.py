"""
AI collaborator: answer questions about the live transcript and clean up
transcript text. Backed by Cloudflare Workers AI text generation.

Both calls raise CollaboratorUnavailable on any failure (disabled, missing
credentials, network, HTTP status, unparseable body); the chat relay turns
that into its fixed fallback message.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from livemeet.config import Settings, get_settings
from livemeet.errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AIAnswer:
    text: str
    confidence: float


class AIService(ABC):
    @abstractmethod
    async def enhance(self, text: str) -> str:
        """Return a cleaned-up version of transcript text."""
        ...

    @abstractmethod
    async def answer(self, question: str, context: str) -> AIAnswer:
        """Answer a question using the transcript as context."""
        ...


_ANSWER_SYSTEM_PROMPT = """You are a meeting assistant. You are given the live transcript of an ongoing meeting.

RULES:
- Answer the user's question based only on the transcript.
- The transcript may be incomplete or noisy. Do NOT invent content.
- If the answer is not in the transcript, say so politely.
- Reply in plain, natural language. No JSON, no markdown headers."""

_ENHANCE_SYSTEM_PROMPT = """You clean up speech-to-text output.

RULES:
- Fix punctuation, capitalization and obvious misrecognitions.
- Never add, remove or summarize content.
- If unsure, keep the original wording.
- Output ONLY the corrected text."""


def _build_answer_user_message(question: str, context: str) -> str:
    return (
        "Meeting transcript:\n"
        f"\"{context.strip() if context else '(no transcript yet)'}\"\n\n"
        f"User question: \"{question.strip()}\""
    )


def _extract_response_text(data: dict) -> str:
    """Workers AI returns { "result": { "response": "..." } } or a direct { "response": "..." }."""
    result = data.get("result", data)
    if isinstance(result, dict):
        content = result.get("response", "") or ""
    elif isinstance(result, str):
        content = result
    else:
        content = ""
    return (content or "").strip()


class CloudflareAIService(AIService):
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings or get_settings()
        # transport is injectable so tests can use httpx.MockTransport
        self._transport = transport

    def _url(self) -> str:
        s = self._settings
        account_id = (s.CLOUDFLARE_ACCOUNT_ID or "").strip()
        token = (s.CLOUDFLARE_API_TOKEN or "").strip()
        if not s.AI_ENABLED:
            raise CollaboratorUnavailable("AI is disabled (AI_ENABLED=false)")
        if not account_id or not token:
            raise CollaboratorUnavailable("CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN are required for AI")
        return f"https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{s.AI_CF_MODEL}"

    async def _run(self, messages: list[dict[str, str]], temperature: float) -> str:
        url = self._url()
        payload = {
            "messages": messages,
            "max_tokens": self._settings.AI_MAX_TOKENS,
            "temperature": temperature,
        }
        headers = {
            "Authorization": f"Bearer {self._settings.CLOUDFLARE_API_TOKEN.strip()}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._settings.AI_TIMEOUT_SECONDS, transport=self._transport) as client:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Workers AI call failed: %s", e)
            raise CollaboratorUnavailable(f"AI request failed: {e}") from e
        if not isinstance(data, dict):
            raise CollaboratorUnavailable("AI returned an unexpected payload")
        return _extract_response_text(data)

    async def answer(self, question: str, context: str) -> AIAnswer:
        text = await self._run(
            [
                {"role": "system", "content": _ANSWER_SYSTEM_PROMPT},
                {"role": "user", "content": _build_answer_user_message(question, context)},
            ],
            temperature=0.4,
        )
        return AIAnswer(text=text, confidence=self._settings.AI_ANSWER_CONFIDENCE if text else 0.0)

    async def enhance(self, text: str) -> str:
        if not (text or "").strip():
            return text
        enhanced = await self._run(
            [
                {"role": "system", "content": _ENHANCE_SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            temperature=0.2,
        )
        return enhanced or text


def create_ai_service(settings: Settings | None = None) -> AIService:
    return CloudflareAIService(settings)
