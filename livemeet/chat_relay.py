"""
Chat relay: appends chat messages to the session record and answers questions.

A user message is appended and broadcast immediately. A message containing
"?" also schedules an AI answer: the transcript is snapshotted, the AI
collaborator is called with no lock held, and the answer is appended under
the session lock afterwards. A failing collaborator still yields an AI
message (fixed apology, confidence 0) so every question gets a reply.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable

from livemeet.config import Settings, get_settings
from livemeet.errors import CollaboratorUnavailable, InvalidCommand
from livemeet.services.ai_service import AIService
from livemeet.session_store import SessionStore
from livemeet.transcript.models import (
    AI_MARKER,
    ChatMessage,
    CorrelatedAnswer,
    TranscriptSegment,
    generate_message_id,
    unix_ms,
)

logger = logging.getLogger(__name__)

AI_AUTHOR_NAME = "AI Assistant"
APOLOGY_TEXT = "I'm sorry, I encountered an error while processing your question. Please try again."
NO_ANSWER_TEXT = "I'm sorry, I couldn't generate a response to your question."

# (session_id, event, exclude_participant_id) -> None
Broadcast = Callable[..., Awaitable[Any]]


def is_question(text: str) -> bool:
    return "?" in (text or "")


def related_segment_ids(question: str, segments: list[TranscriptSegment], limit: int = 3) -> list[str]:
    """
    Ids of the first `limit` segments (in transcript order) whose text contains
    a question word longer than 3 characters. Keyword match, not semantic search.
    """
    words = {w for w in re.findall(r"\w+", (question or "").lower()) if len(w) > 3}
    if not words or limit <= 0:
        return []
    out: list[str] = []
    for segment in segments:
        text = segment.text.lower()
        if any(w in text for w in words):
            out.append(segment.id)
            if len(out) >= limit:
                break
    return out


class ChatRelay:
    def __init__(
        self,
        store: SessionStore,
        ai_service: AIService,
        broadcast: Broadcast,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._ai = ai_service
        self._broadcast = broadcast
        self._settings = settings or get_settings()
        self._pending: set[asyncio.Task] = set()

    async def post(self, session_id: str, author_id: str, author_name: str, text: str) -> ChatMessage:
        """Append and broadcast a user message; schedule an AI answer when it is a question."""
        text = (text or "").strip()
        if not text:
            raise InvalidCommand("Message text is empty")
        if len(text) > self._settings.CHAT_MESSAGE_MAX_CHARS:
            raise InvalidCommand(f"Message cannot exceed {self._settings.CHAT_MESSAGE_MAX_CHARS} characters")

        message = ChatMessage(
            id=generate_message_id(),
            author_participant_id=author_id,
            author_name=author_name,
            text=text,
            kind="user",
            timestamp=unix_ms(),
        )
        async with self._store.lock(session_id):
            await self._store.append_chat(session_id, message)
            await self._broadcast(
                session_id,
                {"type": "chat-message-appended", "sessionId": session_id, "message": message.to_dict()},
            )

        if is_question(text):
            task = asyncio.create_task(self._answer(session_id, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return message

    async def _answer(self, session_id: str, question: ChatMessage) -> ChatMessage:
        record = self._store.get_or_create(session_id)
        context = record.aggregate.full_text
        segments = list(record.segments)

        started = time.monotonic()
        try:
            answer = await self._ai.answer(question.text, context)
            text = answer.text or NO_ANSWER_TEXT
            confidence = answer.confidence
            cited = related_segment_ids(question.text, segments, self._settings.AI_RELATED_SEGMENTS_MAX)
        except CollaboratorUnavailable as e:
            logger.warning("AI answer unavailable for %s in %s: %s", question.id, session_id, e)
            text, confidence, cited = APOLOGY_TEXT, 0.0, []
        except Exception:
            logger.exception("AI answer failed for %s in %s", question.id, session_id)
            text, confidence, cited = APOLOGY_TEXT, 0.0, []
        processing_ms = int((time.monotonic() - started) * 1000)

        async with self._store.lock(session_id):
            reply = ChatMessage(
                id=generate_message_id(),
                author_participant_id=AI_MARKER,
                author_name=AI_AUTHOR_NAME,
                text=text,
                kind="ai",
                timestamp=max(unix_ms(), question.timestamp),
                correlated_answer=CorrelatedAnswer(
                    source_question_id=question.id,
                    confidence_score=confidence,
                    cited_segment_ids=tuple(cited),
                    processing_ms=processing_ms,
                ),
            )
            await self._store.append_chat(session_id, reply)
            await self._broadcast(
                session_id,
                {"type": "chat-message-appended", "sessionId": session_id, "message": reply.to_dict()},
            )
        return reply

    async def drain(self) -> None:
        """Wait for every scheduled answer (tests, shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
