"""
SessionCoordinator: connection state machine, room membership, and the
fragment -> merge -> aggregate -> broadcast pipeline.

Connection states:

    UNAUTHENTICATED -> AUTHENTICATED -> IN_SESSION -> AUTHENTICATED (leave)
    any state -> DISCONNECTED (terminal)

Every change to a session's transcript, chat, or membership happens under
that session's lock (SessionStore.lock), so concurrent writers are applied
one at a time in arrival order and broadcasts go out in commit order.
Collaborators (access policy, speech-to-text, AI) are always awaited with no
lock held.

The coordinator is transport-agnostic: inbound commands are typed objects
from livemeet.schemas.commands, outbound events are dicts handed to an
EventSink keyed by connection id.
"""
from __future__ import annotations

import base64
import binascii
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable

from livemeet.asr.base import SpeechToText
from livemeet.chat_relay import ChatRelay
from livemeet.config import Settings, get_settings
from livemeet.errors import (
    AuthenticationFailed,
    AuthorizationDenied,
    CollaboratorUnavailable,
    InvalidCommand,
    InvariantViolation,
    LiveMeetError,
    NotInSession,
    SegmentNotFound,
)
from livemeet.rooms import RoomRegistry
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
from livemeet.services.ai_service import AIService
from livemeet.services.auth import AccessPolicy, TokenVerifier
from livemeet.session_store import SessionStore
from livemeet.transcript.aggregate import recompute, verify
from livemeet.transcript.merger import DISCARDED, MergeResult, merge
from livemeet.transcript.models import Fragment, TranscriptAggregate, TranscriptSegment, unix_ms

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    IN_SESSION = "in_session"
    DISCONNECTED = "disconnected"


@dataclass
class Connection:
    connection_id: str
    participant_id: str = ""
    display_name: str = ""
    current_session_id: str | None = None
    state: ConnectionState = ConnectionState.UNAUTHENTICATED

    def participant(self) -> dict[str, str]:
        return {"participantId": self.participant_id, "displayName": self.display_name}


class EventSink(ABC):
    """Delivers outbound events to one connection. Implementations must not raise on a dead peer."""

    @abstractmethod
    async def send(self, connection_id: str, event: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def close(self, connection_id: str, code: int = 1000, reason: str = "") -> None:
        ...


def _event(event_type: str, **payload: Any) -> dict[str, Any]:
    return {"type": event_type, **payload, "timestamp": unix_ms()}


class SessionCoordinator:
    def __init__(
        self,
        registry: RoomRegistry,
        store: SessionStore,
        verifier: TokenVerifier,
        access_policy: AccessPolicy,
        ai_service: AIService,
        speech_to_text: SpeechToText,
        sink: EventSink,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._verifier = verifier
        self._access = access_policy
        self._ai = ai_service
        self._stt = speech_to_text
        self._sink = sink
        self._settings = settings or get_settings()
        self._connections: dict[str, Connection] = {}
        self._by_participant: dict[str, str] = {}  # participant_id -> connection_id
        self.chat = ChatRelay(store, ai_service, self.broadcast, self._settings)
        self._handlers: dict[type, Callable[[Connection, Any], Awaitable[None]]] = {
            JoinSession: self._on_join,
            LeaveSession: self._on_leave,
            TranscriptFragment: self._on_fragment,
            TranscriptAudio: self._on_audio,
            ChatMessageIn: self._on_chat,
            RecordingState: self._on_recording_state,
            ParticipantStatus: self._on_participant_status,
        }

    # --- lookups ---

    def connection(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def connection_for(self, participant_id: str) -> Connection | None:
        cid = self._by_participant.get(participant_id)
        return self._connections.get(cid) if cid else None

    def _participant_info(self, participant_id: str) -> dict[str, str]:
        conn = self.connection_for(participant_id)
        if conn is None:
            return {"participantId": participant_id, "displayName": participant_id}
        return conn.participant()

    def members(self, session_id: str) -> list[dict[str, str]]:
        return [self._participant_info(pid) for pid in self._registry.members_of(session_id)]

    # --- delivery ---

    async def send(self, connection_id: str, event: dict[str, Any]) -> None:
        await self._sink.send(connection_id, event)

    async def broadcast(self, session_id: str, event: dict[str, Any], exclude: str | None = None) -> int:
        """Send event to every current member of the session's room except `exclude` (participant id)."""
        sent = 0
        for pid in self._registry.members_of(session_id):
            if pid == exclude:
                continue
            cid = self._by_participant.get(pid)
            if cid is None:
                continue
            await self._sink.send(cid, event)
            sent += 1
        return sent

    async def _send_error(self, connection_id: str, error: LiveMeetError) -> None:
        await self.send(connection_id, _event("operation-error", message=error.message, code=error.code))

    # --- lifecycle ---

    async def connect(self, connection_id: str, token: str | None) -> Connection:
        """UNAUTHENTICATED -> AUTHENTICATED. Raises AuthenticationFailed; the caller closes the transport."""
        conn = Connection(connection_id=connection_id)
        try:
            identity = self._verifier.verify(token)
        except AuthenticationFailed:
            conn.state = ConnectionState.DISCONNECTED
            raise
        conn.participant_id = identity.participant_id
        conn.display_name = identity.display_name
        conn.state = ConnectionState.AUTHENTICATED

        previous = self._by_participant.get(conn.participant_id)
        if previous is not None and previous != connection_id:
            logger.info("Participant %s reconnected; superseding connection %s", conn.participant_id, previous)
            await self.disconnect(previous)
            await self._sink.close(previous, code=4409, reason="Superseded by a newer connection")

        self._connections[connection_id] = conn
        self._by_participant[conn.participant_id] = connection_id
        logger.info("%s connected (%s) as %s", conn.display_name, conn.participant_id, connection_id)
        await self.send(connection_id, _event("connected", participant=conn.participant()))
        return conn

    async def disconnect(self, connection_id: str) -> None:
        """Any state -> DISCONNECTED. Leaves the current room (with member-left) exactly once."""
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return
        if self._by_participant.get(conn.participant_id) == connection_id:
            del self._by_participant[conn.participant_id]
        session_id = conn.current_session_id
        conn.state = ConnectionState.DISCONNECTED
        if session_id is not None:
            await self._leave_room(conn, session_id)
        logger.info("%s disconnected (%s)", conn.display_name, conn.participant_id)

    # --- inbound commands ---

    async def handle_message(self, connection_id: str, data: Any) -> None:
        """Parse one raw inbound message and dispatch it; errors go back to the sender only."""
        try:
            command = parse_command(data)
        except InvalidCommand as e:
            await self._send_error(connection_id, e)
            return
        await self.dispatch(connection_id, command)

    async def dispatch(self, connection_id: str, command: Command) -> None:
        conn = self._connections.get(connection_id)
        if conn is None:
            logger.debug("Dropping %s for unknown connection %s", command.type, connection_id)
            return
        handler = self._handlers[type(command)]
        try:
            await handler(conn, command)
        except LiveMeetError as e:
            logger.info("%s from %s rejected: %s", command.type, conn.participant_id, e.message)
            await self._send_error(connection_id, e)
        except Exception:
            logger.exception("Unhandled error processing %s from %s", command.type, conn.participant_id)
            await self.send(connection_id, _event("operation-error", message="Internal error", code="internal-error"))

    def _require_session(self, conn: Connection, session_id: str) -> None:
        if conn.state is not ConnectionState.IN_SESSION or conn.current_session_id != session_id:
            raise NotInSession("Not in this session")

    async def _on_join(self, conn: Connection, command: JoinSession) -> None:
        await self.join(conn, command.session_id)

    async def join(self, conn: Connection, session_id: str) -> list[dict[str, str]]:
        if conn.state is ConnectionState.IN_SESSION and conn.current_session_id == session_id:
            members = self.members(session_id)
            await self._send_joined(conn, session_id, members)
            return members

        if not await self._access.can_access(session_id, conn.participant_id):
            raise AuthorizationDenied("Access denied")
        if conn.state is ConnectionState.DISCONNECTED:
            return []

        if conn.state is ConnectionState.IN_SESSION and conn.current_session_id is not None:
            # Implicit leave of the previous room
            await self._leave_room(conn, conn.current_session_id)

        async with self._store.lock(session_id):
            if conn.state is ConnectionState.DISCONNECTED:
                return []
            await self._registry.join(session_id, conn.participant_id)
            if not self._is_live(conn):
                # Disconnected or superseded while registering; nobody was told about this join
                if not self._owned_elsewhere(conn, session_id):
                    await self._registry.leave(session_id, conn.participant_id)
                return []
            conn.current_session_id = session_id
            conn.state = ConnectionState.IN_SESSION
            self._store.get_or_create(session_id)
            members = self.members(session_id)
            await self._send_joined(conn, session_id, members)
            await self.broadcast(
                session_id,
                _event("member-joined", sessionId=session_id, participant=conn.participant()),
                exclude=conn.participant_id,
            )
        logger.info("%s joined session %s (%s members)", conn.display_name, session_id, len(members))
        return members

    async def _send_joined(self, conn: Connection, session_id: str, members: list[dict[str, str]]) -> None:
        record = self._store.get_or_create(session_id)
        await self.send(
            conn.connection_id,
            _event("session-joined", sessionId=session_id, members=members, sessionSummary=record.summary()),
        )

    async def _on_leave(self, conn: Connection, command: LeaveSession) -> None:
        self._require_session(conn, command.session_id)
        await self._leave_room(conn, command.session_id)

    def _is_live(self, conn: Connection) -> bool:
        return conn.state is not ConnectionState.DISCONNECTED and self._connections.get(conn.connection_id) is conn

    def _owned_elsewhere(self, conn: Connection, session_id: str) -> bool:
        """True when a newer connection of the same participant holds this room membership."""
        other = self.connection_for(conn.participant_id)
        return other is not None and other is not conn and other.current_session_id == session_id

    async def _leave_room(self, conn: Connection, session_id: str) -> None:
        async with self._store.lock(session_id):
            if conn.current_session_id != session_id:
                # Already left; implicit leave and disconnect can both queue here
                return
            conn.current_session_id = None
            if conn.state is ConnectionState.IN_SESSION:
                conn.state = ConnectionState.AUTHENTICATED
            if self._owned_elsewhere(conn, session_id):
                return
            removed = await self._registry.leave(session_id, conn.participant_id)
            if removed:
                await self.broadcast(
                    session_id, _event("member-left", sessionId=session_id, participant=conn.participant())
                )
            if not self._registry.members_of(session_id) and self._store.discard_if_unused(session_id):
                logger.debug("Session %s ended with no content; record dropped", session_id)
        logger.info("%s left session %s", conn.display_name, session_id)

    async def _on_fragment(self, conn: Connection, command: TranscriptFragment) -> None:
        self._require_session(conn, command.session_id)
        text = (command.fragment.text or "").strip()
        if not text:
            raise InvalidCommand("Fragment text is empty")
        confidence = command.fragment.confidence
        fragment = Fragment(
            speaker_id=conn.participant_id,
            speaker_name=conn.display_name,
            text=text,
            confidence=self._settings.DEFAULT_CONFIDENCE if confidence is None else confidence,
            language=command.fragment.language or self._settings.DEFAULT_LANGUAGE,
        )
        await self.apply_fragment(command.session_id, fragment)

    async def _on_audio(self, conn: Connection, command: TranscriptAudio) -> None:
        self._require_session(conn, command.session_id)
        try:
            pcm = base64.b64decode(command.audio, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidCommand("Audio is not valid base64") from e
        result = await self._stt.transcribe(pcm)
        text = (result.text or "").strip()
        if not text:
            logger.debug("No speech recognized in %s bytes from %s", len(pcm), conn.participant_id)
            return
        fragment = Fragment(
            speaker_id=conn.participant_id,
            speaker_name=conn.display_name,
            text=text,
            confidence=min(1.0, max(0.0, result.confidence)),
            language=command.language or self._settings.DEFAULT_LANGUAGE,
        )
        await self.apply_fragment(command.session_id, fragment)

    async def apply_fragment(self, session_id: str, fragment: Fragment) -> MergeResult:
        """Merge, recompute, commit and broadcast as one step under the session lock."""
        async with self._store.lock(session_id):
            record = self._store.get_or_create(session_id)
            result = merge(record.segments, fragment, now=record.elapsed())
            if result.action == DISCARDED or result.affected is None:
                logger.debug("Discarded stale fragment from %s in %s", fragment.speaker_id, session_id)
                return result
            aggregate = self._recompute(result.segments)
            await self._store.commit_transcript(session_id, result.segments, aggregate)
            await self.broadcast(
                session_id,
                _event(
                    "transcript-updated",
                    sessionId=session_id,
                    action=result.action,
                    segment=result.affected.to_dict(),
                    aggregate=aggregate.counters(),
                ),
            )
        return result

    def _recompute(self, segments: list[TranscriptSegment]) -> TranscriptAggregate:
        aggregate = recompute(segments)
        if self._settings.VERIFY_AGGREGATES:
            try:
                verify(segments, aggregate)
            except InvariantViolation as e:
                logger.error("Aggregate invariant violated, mutation aborted: %s", e.message)
                raise
        return aggregate

    async def _on_chat(self, conn: Connection, command: ChatMessageIn) -> None:
        self._require_session(conn, command.session_id)
        message = await self.chat.post(command.session_id, conn.participant_id, conn.display_name, command.text)
        await self.send(conn.connection_id, _event("message-sent", sessionId=command.session_id, messageId=message.id))

    async def _on_recording_state(self, conn: Connection, command: RecordingState) -> None:
        self._require_session(conn, command.session_id)
        if not await self._access.is_host(command.session_id, conn.participant_id):
            raise AuthorizationDenied("Only host can control recording")
        async with self._store.lock(command.session_id):
            await self._store.set_recording(command.session_id, command.is_recording, command.is_paused)
            await self.broadcast(
                command.session_id,
                _event(
                    "recording-state-changed",
                    sessionId=command.session_id,
                    isRecording=command.is_recording,
                    isPaused=command.is_paused,
                    changedBy=conn.participant(),
                ),
            )
        logger.info(
            "Recording in %s set by %s: recording=%s paused=%s",
            command.session_id, conn.participant_id, command.is_recording, command.is_paused,
        )

    async def _on_participant_status(self, conn: Connection, command: ParticipantStatus) -> None:
        self._require_session(conn, command.session_id)
        await self.broadcast(
            command.session_id,
            _event(
                "participant-status-changed",
                sessionId=command.session_id,
                participant=conn.participant(),
                status=command.status,
            ),
            exclude=conn.participant_id,
        )

    # --- transcript edit actions (HTTP) ---

    async def can_access(self, session_id: str, participant_id: str) -> bool:
        return await self._access.can_access(session_id, participant_id)

    async def update_segment(
        self,
        session_id: str,
        segment_id: str,
        *,
        text: str | None = None,
        speaker_name: str | None = None,
        confidence: float | None = None,
    ) -> TranscriptSegment:
        changes: dict[str, Any] = {}
        if text is not None:
            if not text.strip():
                raise InvalidCommand("Segment text cannot be empty")
            changes["text"] = text.strip()
        if speaker_name is not None:
            changes["speaker_name"] = speaker_name
        if confidence is not None:
            changes["confidence"] = confidence

        async with self._store.lock(session_id):
            segments = self._segments_or_raise(session_id)
            index = self._index_of(segments, segment_id)
            updated = replace(segments[index], **changes)
            new_segments = [*segments[:index], updated, *segments[index + 1:]]
            aggregate = self._recompute(new_segments)
            await self._store.commit_transcript(session_id, new_segments, aggregate)
            await self.broadcast(
                session_id,
                _event(
                    "transcript-segment-updated",
                    sessionId=session_id,
                    segment=updated.to_dict(),
                    aggregate=aggregate.counters(),
                ),
            )
        return updated

    async def delete_segment(self, session_id: str, segment_id: str) -> TranscriptAggregate:
        async with self._store.lock(session_id):
            segments = self._segments_or_raise(session_id)
            index = self._index_of(segments, segment_id)
            new_segments = [*segments[:index], *segments[index + 1:]]
            aggregate = self._recompute(new_segments)
            await self._store.commit_transcript(session_id, new_segments, aggregate)
            await self.broadcast(
                session_id,
                _event(
                    "transcript-segment-deleted",
                    sessionId=session_id,
                    segmentId=segment_id,
                    aggregate=aggregate.counters(),
                ),
            )
        return aggregate

    def _segments_or_raise(self, session_id: str) -> list[TranscriptSegment]:
        record = self._store.get(session_id)
        if record is None:
            raise SegmentNotFound("Session has no transcript")
        return record.segments

    @staticmethod
    def _index_of(segments: list[TranscriptSegment], segment_id: str) -> int:
        for i, segment in enumerate(segments):
            if segment.id == segment_id:
                return i
        raise SegmentNotFound("Segment not found")

    def search_segments(
        self,
        session_id: str,
        query: str,
        speaker_id: str | None = None,
        start_time: float | None = None,
        end_time: float | None = None,
    ) -> list[TranscriptSegment]:
        """Case-insensitive substring search, optionally filtered by speaker and time range."""
        record = self._store.get(session_id)
        needle = (query or "").strip().lower()
        if record is None or not needle:
            return []
        results = []
        for segment in record.segments:
            if needle not in segment.text.lower():
                continue
            if speaker_id and segment.speaker_id != speaker_id:
                continue
            if start_time is not None and segment.start_time < start_time:
                continue
            if end_time is not None and segment.end_time > end_time:
                continue
            results.append(segment)
        return results

    async def enhance_transcript(self, session_id: str) -> tuple[str, bool]:
        """Enhanced full text (not stored). Falls back to the original text when the AI fails."""
        record = self._store.get(session_id)
        text = record.aggregate.full_text if record else ""
        if not text:
            return text, False
        try:
            return await self._ai.enhance(text), True
        except CollaboratorUnavailable as e:
            logger.warning("Enhance unavailable for %s: %s", session_id, e)
            return text, False
