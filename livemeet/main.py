"""
FastAPI app: WebSocket endpoint for live meeting sessions (membership, transcript
merge, chat with AI answers); HTTP API for session access and transcript edits.

Client connects to /ws/meeting?token=<jwt> and sends JSON commands:
{ "type": "join-session" | "transcript-fragment" | "chat-message" | ..., "sessionId": "...", ... }
Server pushes JSON events: { "type": "...", ..., "timestamp": unix_ms }
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from livemeet.asr import create_speech_to_text
from livemeet.config import get_settings
from livemeet.coordinator import SessionCoordinator
from livemeet.errors import (
    AuthenticationFailed,
    AuthorizationDenied,
    CollaboratorUnavailable,
    InvalidCommand,
    LiveMeetError,
    NotInSession,
    SegmentNotFound,
)
from livemeet.logging_setup import configure_logging
from livemeet.rooms import RoomRegistry
from livemeet.schemas.api import (
    EnhanceResponse,
    RegisterSessionRequest,
    RegisterSessionResponse,
    SegmentUpdateRequest,
)
from livemeet.services.ai_service import create_ai_service
from livemeet.services.auth import Identity, InMemoryAccessPolicy, TokenVerifier
from livemeet.session_store import SessionStore
from livemeet.transcript.writer import create_snapshot_writer
from livemeet.websocket_manager import WebSocketEventSink, WebSocketManager

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[LiveMeetError], int] = {
    AuthenticationFailed: 401,
    AuthorizationDenied: 403,
    NotInSession: 403,
    SegmentNotFound: 404,
    InvalidCommand: 400,
    CollaboratorUnavailable: 502,
}


def _http_error(e: LiveMeetError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_ERROR.get(type(e), 500), detail=e.message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    writer = create_snapshot_writer(settings)
    await writer.start()

    sink = WebSocketEventSink()
    store = SessionStore(writer)
    verifier = TokenVerifier(settings)
    access_policy = InMemoryAccessPolicy(public_by_default=settings.PUBLIC_SESSIONS_BY_DEFAULT)
    app.state.settings = settings
    app.state.sink = sink
    app.state.store = store
    app.state.verifier = verifier
    app.state.access_policy = access_policy
    app.state.coordinator = SessionCoordinator(
        registry=RoomRegistry(),
        store=store,
        verifier=verifier,
        access_policy=access_policy,
        ai_service=create_ai_service(settings),
        speech_to_text=create_speech_to_text(settings),
        sink=sink,
        settings=settings,
    )
    logger.info("LiveMeet started (asr=%s, ai=%s)", settings.ASR_BACKEND, settings.AI_ENABLED)
    yield
    # Shutdown: let pending AI answers land, then flush snapshots
    await app.state.coordinator.chat.drain()
    await writer.close()


app = FastAPI(
    title="LiveMeet",
    description="Live meeting coordinator: rooms, merged transcripts, chat with AI answers",
    lifespan=lifespan,
)


@app.websocket("/ws/meeting")
async def websocket_meeting(websocket: WebSocket) -> None:
    """
    WebSocket: client sends JSON commands, server sends JSON events.
    Token in the `token` query parameter; invalid token -> auth-error, close 4401.
    """
    manager = WebSocketManager(websocket, websocket.app.state.coordinator, websocket.app.state.sink)
    try:
        await manager.run()
    except WebSocketDisconnect:
        pass


def current_identity(request: Request, authorization: str | None = Header(None)) -> Identity:
    """Bearer JWT from the Authorization header."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Bearer token required")
    try:
        return request.app.state.verifier.verify(token.strip())
    except AuthenticationFailed as e:
        raise _http_error(e)


def get_coordinator(request: Request) -> SessionCoordinator:
    return request.app.state.coordinator


async def _require_access(coordinator: SessionCoordinator, session_id: str, identity: Identity) -> None:
    if not await coordinator.can_access(session_id, identity.participant_id):
        raise HTTPException(status_code=403, detail="Access denied")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/api/sessions", response_model=RegisterSessionResponse)
async def register_session(
    body: RegisterSessionRequest,
    request: Request,
    identity: Identity = Depends(current_identity),
) -> RegisterSessionResponse:
    """Register access for a session. The caller becomes the host."""
    policy: InMemoryAccessPolicy = request.app.state.access_policy
    session_id = (body.session_id or "").strip() or f"ses_{uuid.uuid4().hex[:12]}"
    existing = policy.get(session_id)
    if existing is not None and existing.host_id != identity.participant_id:
        raise HTTPException(status_code=403, detail="Session is already registered by another host")
    access = await policy.register(session_id, identity.participant_id, body.invited, body.is_public)
    return RegisterSessionResponse(
        session_id=session_id,
        host_id=access.host_id,
        invited=sorted(access.invited),
        is_public=access.is_public,
    )


@app.get("/api/sessions/{session_id}/transcript")
async def get_transcript(
    session_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> dict:
    await _require_access(coordinator, session_id, identity)
    record = request.app.state.store.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return record.to_dict()


@app.get("/api/sessions/{session_id}/segments/search")
async def search_segments(
    session_id: str,
    q: str,
    speaker: str | None = None,
    start: float | None = None,
    end: float | None = None,
    identity: Identity = Depends(current_identity),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> dict:
    await _require_access(coordinator, session_id, identity)
    results = coordinator.search_segments(session_id, q, speaker_id=speaker, start_time=start, end_time=end)
    return {"sessionId": session_id, "query": q, "segments": [s.to_dict() for s in results]}


@app.patch("/api/sessions/{session_id}/segments/{segment_id}")
async def update_segment(
    session_id: str,
    segment_id: str,
    body: SegmentUpdateRequest,
    identity: Identity = Depends(current_identity),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> dict:
    await _require_access(coordinator, session_id, identity)
    try:
        segment = await coordinator.update_segment(
            session_id,
            segment_id,
            text=body.text,
            speaker_name=body.speaker_name,
            confidence=body.confidence,
        )
    except LiveMeetError as e:
        raise _http_error(e)
    return {"sessionId": session_id, "segment": segment.to_dict()}


@app.delete("/api/sessions/{session_id}/segments/{segment_id}", status_code=204)
async def delete_segment(
    session_id: str,
    segment_id: str,
    identity: Identity = Depends(current_identity),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> Response:
    await _require_access(coordinator, session_id, identity)
    try:
        await coordinator.delete_segment(session_id, segment_id)
    except LiveMeetError as e:
        raise _http_error(e)
    return Response(status_code=204)


@app.post("/api/sessions/{session_id}/enhance", response_model=EnhanceResponse)
async def enhance_transcript(
    session_id: str,
    request: Request,
    identity: Identity = Depends(current_identity),
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> EnhanceResponse:
    """Enhanced copy of the full transcript text. The stored transcript is not changed."""
    await _require_access(coordinator, session_id, identity)
    if request.app.state.store.get(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    text, enhanced = await coordinator.enhance_transcript(session_id)
    return EnhanceResponse(session_id=session_id, text=text, enhanced=enhanced)
