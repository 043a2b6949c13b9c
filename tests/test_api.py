"""HTTP routes and the /ws/meeting flow through TestClient."""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from livemeet.main import app


@pytest.fixture
def client(monkeypatch):
    env = {
        "JWT_SECRET": "api-test-secret",
        "ASR_BACKEND": "none",
        "AI_ENABLED": "false",
        "PUBLIC_SESSIONS_BY_DEFAULT": "false",
        "TRANSCRIPT_SAVE_ENABLED": "false",
        "LOG_FILE": "",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    with TestClient(app) as c:
        yield c


def _token(client: TestClient, participant_id: str) -> str:
    return client.app.state.verifier.issue(participant_id, participant_id.title())


def _auth(client: TestClient, participant_id: str) -> dict:
    return {"Authorization": f"Bearer {_token(client, participant_id)}"}


def _register(client: TestClient, host: str, session_id: str = "s1", invited=None) -> dict:
    response = client.post(
        "/api/sessions",
        json={"sessionId": session_id, "invited": invited or []},
        headers=_auth(client, host),
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_register_session_requires_token(client):
    assert client.post("/api/sessions", json={}).status_code == 401
    bad = client.post("/api/sessions", json={}, headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


def test_register_session_makes_caller_host(client):
    body = _register(client, "alice", invited=["bob"])
    assert body == {"sessionId": "s1", "hostId": "alice", "invited": ["bob"], "isPublic": False}

    taken = client.post("/api/sessions", json={"sessionId": "s1"}, headers=_auth(client, "bob"))
    assert taken.status_code == 403


def test_register_generates_session_id(client):
    body = client.post("/api/sessions", json={}, headers=_auth(client, "alice")).json()
    assert body["sessionId"].startswith("ses_")


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/meeting?token=garbage") as ws:
            event = ws.receive_json()
            assert event["type"] == "auth-error"
            assert event["code"] == "authentication-failed"
            ws.receive_json()
    assert exc.value.code == 4401


def test_websocket_meeting_flow_and_transcript_routes(client):
    _register(client, "alice", invited=["bob"])

    with client.websocket_connect(f"/ws/meeting?token={_token(client, 'alice')}") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_text("not json")
        error = ws.receive_json()
        assert error["type"] == "operation-error"
        assert error["code"] == "invalid-command"

        ws.send_json({"type": "join-session", "sessionId": "s1"})
        joined = ws.receive_json()
        assert joined["type"] == "session-joined"
        assert [m["participantId"] for m in joined["members"]] == ["alice"]

        ws.send_json({"type": "transcript-fragment", "sessionId": "s1", "fragment": {"text": "kick off the budget"}})
        update = ws.receive_json()
        assert update["type"] == "transcript-updated"
        assert update["action"] == "created"
        assert update["aggregate"]["totalWords"] == 4

        ws.send_json({"type": "transcript-fragment", "sessionId": "s1", "fragment": {"text": "budget meeting now"}})
        update = ws.receive_json()
        assert update["action"] == "extended"
        assert update["segment"]["text"] == "kick off the budget meeting now"
        segment_id = update["segment"]["id"]

    headers = _auth(client, "bob")
    transcript = client.get("/api/sessions/s1/transcript", headers=headers)
    assert transcript.status_code == 200
    assert transcript.json()["aggregate"]["fullText"] == "kick off the budget meeting now"

    search = client.get("/api/sessions/s1/segments/search", params={"q": "BUDGET"}, headers=headers)
    assert [s["id"] for s in search.json()["segments"]] == [segment_id]

    patched = client.patch(f"/api/sessions/s1/segments/{segment_id}", json={"text": "Kick off."}, headers=headers)
    assert patched.status_code == 200
    assert patched.json()["segment"]["text"] == "Kick off."

    enhanced = client.post("/api/sessions/s1/enhance", headers=headers)
    assert enhanced.json() == {"sessionId": "s1", "text": "Kick off.", "enhanced": False}

    assert client.delete("/api/sessions/s1/segments/seg_missing", headers=headers).status_code == 404
    assert client.delete(f"/api/sessions/s1/segments/{segment_id}", headers=headers).status_code == 204
    after = client.get("/api/sessions/s1/transcript", headers=headers).json()
    assert after["segments"] == []
    assert after["aggregate"]["totalWords"] == 0


def test_transcript_routes_enforce_access(client):
    _register(client, "alice")
    outsider = _auth(client, "mallory")
    assert client.get("/api/sessions/s1/transcript", headers=outsider).status_code == 403
    assert client.get("/api/sessions/s1/transcript", headers=_auth(client, "alice")).status_code == 404
    assert client.get("/api/sessions/unknown/transcript", headers=outsider).status_code == 403


def test_websocket_chat_question_gets_fallback_answer(client):
    _register(client, "alice")
    with client.websocket_connect(f"/ws/meeting?token={_token(client, 'alice')}") as ws:
        ws.receive_json()
        ws.send_json({"type": "join-session", "sessionId": "s1"})
        ws.receive_json()
        ws.send_json({"type": "chat-message", "sessionId": "s1", "text": "Who is presenting?"})

        events = [ws.receive_json() for _ in range(3)]

    by_type = {}
    for event in events:
        by_type.setdefault(event["type"], []).append(event)
    assert len(by_type["message-sent"]) == 1
    messages = [e["message"] for e in by_type["chat-message-appended"]]
    assert [m["kind"] for m in messages] == ["user", "ai"]
    assert messages[1]["correlatedAnswer"]["sourceQuestionId"] == messages[0]["id"]
    assert messages[1]["correlatedAnswer"]["confidenceScore"] == 0.0


def test_register_rejects_path_like_session_id(client):
    response = client.post("/api/sessions", json={"sessionId": "../etc"}, headers=_auth(client, "alice"))
    assert response.status_code == 422
