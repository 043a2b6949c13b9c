"""
WebSocket transport for the SessionCoordinator.

One socket = one connection. The token comes from the `token` query parameter;
a bad token gets an auth-error event and close code 4401. After that every
text frame is one JSON command, handled inline and in order: a frame is fully
processed (merge committed, events broadcast) before the next one is read, so
a disconnect is only noticed between commands and never interrupts a merge.
"""
from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from livemeet.coordinator import EventSink, SessionCoordinator
from livemeet.errors import AuthenticationFailed, InvalidCommand
from livemeet.transcript.models import unix_ms

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401


class WebSocketEventSink(EventSink):
    """connection id -> socket. Sends to one socket are serialized; a dead peer is dropped silently."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}
        self._send_locks: dict[str, asyncio.Lock] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()

    def unregister(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self._send_locks.pop(connection_id, None)

    async def send(self, connection_id: str, event: dict[str, Any]) -> None:
        ws = self._sockets.get(connection_id)
        lock = self._send_locks.get(connection_id)
        if ws is None or lock is None:
            return
        async with lock:
            try:
                await ws.send_text(json.dumps(event))
            except Exception as e:
                logger.debug("Send to %s failed, dropping socket: %s", connection_id, e)
                self.unregister(connection_id)

    async def close(self, connection_id: str, code: int = 1000, reason: str = "") -> None:
        ws = self._sockets.get(connection_id)
        self.unregister(connection_id)
        if ws is None:
            return
        try:
            await ws.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("Close of %s failed: %s", connection_id, e)


class WebSocketManager:
    def __init__(self, websocket: WebSocket, coordinator: SessionCoordinator, sink: WebSocketEventSink) -> None:
        self._ws = websocket
        self._coordinator = coordinator
        self._sink = sink
        self._connection_id = uuid.uuid4().hex[:12]

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def run(self) -> None:
        """Authenticate, then read and handle commands until the peer goes away."""
        await self._ws.accept()
        self._sink.register(self._connection_id, self._ws)
        token = self._ws.query_params.get("token")
        try:
            await self._coordinator.connect(self._connection_id, token)
        except AuthenticationFailed as e:
            await self._sink.send(
                self._connection_id,
                {"type": "auth-error", "message": e.message, "code": e.code, "timestamp": unix_ms()},
            )
            await self._sink.close(self._connection_id, code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
            return

        try:
            while True:
                try:
                    msg = await self._ws.receive()
                except Exception:
                    break
                if msg.get("type") == "websocket.disconnect":
                    break
                text = msg.get("text")
                if text is None:
                    continue
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    err = InvalidCommand("Message is not valid JSON")
                    await self._sink.send(
                        self._connection_id,
                        {"type": "operation-error", "message": err.message, "code": err.code, "timestamp": unix_ms()},
                    )
                    continue
                await self._coordinator.handle_message(self._connection_id, data)
                if self._coordinator.connection(self._connection_id) is None:
                    # Superseded by a newer connection for the same participant
                    break
        finally:
            await self._coordinator.disconnect(self._connection_id)
            self._sink.unregister(self._connection_id)
