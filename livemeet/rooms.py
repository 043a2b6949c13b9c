"""
RoomRegistry: session id -> connected participant ids. Membership only.

Constructed once at app startup and injected into the coordinator. One
process-wide asyncio.Lock guards mutations; every operation is O(1).
"""
from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class RoomRegistry:
    def __init__(self) -> None:
        # session_id -> participant ids in join order (dict used as ordered set)
        self._rooms: dict[str, dict[str, None]] = {}
        self._lock = asyncio.Lock()

    async def join(self, session_id: str, participant_id: str) -> list[str]:
        """Add participant (no-op if already a member). Returns the current member list."""
        async with self._lock:
            members = self._rooms.setdefault(session_id, {})
            if participant_id not in members:
                members[participant_id] = None
                logger.debug("Room %s: +%s (%s members)", session_id, participant_id, len(members))
            return list(members)

    async def leave(self, session_id: str, participant_id: str) -> bool:
        """Remove participant; an empty room is deleted. Returns False if they were not a member."""
        async with self._lock:
            members = self._rooms.get(session_id)
            if members is None or participant_id not in members:
                return False
            del members[participant_id]
            if not members:
                del self._rooms[session_id]
                logger.debug("Room %s closed (empty)", session_id)
            return True

    def members_of(self, session_id: str) -> list[str]:
        return list(self._rooms.get(session_id, ()))

    def is_member(self, session_id: str, participant_id: str) -> bool:
        return participant_id in self._rooms.get(session_id, ())

    def rooms(self) -> dict[str, list[str]]:
        """Snapshot of all rooms (diagnostics)."""
        return {sid: list(members) for sid, members in self._rooms.items()}
