"""
Credential verification and session access policy.

- TokenVerifier: HS256 JWT; "sub" = participant id, "name" = display name.
- AccessPolicy: who may join a session (host, invited participant, or public)
  and who may control recording (host only). The in-memory implementation
  stands in for the meeting service that owns this data.
"""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import jwt

from livemeet.config import Settings, get_settings
from livemeet.errors import AuthenticationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    participant_id: str
    display_name: str


class TokenVerifier:
    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self._secret = settings.JWT_SECRET
        self._algorithm = settings.JWT_ALGORITHM

    def verify(self, token: str | None) -> Identity:
        """Decode token; raise AuthenticationFailed on anything invalid."""
        if not (token or "").strip():
            raise AuthenticationFailed("Authentication token required")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.PyJWTError as e:
            logger.info("Token rejected: %s", e)
            raise AuthenticationFailed("Authentication failed") from e
        participant_id = str(claims.get("sub") or "").strip()
        if not participant_id:
            raise AuthenticationFailed("Token has no subject")
        display_name = str(claims.get("name") or participant_id)
        return Identity(participant_id=participant_id, display_name=display_name)

    def issue(self, participant_id: str, display_name: str, ttl_seconds: int = 3600) -> str:
        """Mint a token (dev tooling and tests)."""
        now = int(time.time())
        payload = {"sub": participant_id, "name": display_name, "iat": now, "exp": now + ttl_seconds}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)


class AccessPolicy(ABC):
    """Authorization collaborator. Async: real implementations ask another service."""

    @abstractmethod
    async def can_access(self, session_id: str, participant_id: str) -> bool:
        ...

    @abstractmethod
    async def is_host(self, session_id: str, participant_id: str) -> bool:
        ...


@dataclass
class SessionAccess:
    host_id: str
    invited: set[str] = field(default_factory=set)
    is_public: bool = False


class InMemoryAccessPolicy(AccessPolicy):
    def __init__(self, public_by_default: bool = False) -> None:
        self._sessions: dict[str, SessionAccess] = {}
        self._public_by_default = public_by_default
        self._lock = asyncio.Lock()

    async def register(
        self,
        session_id: str,
        host_id: str,
        invited: list[str] | None = None,
        is_public: bool = False,
    ) -> SessionAccess:
        async with self._lock:
            access = SessionAccess(host_id=host_id, invited=set(invited or ()), is_public=is_public)
            self._sessions[session_id] = access
        logger.info("Session %s registered (host=%s, public=%s)", session_id, host_id, is_public)
        return access

    def get(self, session_id: str) -> SessionAccess | None:
        return self._sessions.get(session_id)

    async def can_access(self, session_id: str, participant_id: str) -> bool:
        access = self._sessions.get(session_id)
        if access is None:
            return self._public_by_default
        if access.host_id == participant_id or access.is_public:
            return True
        return participant_id in access.invited

    async def is_host(self, session_id: str, participant_id: str) -> bool:
        access = self._sessions.get(session_id)
        return access is not None and access.host_id == participant_id
