"""
Error taxonomy for the session coordinator.

Operational errors carry a short ``code`` that is sent to the originating
connection in an ``operation-error`` event (or mapped to an HTTP status by the
API). They never close the connection.
"""
from __future__ import annotations


class LiveMeetError(Exception):
    """Base for all errors raised by the coordinator and its collaborators."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class AuthenticationFailed(LiveMeetError):
    code = "authentication-failed"


class AuthorizationDenied(LiveMeetError):
    code = "access-denied"


class NotInSession(LiveMeetError):
    code = "not-in-session"


class InvalidCommand(LiveMeetError):
    code = "invalid-command"


class SegmentNotFound(LiveMeetError):
    code = "segment-not-found"


class CollaboratorUnavailable(LiveMeetError):
    """Speech-to-text or AI service failed; callers fall back to a safe value."""

    code = "collaborator-unavailable"


class InvariantViolation(LiveMeetError):
    """Aggregate fields disagree with the segment list. A defect, never recovered silently."""

    code = "internal-error"
