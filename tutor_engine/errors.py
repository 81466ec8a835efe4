"""
Error Taxonomy

Exceptions raised by the tutoring engine. The HTTP layer maps each one
to a status code; everything below ExternalServiceError is recoverable
inside the engine.
"""

from typing import Optional


class TutorEngineError(Exception):
    """Base class for all engine errors."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(TutorEngineError):
    """Caller supplied an empty/oversized message or an unknown agent."""
    status_code = 400


class SessionNotFoundError(TutorEngineError):
    """No session exists for the given id."""
    status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", detail={"session_id": session_id})
        self.session_id = session_id


class SessionInactiveError(TutorEngineError):
    """The session exists but is completed or abandoned."""
    status_code = 409

    def __init__(self, session_id: str, status: str):
        super().__init__(
            f"Session {session_id} is {status}",
            detail={"session_id": session_id, "status": status},
        )
        self.session_id = session_id
        self.status = status


class ExternalServiceError(TutorEngineError):
    """Reasoning model or persistence failed or timed out."""
    status_code = 503

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}", detail={"service": service})
        self.service = service


class ResponseParseError(ExternalServiceError):
    """Model output was not the JSON shape we asked for."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__("reasoning-model", message)
        self.raw = raw[:500]
