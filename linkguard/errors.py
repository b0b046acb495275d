"""
Domain Errors

Every error raised by the link lifecycle, scoring and generation layers
derives from LinkGuardError so adapters can map them in one place.
QUOTA_FULL is a link outcome, never an exception.
"""

from typing import Any, Dict, Optional


class LinkGuardError(Exception):
    """Base error for the survey link guard."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NotFound(LinkGuardError):
    """Unknown token, link id, project, vendor or quota pool."""


class InvalidState(LinkGuardError):
    """Operation not permitted from the link's current status."""

    def __init__(self, message: str, current_status: Optional[str] = None, **details):
        if current_status is not None:
            details["current_status"] = current_status
        super().__init__(message, details)
        self.current_status = current_status


class ValidationError(LinkGuardError):
    """Malformed request: bad resp id, duplicate ids, limits, vendor scope."""


class CollaboratorUnavailable(LinkGuardError):
    """A reputation or geolocation collaborator failed or timed out."""

    def __init__(self, collaborator: str, reason: str):
        super().__init__(f"{collaborator} unavailable: {reason}", {"collaborator": collaborator})
        self.collaborator = collaborator
        self.reason = reason


class GenerationError(LinkGuardError):
    """Every link creation in a generation request failed."""

    def __init__(self, message: str, failed_count: int = 0, errors: Optional[list] = None):
        super().__init__(message, {"failed_count": failed_count, "errors": errors or []})
        self.failed_count = failed_count
        self.errors = errors or []
