"""Exceptions raised by the draw and bracket services.

Every error carries a machine-readable ``kind`` and the HTTP status the web
layer answers with. Nothing here is retried: the caller has to fix the
tournament state (approve registrations, reassign pots, ...) and try again.
"""


class DrawError(Exception):
    """Base exception for all ftdraw service errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "detail": self.message}


class NotFoundError(DrawError):
    """Raised when a tournament, registration, group or match does not exist."""

    kind = "not_found"
    status_code = 404


class ForbiddenError(DrawError):
    """Raised when the acting user is neither the organizer nor an admin."""

    kind = "forbidden"
    status_code = 403


class ValidationError(DrawError):
    """Raised when the tournament state or the input does not allow the operation."""

    kind = "validation"
    status_code = 400
