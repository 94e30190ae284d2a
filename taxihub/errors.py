"""
Domain errors for the booking API.

Every error is rendered by the handlers registered in ``create_app`` as
``{"ok": false, "error": <message>}`` with the class status code.
"""
from typing import Optional


class BookingError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BookingError):
    """Malformed or missing fields."""
    status_code = 400
    default_message = "Invalid input"


class AuthError(BookingError):
    """Missing, malformed, or mismatched credentials."""
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AuthError):
    status_code = 403
    default_message = "Forbidden"


class ReferenceNotFound(ValidationError):
    """A referenced driver or vehicle does not resolve to an active record.

    Reported as 400: the booking being acted on exists, its payload is what
    points at something unusable.
    """
    default_message = "Referenced record not found or inactive"


class NotFoundError(BookingError):
    status_code = 404
    default_message = "Not found"


class ConflictError(BookingError):
    status_code = 409
    default_message = "Resource already booked in this window"

    def __init__(self, message: Optional[str] = None, conflicts: Optional[list] = None):
        super().__init__(message)
        self.conflicts = conflicts or []


class ServerError(BookingError):
    """The primary write failed; nothing was committed."""
    status_code = 500
