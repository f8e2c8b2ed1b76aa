"""
Forum error taxonomy.

Each error carries the HTTP status it maps to and a message that is safe
to show to the client.
"""


class ForumError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ForumError):
    """Missing or malformed input."""

    status_code = 400
    default_message = "Invalid request"


class ForbiddenError(ForumError):
    """Caller lacks ownership or role."""

    status_code = 403
    default_message = "Not allowed"


class NotFoundError(ForumError):
    """Unknown or deleted entity."""

    status_code = 404
    default_message = "Not found"


class ConflictError(ForumError):
    """Operation conflicts with current state."""

    status_code = 409
    default_message = "Conflict"


class LockedError(ForumError):
    """Write attempted on a locked or deleted thread."""

    status_code = 423
    default_message = "Thread is locked"


class InternalError(ForumError):
    """Storage failure. Never carries internal detail."""

    status_code = 500
    default_message = "Internal server error"
