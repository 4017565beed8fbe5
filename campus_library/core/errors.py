"""Typed failures raised by the circulation services.

Each error carries a short ``code`` and the HTTP status the API layer
answers with. Services never catch these; the caller decides on retry.
"""


class LibraryError(Exception):
    """Base exception for circulation errors."""
    code = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """Input has the wrong shape or an out-of-range value."""
    code = "invalid"
    status_code = 400


class NotFoundError(LibraryError):
    """Unknown loan, book, user, reservation, renewal request or fine."""
    code = "not_found"
    status_code = 404


class ConflictError(LibraryError):
    """No copies available, duplicate reservation, renewal limit reached."""
    code = "conflict"
    status_code = 409


class StateError(LibraryError):
    """Operation is not valid for the record's current status."""
    code = "invalid_state"
    status_code = 409
