"""
Error taxonomy for quiz attempt operations.

Every operation either returns its payload or raises exactly one of these.
The message is shown to the end user verbatim, so it must never leak
whether an attempt exists for someone else.
"""


class QuizError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(QuizError):
    """Missing or malformed input."""
    status_code = 400


class Unauthorized(QuizError):
    """No valid student identity on the request."""
    status_code = 401


class Forbidden(QuizError):
    """Retake policy or role check refused the operation."""
    status_code = 403


class NotFound(QuizError):
    """No attempt matches, or it is not in the status the operation needs."""
    status_code = 404


class Conflict(QuizError):
    """A concurrent write took the slot this operation needed."""
    status_code = 409
