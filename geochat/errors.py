# Error taxonomy shared by crud/services/routers

from sqlalchemy.exc import IntegrityError

# Envelope error codes
SUCCESS = 0
VALIDATION_ERROR = 1000
CONFLICT = 1001
AUTH_FAILED = 1002
PERMISSION_DENIED = 1003
NOT_FOUND = 1004
RATE_LIMIT = 1005
INTERNAL_ERROR = 5000


class GeoChatError(Exception):
    """Base error. Routers roll back and the app renders it in the response envelope."""

    status_code = 500
    code = INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GeoChatError):
    """Bad input: coordinate out of range, radius too large, malformed cursor."""

    status_code = 400
    code = VALIDATION_ERROR


class Conflict(GeoChatError):
    """Duplicate membership or duplicate unique identifier."""

    status_code = 409
    code = CONFLICT


class Unauthorized(GeoChatError):
    status_code = 401
    code = AUTH_FAILED


class Forbidden(GeoChatError):
    status_code = 403
    code = PERMISSION_DENIED


class NotFound(GeoChatError):
    status_code = 404
    code = NOT_FOUND


class RateLimited(GeoChatError):
    status_code = 429
    code = RATE_LIMIT


class InvariantViolation(GeoChatError):
    """
    Internal consistency failure (negative member_count, count/row mismatch,
    geometry not matching its coordinates). A bug, never a user input error.
    """

    status_code = 500
    code = INTERNAL_ERROR


def translate_integrity_error(exc: IntegrityError) -> GeoChatError:
    """
    Map a database constraint failure to the closest taxonomy error.

    Message fragments cover both PostgreSQL ("violates check constraint",
    "duplicate key") and SQLite ("CHECK constraint failed", "UNIQUE constraint failed").
    """
    text = str(exc.orig).lower()
    if "check constraint" in text:
        return ValidationError("Value violates a constraint")
    if "foreign key" in text:
        return NotFound("Referenced record not found")
    if "unique" in text or "duplicate key" in text or "primary key" in text:
        return Conflict("Record already exists")
    return GeoChatError("Database constraint failed")
