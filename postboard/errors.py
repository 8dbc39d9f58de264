"""
Typed failures raised by the data-access layer.

Every operation fails with exactly one of four kinds.  Validation,
not-found and conflict errors are detected locally and carry a message
that is safe to show to callers.  ``InternalError`` wraps unclassified
store failures; its message is always generic and the original exception
is only reachable through ``__cause__`` (and the log).
"""
import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class DataAccessError(Exception):
    """Base class for all data-access failures."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(DataAccessError):
    """A required field is missing or empty."""

    kind = ErrorKind.VALIDATION
    status_code = 422


class NotFoundError(DataAccessError):
    """The requested or referenced row does not exist."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(DataAccessError):
    """A uniqueness constraint was violated."""

    kind = ErrorKind.CONFLICT
    status_code = 409


class InternalError(DataAccessError):
    kind = ErrorKind.INTERNAL
    status_code = 500
