"""Error taxonomy for the circulation core.

Every failure raised by the stores and the workflow engine derives from
``CirculationError`` and carries a stable ``code`` that the HTTP and CLI layers
surface verbatim.
"""


class CirculationError(Exception):
    """Base class for all circulation failures."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class NotFound(CirculationError, LookupError):
    code = "not_found"


class RequestNotPending(NotFound):
    """The request exists but has already been approved or rejected."""

    code = "request_not_pending"


class Conflict(CirculationError):
    code = "conflict"


class DuplicateRequest(Conflict):
    code = "duplicate_request"


class InsufficientCopies(CirculationError):
    code = "insufficient_copies"


class NoActiveIssue(CirculationError):
    code = "no_active_issue"


class InconsistentState(CirculationError):
    code = "inconsistent_state"


class ValidationError(CirculationError, ValueError):
    code = "validation_error"


class AuthenticationError(CirculationError):
    code = "authentication_failed"


class PersistenceError(CirculationError):
    code = "persistence_error"
