# lending/core/exceptions.py
"""Errors raised by the lending core.

Every error is recoverable at the HTTP boundary: ``main.py`` turns a
``LendingError`` into a JSON response carrying ``status_code`` and a
human-readable ``detail``.
"""


class LendingError(Exception):
    status_code: int = 400
    code: str = "lending_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LendingError):
    """Bad input shape or range (amount < 1, amount above availability, ...)."""
    status_code = 400
    code = "validation_error"


class NotFoundError(LendingError):
    status_code = 404
    code = "not_found"


class PermissionDeniedError(LendingError):
    status_code = 403
    code = "permission_denied"


class InvalidStateError(LendingError):
    """Transition attempted from a state that does not allow it."""
    status_code = 409
    code = "invalid_state"


class InsufficientQuantityError(LendingError):
    """Availability re-check failed at the moment of committing a transition."""
    status_code = 409
    code = "insufficient_quantity"


class ConcurrentModificationError(LendingError):
    """Optimistic-concurrency retries exhausted."""
    status_code = 409
    code = "concurrent_modification"
