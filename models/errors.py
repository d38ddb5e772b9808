class TimeClockError(Exception):
    """Structured, non-retryable rejection reported back to the caller."""

    code = "error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(TimeClockError):
    code = "validation"


class IllegalTransitionError(TimeClockError):
    code = "illegal_transition"


class ConflictError(TimeClockError):
    code = "conflict"


class NotFoundError(TimeClockError):
    code = "not_found"


class AuthorizationError(TimeClockError):
    code = "authorization"


class StoreContentionError(Exception):
    """Raised by a store when the caller's expected version is stale."""
