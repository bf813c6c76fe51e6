"""
Typed exceptions for the finance workflows.

Every error carries a machine-readable code so the API layer
can map it to a status code without parsing messages.

    FinanceError (base, a ValueError)
    +-- AlreadyProcessedError     item already paid / confirmed / decided
    +-- AuthorizationDeniedError  self-approval, repeat approver
    |   +-- InsufficientFundsError
    +-- InvalidRequestError       bad input, caught before any write
    +-- NotFoundError
    +-- ConcurrencyConflictError  a guarded write lost its predicate
    +-- PartialFailureError       a step failed after an earlier one ran
    +-- BackendUnavailableError   database unreachable
"""


class FinanceError(ValueError):
    """Base class. Subclasses ValueError so callers can catch broadly."""

    code: str = "FINANCE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyProcessedError(FinanceError):
    """The item was already handled. Safe to ignore, never retry."""

    code = "ALREADY_PROCESSED"


class AuthorizationDeniedError(FinanceError):
    code = "AUTHORIZATION_DENIED"


class InsufficientFundsError(AuthorizationDeniedError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient balance: available={available}, "
            f"required={required}"
        )
        self.available = available
        self.required = required


class InvalidRequestError(FinanceError):
    code = "VALIDATION_FAILED"


class NotFoundError(FinanceError):
    code = "NOT_FOUND"


class ConcurrencyConflictError(FinanceError):
    """Another writer got there first. The caller may re-read and retry."""

    code = "CONCURRENCY_CONFLICT"


class PartialFailureError(FinanceError):
    """
    A later step failed after earlier steps were written.

    completed_steps names what had already been flushed; the
    router rolls the transaction back so none of it is kept.
    """

    code = "PARTIAL_FAILURE"

    def __init__(self, message: str, completed_steps: list[str] | None = None):
        super().__init__(message)
        self.completed_steps = list(completed_steps or [])


class BackendUnavailableError(FinanceError):
    code = "BACKEND_UNAVAILABLE"
