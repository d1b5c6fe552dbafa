"""Domain error taxonomy.

Every error carries a user-facing ``message`` and a ``hint`` telling the
user what to do next. Internal diagnostics go to the logs, never into
``message``.
"""

from __future__ import annotations


class BetTaskError(Exception):
    """Base class for errors surfaced to API and chat users."""

    status_code: int = 400
    code: str = "error"
    default_hint: str = "Please try again or contact support."

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code, "hint": self.hint}


class ValidationError(BetTaskError):
    """Missing or invalid input (minimum stake, missing deadline...)."""

    status_code = 422
    code = "validation_error"
    default_hint = "Check the values you entered and try again."


class NotFoundError(BetTaskError):
    """Unknown challenge, owner, or wallet."""

    status_code = 404
    code = "not_found"
    default_hint = "Check the challenge ID and try again."


class AuthorizationError(BetTaskError):
    """The caller does not own the resource."""

    status_code = 403
    code = "forbidden"
    default_hint = "You can only act on challenges you created."


class ExternalServiceError(BetTaskError):
    """Classifier, storage, or messaging service unavailable or malformed."""

    status_code = 503
    code = "service_unavailable"
    default_hint = "Your proof is saved and will be reviewed manually. No money has been deducted."


class RetryExhaustedError(ExternalServiceError):
    """A transport-level retry budget ran out."""

    code = "retry_exhausted"

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(f"The {operation} service did not respond after {attempts} attempts.")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class InsufficientBalanceError(BetTaskError):
    """Settlement could not deduct the stake."""

    status_code = 402
    code = "insufficient_balance"
    default_hint = "Add funds to your wallet to cover the outstanding stake."

    def __init__(self, owner_id: str, required: int, available: int) -> None:
        super().__init__(
            f"Your wallet balance (₹{available}) does not cover the ₹{required} stake.",
        )
        self.owner_id = owner_id
        self.required = required
        self.available = available


class StateConflictError(BetTaskError):
    """Action attempted on a terminal, expired, or busy challenge."""

    status_code = 409
    code = "state_conflict"
    default_hint = "Create a new challenge to keep going."
