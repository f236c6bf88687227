"""
Error taxonomy for the appointment lifecycle and subscription core.

User-facing errors (4xx) are raised by the token validator and are not
retryable without new input. TransportFailureError is recorded per item in
batch jobs. ServerError aborts the current run and surfaces as 5xx; state is
left recoverable for the next scheduled run.
"""

from typing import Any


class LifecycleError(Exception):
    """Base class for errors that map to a JSON error body."""

    status_code: int = 500
    code: str = "server_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.extra)
        return body


class InvalidTokenError(LifecycleError):
    """Token does not match any appointment link."""

    status_code = 404
    code = "invalid"


class TokenExpiredError(LifecycleError):
    status_code = 400
    code = "expired"


class TokenAlreadyUsedError(LifecycleError):
    status_code = 400
    code = "used"


class InvalidActionError(LifecycleError):
    """Requested action is not allowed for the link purpose."""

    status_code = 400
    code = "invalid_action"


class AppointmentNotFoundError(LifecycleError):
    status_code = 404
    code = "not_found"


class AlreadyProcessedError(LifecycleError):
    """Appointment already left the pending state."""

    status_code = 400
    code = "already_processed"


class IllegalTransitionError(LifecycleError):
    """Raised by the appointment state machine for a forbidden transition."""

    status_code = 400
    code = "already_processed"


class TransportFailureError(LifecycleError):
    """
    Sending an email or push notification failed.

    Retryable. Batch jobs record it on the item and continue.
    """

    status_code = 502
    code = "transport_failure"


class ServerError(LifecycleError):
    """Storage unreachable or external provider authentication failure."""

    status_code = 500
    code = "server_error"


class BillingProviderError(ServerError):
    """The billing provider answered a subscription request with an error."""

    status_code = 502
    code = "billing_provider_error"
