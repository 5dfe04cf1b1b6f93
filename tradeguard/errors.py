"""Error taxonomy: rejections, blocking halts, and retryable infrastructure faults."""


class TradeGuardError(Exception):
    """Base error. ``retryable`` tells the worker pool whether to retry a job."""

    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvariantViolation(TradeGuardError):
    """An entity was asked to make a transition its lifecycle forbids."""

    code = "INVARIANT_VIOLATION"


# --- Rejections: expected, user-facing ---

class RejectionError(TradeGuardError):
    code = "REJECTED"


class InvalidStateError(RejectionError):
    code = "INVALID_STATE"


class NotFoundError(RejectionError):
    code = "NOT_FOUND"


class LimitConflictError(RejectionError):
    code = "LIMIT_CONFLICT"


class LimitValidationError(RejectionError):
    code = "LIMIT_INVALID"


# --- Blocking: system-wide halt ---

class KillSwitchActiveError(TradeGuardError):
    """Raised at every admission point while the kill switch is on."""

    code = "KILL_SWITCH_ACTIVE"

    def __init__(
        self,
        message: str = "Kill switch is enabled. All trading operations are blocked.",
    ):
        super().__init__(message)


# --- Infrastructure: unexpected, retryable ---

class InfrastructureError(TradeGuardError):
    code = "INFRASTRUCTURE_ERROR"
    retryable = True


class CredentialUnavailableError(InfrastructureError):
    code = "NO_BROKER_ACCOUNT"


class BrokerError(InfrastructureError):
    """Raised when the broker API call fails."""

    code = "BROKER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: object | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class BrokerRejectedError(BrokerError):
    code = "BROKER_REJECTED"


class BrokerNetworkError(BrokerError):
    code = "BROKER_UNAVAILABLE"
