"""
Application error taxonomy.

Every error carries the HTTP status it maps to, a stable machine-readable
code and a message that is safe to show to the caller. Provider failures are
flagged as retryable so clients can tell them apart from business failures.
"""
from typing import Optional


class AppError(Exception):
    status = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    retryable = False

    def __init__(self, message: Optional[str] = None, **extra):
        self.message = message or self.message
        # Extra fields are merged into the JSON error body.
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.retryable:
            body["retryable"] = True
        body.update(self.extra)
        return body


class InvalidInput(AppError):
    status = 400
    code = "INVALID_INPUT"
    message = "Invalid request"


class InvalidService(InvalidInput):
    code = "INVALID_SERVICE"
    message = "Invalid service"


class Unauthenticated(AppError):
    status = 401
    code = "UNAUTHENTICATED"
    message = "Authentication required"


class InsufficientFunds(AppError):
    status = 402
    code = "INSUFFICIENT_FUNDS"
    message = "Insufficient balance"


class Forbidden(AppError):
    status = 403
    code = "FORBIDDEN"
    message = "Admin access required"


class NotFound(AppError):
    status = 404
    code = "NOT_FOUND"
    message = "Transaction not found"


class Conflict(AppError):
    status = 409
    code = "CONFLICT"
    message = "Resource already exists"


class RentalInProgress(Conflict):
    code = "RENTAL_IN_PROGRESS"
    message = "An active number already exists. Finish or cancel it first."


class CannotCancel(Conflict):
    code = "CANNOT_CANCEL"
    message = "Cannot cancel. OTP already received."


class RateLimited(AppError):
    status = 429
    code = "RATE_LIMITED"
    message = "Too many requests"


class InternalError(AppError):
    pass


class ProviderError(AppError):
    """The numbering or identity provider answered with something unusable."""
    status = 502
    code = "PROVIDER_ERROR"
    message = "Provider returned an unexpected response"


class ProviderUnavailable(ProviderError):
    code = "PROVIDER_UNAVAILABLE"
    message = "Service temporarily unavailable"
    retryable = True


class ProviderTimeout(ProviderUnavailable):
    status = 504
    code = "PROVIDER_TIMEOUT"
    message = "Provider did not respond in time"
