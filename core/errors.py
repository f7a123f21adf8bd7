"""
core/errors.py -- Error taxonomy for the auth service.

Every decision the core surfaces to a caller is one of these exceptions. Each
class carries its HTTP status and a stable machine-readable code; api/main.py
has a single handler that renders any AppError into the response envelope.

None of these are retried by the core -- each is a terminal decision.
ServiceUnavailable is the only infrastructure error: it means "try again",
not "you are not allowed".

Layer rule: core/ is the kernel. No imports from api/, auth/, or resources/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class Unauthorized(AppError):
    """No credential was presented at all."""

    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(AppError):
    """Login failed. The message is identical for unknown email and wrong password."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password."


class TokenInvalid(AppError):
    status_code = 401
    code = "token_invalid"
    message = "Token is invalid."


class TokenExpired(AppError):
    status_code = 401
    code = "token_expired"
    message = "Token has expired."


class TokenReuseDetected(AppError):
    """A rotated or revoked refresh token was presented again.

    Raised only after every active session of the owning user was revoked.
    """

    status_code = 401
    code = "token_reuse_detected"
    message = "Refresh token reuse detected. All sessions have been revoked."


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"
    message = "You do not have permission to perform this action."


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    message = "Resource not found."


class DuplicateEmail(AppError):
    status_code = 409
    code = "duplicate_email"
    message = "Email is already registered."


class RateLimited(AppError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, message: str | None = None, retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServiceUnavailable(AppError):
    status_code = 503
    code = "service_unavailable"
    message = "Service temporarily unavailable. Please retry."
