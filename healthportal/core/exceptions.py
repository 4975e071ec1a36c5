"""Error taxonomy for the authentication service.

Every failure that can reach a client is one of these classes. Each carries an
HTTP status and a stable, client-safe message; internal detail goes to the log,
never into the message.
"""
from typing import Dict, Optional


class AuthError(Exception):
    """Base class for all errors rendered into the response envelope."""

    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        errors: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors
        super().__init__(self.message)


class DuplicateEmail(AuthError):
    status_code = 400
    default_message = "User already exists with this email"


class InvalidCredentials(AuthError):
    """Unknown email, wrong password and inactive account all look the same."""

    status_code = 400
    default_message = "Invalid email or password"


class InvalidToken(AuthError):
    """Expired, malformed, badly signed, wrong-type or orphaned token."""

    status_code = 401
    default_message = "Invalid or expired token"


class AuthenticationRequired(AuthError):
    status_code = 401
    default_message = "Access token required"


class InsufficientPermissions(AuthError):
    status_code = 403
    default_message = "Insufficient permissions"


class ValidationFailed(AuthError):
    status_code = 400
    default_message = "Validation failed"


class UserNotFound(AuthError):
    status_code = 404
    default_message = "User not found"


class TransientStoreFailure(AuthError):
    """The credential store is unreachable or timed out. Safe to retry."""

    status_code = 503
    default_message = "Service temporarily unavailable, please retry"


class InternalFailure(AuthError):
    status_code = 500
    default_message = "Internal server error"
