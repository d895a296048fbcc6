"""
core/errors.py -- Application error taxonomy.

Every failure a caller is expected to handle has its own exception class with
a stable machine-readable code and the HTTP status it maps to. Stores and
auth helpers raise these; api/main.py renders them through a single exception
handler into the ErrorResponse envelope. Route handlers never build error
JSON by hand.

The message on each instance is safe to show to an end user. Internal causes
(driver errors, bcrypt failures) are logged where they happen and chained
with `raise ... from exc`; they never reach the message.

Layer rule: core/ is the kernel. No imports from api/, auth/, plans/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """One field-level validation failure."""

    field: str
    message: str


class AppError(Exception):
    """Base class for all expected application failures."""

    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, fields: list[FieldError] | None = None) -> None:
        self.message = message or self.default_message
        self.fields = fields or []
        super().__init__(self.message)


class ValidationError(AppError):
    """Request input failed shape or content checks (400)."""

    code = "validation_error"
    status_code = 400
    default_message = "Request validation failed."


class Conflict(AppError):
    """A unique field (email, crop name, like) already exists (409)."""

    code = "conflict"
    status_code = 409
    default_message = "The resource already exists."


class InvalidCredentials(AppError):
    """Login failed. Deliberately identical for unknown email and wrong password (401)."""

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class InvalidToken(AppError):
    """A refresh or access token is unknown, malformed, revoked or expired (401)."""

    code = "invalid_token"
    status_code = 401
    default_message = "Invalid or expired token."


class TokenExpired(InvalidToken):
    """A token that was once valid has passed its expiry.

    Renders exactly like InvalidToken; the subclass exists so callers that
    care (logging, the client) can tell the two apart.
    """


class Unauthorized(AppError):
    """No usable credentials were presented on a protected route (401)."""

    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class Forbidden(AppError):
    code = "forbidden"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class NotFound(AppError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found."


class StorageUnavailable(AppError):
    """The database did not answer within the configured timeout (503)."""

    code = "storage_unavailable"
    status_code = 503
    default_message = "The service is temporarily unavailable. Please retry."


class InternalError(AppError):
    code = "internal_error"
    status_code = 500
    default_message = "An unexpected error occurred."
