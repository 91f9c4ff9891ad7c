from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - invalid_credentials (400)
    - settings_full (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class InvalidCredentialsError(ServiceError):
    """Unknown email or wrong password; both produce the same message (400)."""
    status_code = 400
    error_code = "invalid_credentials"


class SettingsFullError(ServiceError):
    """A new settings entry would exceed the per-user capacity (400)."""
    status_code = 400
    error_code = "settings_full"


class AuthenticationError(ServiceError):
    """No credentials supplied (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Credentials supplied but not accepted (403)."""
    status_code = 403
    error_code = "forbidden"


class InvalidTokenError(ForbiddenError):
    """Token signature, claims or expiry check failed (403)."""
    pass


class SessionRevokedError(ForbiddenError):
    """Token is well formed but no live session carries it (403)."""
    pass


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class SessionNotFoundError(NotFoundError):
    """No session matches the token being closed (404)."""
    pass


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate registration (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidCredentialsError",
    "SettingsFullError",
    "AuthenticationError",
    "ForbiddenError",
    "InvalidTokenError",
    "SessionRevokedError",
    "NotFoundError",
    "SessionNotFoundError",
    "ConflictError",
    "ServerError",
]
