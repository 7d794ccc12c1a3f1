from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500)
    - service_unavailable (503)
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


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    """Unknown email or wrong password; deliberately not told apart."""

    def __init__(self) -> None:
        super().__init__("invalid credentials")


class InvalidToken(AuthenticationError):
    """Token failed decoding, signature, algorithm, kind, or expiry checks."""

    def __init__(self) -> None:
        super().__init__("invalid token")


class ForbiddenError(ServiceError):
    """Authenticated but not entitled (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate registration (409)."""
    status_code = 409
    error_code = "conflict"


class UnavailableError(ServiceError):
    """Backing store timed out or is down; the caller may retry (503)."""
    status_code = 503
    error_code = "service_unavailable"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class HashingFailed(ServerError):
    """Key derivation could not produce a password hash."""


class SigningFailed(ServerError):
    """A token could not be encoded or signed."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "InvalidCredentials",
    "InvalidToken",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "UnavailableError",
    "ServerError",
    "HashingFailed",
    "SigningFailed",
]
