from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP ``status_code`` and a stable
    ``error_code``:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)

    ``public_message`` is what the caller sees; ``message`` carries the full
    detail for server-side logs.
    """

    status_code: int = 400
    error_code: str = "validation_error"
    public_message: Optional[str] = None

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

    @property
    def client_message(self) -> str:
        return self.public_message or self.message


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g. duplicate email (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"
    public_message = "something went wrong"


# authentication


class InvalidCredentials(AuthenticationError):
    """Unknown email or wrong password; the two are never distinguished."""

    public_message = "invalid credentials"

    def __init__(self, message: str = "invalid credentials", **kwargs) -> None:
        super().__init__(message, **kwargs)


class MalformedAuthHeader(AuthenticationError):
    public_message = "invalid or missing authentication token"


class TokenNotFound(AuthenticationError):
    public_message = "invalid or expired token"

    def __init__(self, message: str = "token not found", **kwargs) -> None:
        super().__init__(message, **kwargs)


class TokenExpired(AuthenticationError):
    public_message = "invalid or expired token"

    def __init__(self, message: str = "token expired", **kwargs) -> None:
        super().__init__(message, **kwargs)


class InsufficientScope(AuthenticationError):
    """The token lacks a capability the route requires.

    Answered with 401 unless the deployment opts into 403.
    """

    def __init__(self, missing: str, **kwargs) -> None:
        super().__init__(
            f"insufficient scope: {missing}", detail={"missing_scope": missing}, **kwargs
        )
        self.missing = missing


# scope requests


class ScopeNotGranted(ValidationError):
    def __init__(self, scope: str, **kwargs) -> None:
        super().__init__(
            f"requested scope '{scope}' is invalid for user",
            detail={"scope": scope},
            **kwargs,
        )
        self.scope = scope


class UnknownScope(ValidationError):
    def __init__(self, scope: str, **kwargs) -> None:
        super().__init__(
            f"unknown scope '{scope}'", detail={"scope": scope}, **kwargs
        )
        self.scope = scope


# internal


class StoreUnavailable(ServerError):
    """Backing store timed out or failed."""


class RandomSourceExhausted(ServerError):
    """The OS random source could not produce token bytes."""


class MalformedPasswordHash(ServerError):
    """A stored password hash could not be parsed."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "InvalidCredentials",
    "MalformedAuthHeader",
    "TokenNotFound",
    "TokenExpired",
    "InsufficientScope",
    "ScopeNotGranted",
    "UnknownScope",
    "StoreUnavailable",
    "RandomSourceExhausted",
    "MalformedPasswordHash",
]
