from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
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


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401).

    Subclasses distinguish the failure for logs only; clients always see the
    same ``unauthorized`` response.
    """
    status_code = 401
    error_code = "unauthorized"


class MissingTokenError(AuthenticationError):
    """No usable ``Authorization: Bearer`` header on the request."""


class InvalidSignatureError(AuthenticationError):
    """Token was tampered with, signed with another secret or algorithm."""


class MalformedClaimsError(AuthenticationError):
    """Signature checks out but the claims cannot be used."""


class TokenExpiredError(AuthenticationError):
    """Token (access or refresh) is past its expiry."""


class TokenNotFoundError(AuthenticationError):
    """Refresh token is unknown to the store."""


class TokenRevokedError(AuthenticationError):
    """Refresh token was explicitly revoked."""


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class HashingError(ServerError):
    """Password hashing failed or a stored hash is corrupt.

    Never raised for a wrong password; that is a plain ``False`` from verify.
    """


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "MissingTokenError",
    "InvalidSignatureError",
    "MalformedClaimsError",
    "TokenExpiredError",
    "TokenNotFoundError",
    "TokenRevokedError",
    "ForbiddenError",
    "NotFoundError",
    "ServerError",
    "HashingError",
]
