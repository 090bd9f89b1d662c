"""
Shared error handling for the JWT proxy sidecar.

Two families live here:

- HTTP errors (``ProxyException`` subclasses) carry a status code and are
  rendered as ``{"error": <kind>, "message": <text>}`` by the service.
- Token errors (``TokenError`` subclasses) are raised by the key resolver,
  claim matcher and token validator. They never reach the client directly;
  the request pipeline coarsens them into ``UnauthorizedError``.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    message: str


class ProxyException(Exception):
    """Base exception for errors that map onto an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def error(self) -> str:
        return type(self).__name__

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.error, message=self.message)


class BadRequestError(ProxyException):
    """Request could not be mapped onto the upstream (e.g. base URL mismatch)."""

    status_code = 400


class UnauthorizedError(ProxyException):
    """Credential missing or rejected."""

    status_code = 401


class InternalServerError(ProxyException):
    """Unexpected failure inside the proxy."""

    status_code = 500

    def __init__(self, message: str = "Internal server error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class BadGatewayError(ProxyException):
    """Upstream service could not be reached."""

    status_code = 502


class ConfigurationError(Exception):
    """Startup configuration is invalid."""

    def __init__(self, message: str, violations: Optional[List[Any]] = None):
        self.violations = list(violations or [])
        super().__init__(message)


class TokenError(Exception):
    """Base class for narrow token verification failures."""


class InvalidTokenError(TokenError):
    """Token is empty or not a well formed compact JWT."""


class MissingKeyIdError(TokenError):
    """JWT header has no ``kid``."""


class MissingIssuerError(TokenError):
    """JWT payload has no ``iss``."""


class KeyDiscoveryError(TokenError):
    """OpenID discovery document unreachable, malformed or without ``jwks_uri``."""


class KeyFetchError(TokenError):
    """JWKS endpoint unreachable or returned an unusable response."""


class KeyNotFoundError(TokenError):
    """No key in the JWKS matches the requested key id."""


class UnsupportedKeyError(TokenError):
    """Matched key is not an RSA key with modulus and exponent."""


class ClaimMismatchError(TokenError):
    """Verified claims do not satisfy the configured filter."""


class TokenValidationError(Exception):
    """Single failure type surfaced by the token validator."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"JWT validation failed: {reason}")
