"""
Shared error handling for the business licence map services.

Only ValidationError and UpstreamUnavailable (plus the auth and rate-limit
errors raised at the HTTP boundary) are ever rendered to callers. Cache
failures are absorbed inside the cache layer.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from shared.logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class LicenceMapError(Exception):
    """Base exception for the licence map services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers: Optional[Dict[str, str]] = None
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details,
        )


class ValidationError(LicenceMapError):
    """Malformed or out-of-range query input. Never retried, never sent upstream."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpstreamUnavailable(LicenceMapError):
    """The data source could not be reached or kept failing after retries."""

    status_code = 502

    def __init__(
        self,
        source: str,
        message: str = "Upstream data source unavailable",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.source = source
        super().__init__("UPSTREAM_UNAVAILABLE", message, details)


class AuthenticationError(LicenceMapError):
    """Missing, malformed or invalid credentials."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(LicenceMapError):
    """Verified caller lacks the role required for the resource."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class RateLimitError(LicenceMapError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Too many requests, please try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)


class CacheDegraded(LicenceMapError):
    """Cache backend unreachable. Logged internally, never rendered."""

    def __init__(self, backend: str, message: str = "Cache backend unavailable", details: Optional[Dict[str, Any]] = None):
        self.backend = backend
        super().__init__("CACHE_DEGRADED", message, details)


class SerializationError(LicenceMapError):
    """Cached value could not be decoded. Treated as a cache miss."""

    def __init__(self, message: str = "Cached value could not be decoded", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_ERROR", message, details)
