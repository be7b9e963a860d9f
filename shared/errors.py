"""
Shared error handling for the Hustl Access Layer.

Every error surfaced to the HTTP boundary derives from AccessLayerException
and carries the status code the boundary should answer with, so that
"not authenticated", "not found" and "over quota" stay distinguishable.
"""

from typing import Dict, Any, Optional

from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    http_status: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    http_status = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "AUTHENTICATION_ERROR"):
        super().__init__(code, message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    http_status = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "VALIDATION_ERROR"):
        super().__init__(code, message, details)


class NotFoundError(AccessLayerException):
    """Resource lookup errors."""

    http_status = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None,
                 code: str = "NOT_FOUND"):
        super().__init__(code, message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    http_status = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None,
                 code: str = "SERVICE_ERROR"):
        super().__init__(code, message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    http_status = 502

    def __init__(self, service: str, message: str = "External service error",
                 details: Optional[Dict[str, Any]] = None, code: str = "EXTERNAL_SERVICE_ERROR"):
        super().__init__(code, f"{service}: {message}", details)
        self.service = service


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    http_status = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None,
                 code: str = "RATE_LIMIT_ERROR"):
        super().__init__(code, message, details)


# Token verification

class MalformedTokenError(AuthenticationError):
    """Token is structurally invalid or not signed with an RSA algorithm."""

    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="MALFORMED_TOKEN")


class InvalidOrExpiredTokenError(AuthenticationError):
    """Token failed verification after the forced-refresh retry."""

    def __init__(self, message: str = "Invalid or expired token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="INVALID_OR_EXPIRED_TOKEN")


class UnsupportedProviderError(ValidationError):
    """Provider has no published key set (or is unknown)."""

    def __init__(self, provider: str):
        super().__init__(
            f"Unsupported auth provider: {provider}",
            details={"provider": provider},
            code="UNSUPPORTED_PROVIDER"
        )


class KeyFetchError(ExternalServiceError):
    """Provider key set could not be fetched or decoded."""

    def __init__(self, url: str, message: str):
        super().__init__(
            "jwks",
            message,
            details={"url": url},
            code="KEY_FETCH_FAILED"
        )
        self.url = url


# Identity store

class UserNotFoundError(NotFoundError):
    """No user record matches the lookup key."""

    def __init__(self, key: str, field: str = "id"):
        super().__init__(
            "User not found",
            details={field: key},
            code="USER_NOT_FOUND"
        )


class DailyLimitReachedError(RateLimitError):
    """User has consumed every message of the current window."""

    http_status = 403

    def __init__(self, user_id: str, limit: int):
        super().__init__(
            "Daily message limit reached",
            details={"user_id": user_id, "daily_message_limit": limit},
            code="DAILY_LIMIT_REACHED"
        )


class StoreError(ServiceError):
    """The identity store could not complete (or commit) an operation."""

    def __init__(self, operation: str, message: str):
        super().__init__(
            f"Identity store failure during {operation}",
            details={"operation": operation, "error": message},
            code="STORE_ERROR"
        )
