"""
Shared error handling for the self-hosted cache gateway.
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
    """Base exception for gateway errors that map onto an HTTP response."""

    status_code: int = 500

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
    """Missing or malformed credentials."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Credentials present but not accepted."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class HandlerLoadError(AccessLayerException):
    """The cache handler module could not be loaded or its factory failed."""

    def __init__(self, locator: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.locator = locator
        super().__init__(
            "HANDLER_LOAD_ERROR",
            f"{locator}: {message}",
            {"locator": locator, **(details or {})},
        )


class GatewayStartupError(AccessLayerException):
    """The listener did not come up."""

    def __init__(self, message: str = "Gateway failed to start", details: Optional[Dict[str, Any]] = None):
        super().__init__("GATEWAY_STARTUP_ERROR", message, details)


class BackendError(AccessLayerException):
    """Base for failures raised from a cache handler operation."""


class BackendUnavailableError(BackendError):
    """The handler's storage cannot be reached. Raise from a handler to get a 503."""

    status_code = 503

    def __init__(self, message: str = "Cache backend unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_UNAVAILABLE", message, details)


class BackendTimeoutError(BackendError):
    """A handler call exceeded its deadline."""

    status_code = 504

    def __init__(self, operation: str, timeout: Optional[float]):
        message = f"{operation} timed out"
        if timeout is not None:
            message = f"{operation} did not complete within {timeout:g}s"
        super().__init__(
            "BACKEND_TIMEOUT",
            message,
            {"operation": operation, "timeout_seconds": timeout},
        )


class BackendRejectedError(BackendError):
    """The handler refused or failed the operation."""

    status_code = 500

    def __init__(self, message: str = "Cache backend rejected the request", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_REJECTED", message, details)
