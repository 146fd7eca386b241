"""
Shared error handling for the market-data service.
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


class MarketDataException(Exception):
    """Base exception for market-data acquisition errors."""

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


class TransportError(MarketDataException):
    """Network, timeout or upstream 5xx failure.

    ``retryable`` tells the retry loop whether another attempt may help;
    ``status_code`` is the upstream status when one was received.
    """

    def __init__(self,
                 message: str = "Unable to connect to service. Please check your connection and try again.",
                 status_code: Optional[int] = None,
                 retryable: bool = True,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)
        self.status_code = status_code
        self.retryable = retryable


class RateLimitedError(MarketDataException):
    """Request denied locally before any network call."""

    def __init__(self, message: str = "Service temporarily busy. Please try again in a moment.",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details)


class ValidationError(MarketDataException):
    """Upstream responded but the payload is malformed or implausible."""

    def __init__(self, message: str = "Data quality issue detected. Using reliable fallback.",
                 errors: Optional[list] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
        self.errors = list(errors or [])


class SecurityError(MarketDataException):
    """Disallowed domain or oversized payload. Fails closed."""

    def __init__(self, message: str = "Request blocked by security policy",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("SECURITY_ERROR", message, details)
