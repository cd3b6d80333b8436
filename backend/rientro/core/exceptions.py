"""
Custom exceptions for the Rientro engine.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class RientroException(Exception):
    """Base exception for all Rientro errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(RientroException):
    """Raised when a required setting is missing."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message, details, status_code=500)


class StoreError(RientroException):
    """Raised when a document store operation fails."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=503)


class PushDeliveryError(RientroException):
    """Raised when the push gateway rejects or fails a single send."""

    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        provider_status: Optional[int] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if destination:
            # Push tokens are credentials, keep only a prefix
            details["destination"] = destination[:12]
        if provider_status is not None:
            details["provider_status"] = provider_status
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=502)


class DeadlineExceededError(RientroException):
    """Raised when a bounded store or transport call runs past its deadline."""

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"{operation} did not finish within {timeout_seconds:g}s",
            {"operation": operation, "timeout_seconds": timeout_seconds},
            status_code=504
        )


class MalformedRecordError(RientroException):
    """Raised when a stored document fails validation at the store boundary."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        errors: Optional[list] = None
    ):
        details: dict[str, Any] = {}
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id
        if errors:
            details["errors"] = errors

        super().__init__(message, details, status_code=422)


class TripNotFoundError(RientroException):
    """Raised when a trip id does not resolve to a document."""

    def __init__(self, trip_id: str):
        super().__init__(
            f"Trip {trip_id} not found",
            {"trip_id": trip_id},
            status_code=404
        )


class InvalidTransitionError(RientroException):
    """Raised when a traveler action is not allowed from the trip's status."""

    def __init__(self, trip_id: str, current_status: str, action: str):
        super().__init__(
            f"Cannot {action} trip {trip_id} in status '{current_status}'",
            {"trip_id": trip_id, "current_status": current_status, "action": action},
            status_code=409
        )


class WebhookAuthError(RientroException):
    """Raised when a webhook call carries a wrong or missing secret."""

    def __init__(self):
        super().__init__("Invalid webhook secret", status_code=401)
