"""
Custom Exceptions for the Call Router
Provides structured error handling across the application
"""

from typing import Optional, Dict, Any


class CallRouterException(Exception):
    """Base exception for all call router errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


# Transient Exceptions (platform should retry the webhook)
class TransientError(CallRouterException):
    """Base exception for failures that a webhook retry can recover from"""

    def __init__(
        self,
        message: str,
        error_code: str = "TEMPORARILY_UNAVAILABLE",
        details: Optional[Dict] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            status_code=503
        )


class LockAcquisitionTimeout(TransientError):
    """Raised when the per-call lock could not be acquired in time"""

    def __init__(self, key: str, waited_seconds: float):
        super().__init__(
            message=f"Timed out acquiring lock {key}",
            error_code="LOCK_TIMEOUT",
            details={"key": key, "waited_seconds": waited_seconds}
        )


class StoreUnavailableError(TransientError):
    """Raised when the shared cache/lock store cannot be reached"""

    def __init__(self, operation: str, reason: str = ""):
        super().__init__(
            message=f"Store unavailable during {operation}",
            error_code="STORE_UNAVAILABLE",
            details={"operation": operation, "reason": reason}
        )


class UpstreamUnavailableError(TransientError):
    """Raised when the routing configuration source is unreachable"""

    def __init__(self, service: str, reason: str = ""):
        super().__init__(
            message=f"Upstream service {service} unavailable",
            error_code="UPSTREAM_UNAVAILABLE",
            details={"service": service, "reason": reason}
        )


class WebhookDeadlineExceeded(TransientError):
    """Raised when webhook processing exceeds its deadline"""

    def __init__(self, call_id: str, deadline_seconds: float):
        super().__init__(
            message=f"Processing for call {call_id} exceeded {deadline_seconds}s",
            error_code="DEADLINE_EXCEEDED",
            details={"call_id": call_id, "deadline_seconds": deadline_seconds}
        )


# Webhook Exceptions
class WebhookSignatureError(CallRouterException):
    """Raised when webhook signature validation fails"""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message=message,
            error_code="INVALID_SIGNATURE",
            status_code=401
        )


class InvalidWebhookPayload(CallRouterException):
    """Raised when an inbound webhook payload cannot be normalized"""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            message=message,
            error_code="INVALID_PAYLOAD",
            details=details,
            status_code=400
        )


# Configuration Exceptions
class ConfigurationError(CallRouterException):
    """Raised when the service itself is misconfigured"""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=500
        )


# Fatal Exceptions
class UnsupportedOutcomeError(Exception):
    """
    Raised when a routing outcome has no renderer.

    Not a CallRouterException: it is a programming error and must reach the
    global handler as an unhandled failure.
    """

    def __init__(self, outcome_kind: str):
        self.outcome_kind = outcome_kind
        super().__init__(f"No renderer for routing outcome '{outcome_kind}'")
