"""
Custom exceptions for the checkout service
Provides structured error handling across all domains
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Base exception for all checkout errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
        error: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code
        self.error = error or message

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        body = {
            "error": self.error,
            "message": self.message,
            "code": self.error_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StorefrontError):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[Dict[str, str]] = None,
        **details,
    ):
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details,
            status_code=400,
            error="Validation failed",
        )
        self.errors = errors or ({field: message} if field else {})


class PaymentDeclined(StorefrontError):
    """Raised when the processor declines a payment or it does not complete"""

    def __init__(
        self,
        message: str,
        decline_code: Optional[str] = None,
        status: Optional[str] = None,
        error: str = "Payment failed",
        **details,
    ):
        super().__init__(
            message=message,
            error_code=decline_code or "PAYMENT_DECLINED",
            details=details,
            status_code=402,
            error=error,
        )
        self.decline_code = decline_code
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.status:
            body["status"] = self.status
        return body


class PaymentPendingError(PaymentDeclined):
    """Raised when a subscription is still waiting on its first payment"""

    def __init__(self, message: str, status: str = "incomplete", **details):
        super().__init__(
            message=message,
            decline_code="PAYMENT_PENDING",
            status=status,
            error="Subscription not activated",
            **details,
        )


class ProcessorTransientError(StorefrontError):
    """Raised on processor rate limits and transient API failures"""

    def __init__(
        self,
        message: str,
        processor_code: Optional[str] = None,
        status_code: int = 503,
        retry_after: Optional[int] = None,
    ):
        details = {"retryable": True}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(
            message=message,
            error_code=processor_code or "PROCESSOR_UNAVAILABLE",
            details=details,
            status_code=status_code,
            error="Payment processor unavailable",
        )
        self.retry_after = retry_after


class ProcessorError(StorefrontError):
    """Raised for processor failures without a more specific mapping"""

    def __init__(self, message: str, processor_code: Optional[str] = None):
        super().__init__(
            message=message,
            error_code=processor_code or "PROCESSOR_ERROR",
            status_code=500,
            error="Payment processing failed",
        )


class SubscriptionSetupError(StorefrontError):
    """Raised when a subscription exists processor-side but setup did not finish"""

    def __init__(self, message: str, subscription_id: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="SUBSCRIPTION_SETUP_FAILED",
            details={"subscription_id": subscription_id} if subscription_id else {},
            status_code=500,
            error="Failed to create subscription",
        )
        self.subscription_id = subscription_id


class ConfigurationError(StorefrontError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, setting: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            status_code=503,
            error="Service unavailable",
        )
        # Setting names stay out of the response body
        self.setting = setting


class SecurityViolation(StorefrontError):
    """Raised for card-shaped request data and failed webhook signatures"""

    def __init__(self, message: str, code: str = "SECURITY_VIOLATION"):
        super().__init__(
            message=message,
            error_code=code,
            status_code=400,
            error="Security violation",
        )


class RateLimitError(StorefrontError):
    """Raised when a client exceeds the request rate limit"""

    def __init__(self, retry_after: int, limit: Optional[int] = None):
        super().__init__(
            message=f"Rate limit exceeded, retry after {retry_after} seconds",
            error_code="RATE_LIMITED",
            details={"retry_after": retry_after},
            status_code=429,
            error="Too many requests",
        )
        self.retry_after = retry_after
        self.limit = limit


class ReconciliationTimeout(StorefrontError):
    """Raised when polling ran out of attempts without a terminal status"""

    def __init__(self, message: str, attempts: int = 0, status: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="CONFIRMATION_PENDING",
            details={"attempts": attempts, "status": status},
            status_code=202,
            error="Confirmation pending",
        )
        self.attempts = attempts


class NotFoundError(StorefrontError):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND",
            details={"resource": resource, "identifier": str(identifier)},
            status_code=404,
            error="Not found",
        )


class InvalidTransitionError(StorefrontError):
    """Raised when a checkout state transition is not allowed"""

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(
            message=message,
            error_code="INVALID_TRANSITION",
            details={"current": current, "target": target},
            status_code=409,
            error="Invalid checkout transition",
        )
