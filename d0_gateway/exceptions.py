"""
Gateway-specific exceptions

Processor failures are raised as ProcessorAPIError carrying the processor's
own error code. They are translated into user-facing errors by
d2_payments.errors before anything reaches an HTTP response.
"""
from typing import Optional

from core.exceptions import StorefrontError


class GatewayError(StorefrontError):
    """Base exception for gateway domain"""

    pass


class ProcessorAPIError(GatewayError):
    """Error reported by a payment processor"""

    def __init__(
        self,
        processor: str,
        message: str,
        code: Optional[str] = None,
        decline_code: Optional[str] = None,
        error_type: Optional[str] = None,
        http_status: Optional[int] = None,
        intent_id: Optional[str] = None,
    ):
        self.processor = processor
        self.code = code
        self.decline_code = decline_code
        self.error_type = error_type
        self.http_status = http_status
        self.intent_id = intent_id
        # Raw processor text stays on the exception for logs only
        self.raw_message = message
        super().__init__(
            message=f"{processor}: {message}",
            error_code=code or error_type or "processor_error",
            status_code=http_status or 502,
        )

    @property
    def is_transient(self) -> bool:
        return self.error_type in ("rate_limit", "api_connection_error") or (
            self.http_status is not None and (self.http_status == 429 or self.http_status >= 500)
        )


class CapabilityNotSupportedError(GatewayError):
    """Processor does not implement an optional capability"""

    def __init__(self, processor: str, capability: str):
        self.processor = processor
        self.capability = capability
        super().__init__(
            message=f"{processor} does not support {capability}",
            error_code="CAPABILITY_NOT_SUPPORTED",
            status_code=503,
        )


class SignatureVerificationError(GatewayError):
    """Webhook payload failed signature verification"""

    def __init__(self, processor: str, message: str = "Invalid signature"):
        self.processor = processor
        super().__init__(
            message=message, error_code="INVALID_SIGNATURE", status_code=400
        )
