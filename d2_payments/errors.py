"""
Processor error translation

Raw processor messages may contain internal identifiers, so they never
reach a response. Every processor error goes through ``translate`` and
comes out as a taxonomy exception with a message from the table below.
"""
from typing import Optional

from core.exceptions import (
    ConfigurationError,
    PaymentDeclined,
    ProcessorError,
    ProcessorTransientError,
    StorefrontError,
    ValidationError,
)
from d0_gateway.exceptions import CapabilityNotSupportedError, ProcessorAPIError

DEFAULT_MESSAGE = "Payment failed. Please check your payment information and try again."

ERROR_MESSAGES = {
    "card_declined": "Your card was declined. Please try a different payment method.",
    "generic_decline": "Your card was declined. Please try a different payment method.",
    "insufficient_funds": "Insufficient funds. Please check your account balance or try a different card.",
    "expired_card": "Your card has expired. Please update your payment information.",
    "incorrect_cvc": "The security code is incorrect. Please check and try again.",
    "incorrect_number": "Your card number is incorrect. Please check and try again.",
    "invalid_expiry_month": "The expiration date is invalid. Please check and try again.",
    "invalid_expiry_year": "The expiration date is invalid. Please check and try again.",
    "processing_error": "There was an error processing your payment. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "invalid_request_error": "Invalid payment information. Please check your details and try again.",
    "invalid_request": "Invalid payment information. Please check your details and try again.",
    "authentication_required": "Additional authentication is required. Please complete the verification.",
    "payment_intent_authentication_failure": "Authentication failed. Please try again.",
    "api_connection_error": "The payment service is temporarily unavailable. Please try again.",
}

DECLINE_CODES = {
    "card_declined",
    "generic_decline",
    "insufficient_funds",
    "expired_card",
    "incorrect_cvc",
    "incorrect_number",
    "invalid_expiry_month",
    "invalid_expiry_year",
    "processing_error",
    "authentication_required",
    "payment_intent_authentication_failure",
}


def message_for(code: Optional[str]) -> str:
    return ERROR_MESSAGES.get(code or "", DEFAULT_MESSAGE)


def translate(error: Exception, status: Optional[str] = None) -> StorefrontError:
    """Map a processor error onto the error taxonomy"""
    if isinstance(error, CapabilityNotSupportedError):
        return ConfigurationError(str(error), setting="payment_processor")

    if isinstance(error, StorefrontError) and not isinstance(error, ProcessorAPIError):
        return error

    if not isinstance(error, ProcessorAPIError):
        return ProcessorError(DEFAULT_MESSAGE)

    code = error.decline_code or error.code or error.error_type

    if error.is_transient:
        return ProcessorTransientError(
            message_for("rate_limit" if error.error_type == "rate_limit" else "api_connection_error"),
            processor_code=code,
            status_code=429 if error.error_type == "rate_limit" or error.http_status == 429 else 503,
        )

    if error.error_type == "authentication_error":
        return ConfigurationError("Payment system not configured", setting=f"{error.processor}_api_key")

    if error.error_type == "card_error" or code in DECLINE_CODES:
        return PaymentDeclined(message_for(code), decline_code=code, status=status)

    if error.error_type in ("invalid_request_error", "invalid_request"):
        return ValidationError(message_for("invalid_request_error"), processor_code=error.code)

    return ProcessorError(message_for(code), processor_code=code)
