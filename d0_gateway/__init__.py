"""
D0 Gateway - Payment processor integrations and ingress rate limiting

No other domain talks to a payment processor directly; everything goes
through the PaymentProcessor capability interface.
"""

from .base import PaymentProcessor
from .exceptions import (
    CapabilityNotSupportedError,
    GatewayError,
    ProcessorAPIError,
    SignatureVerificationError,
)
from .rate_limiter import InMemoryRateLimiter, RateLimitDecision, RateLimiter, RedisRateLimiter
from .types import (
    IntentRequest,
    IntentStatus,
    PaymentMethodSummary,
    ProcessorCustomer,
    ProcessorEvent,
    ProcessorIntent,
    ProcessorInvoice,
    ProcessorName,
    ProcessorSubscription,
    Promotion,
    SubscriptionStatus,
)

__all__ = [
    "PaymentProcessor",
    "RateLimiter",
    "InMemoryRateLimiter",
    "RedisRateLimiter",
    "RateLimitDecision",
    # Exceptions
    "GatewayError",
    "ProcessorAPIError",
    "CapabilityNotSupportedError",
    "SignatureVerificationError",
    # Types
    "ProcessorName",
    "IntentStatus",
    "SubscriptionStatus",
    "PaymentMethodSummary",
    "IntentRequest",
    "ProcessorIntent",
    "ProcessorCustomer",
    "ProcessorInvoice",
    "ProcessorSubscription",
    "Promotion",
    "ProcessorEvent",
]
