"""
Type definitions for the payment gateway domain
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ProcessorName(str, Enum):
    """Supported payment processors"""
    STRIPE = "stripe"
    CLOVER = "clover"


class IntentStatus(str, Enum):
    """Payment intent statuses as reported by the processor"""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"  # synchronous charge declined

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.SUCCEEDED, IntentStatus.CANCELED, IntentStatus.FAILED)


class SubscriptionStatus(str, Enum):
    """Subscription statuses as reported by the processor"""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"

    @property
    def is_active(self) -> bool:
        return self in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


@dataclass
class PaymentMethodSummary:
    """Displayable card summary, never the full number"""
    brand: str = "card"
    last4: str = "****"

    def to_dict(self) -> Dict[str, str]:
        return {"brand": self.brand, "last4": self.last4}


@dataclass
class IntentRequest:
    """Everything a processor needs to start a one-time payment"""
    amount_cents: int
    currency: str
    customer_email: str
    customer_name: Optional[str] = None
    payment_token: Optional[str] = None
    description: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    shipping: Optional[Dict[str, Any]] = None
    idempotency_key: Optional[str] = None


@dataclass
class ProcessorIntent:
    """Processor-side payment intent or synchronous charge"""
    id: str
    status: IntentStatus
    amount_cents: int
    currency: str
    client_secret: Optional[str] = None
    payment_method: Optional[PaymentMethodSummary] = None
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == IntentStatus.SUCCEEDED


@dataclass
class ProcessorCustomer:
    id: str
    email: str
    name: Optional[str] = None


@dataclass
class ProcessorInvoice:
    id: str
    amount_due_cents: int
    currency: str
    status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    paid: bool = False


@dataclass
class ProcessorSubscription:
    id: str
    status: SubscriptionStatus
    customer_id: str
    latest_invoice_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    interval: Optional[str] = None
    interval_count: int = 1
    payment_method: Optional[PaymentMethodSummary] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class Promotion:
    """Resolved promotion code"""
    id: str
    code: str
    coupon_id: Optional[str] = None
    percent_off: Optional[float] = None
    amount_off_cents: Optional[int] = None

    @property
    def description(self) -> str:
        if self.percent_off is not None:
            return f"{self.percent_off:g}% off"
        if self.amount_off_cents is not None:
            return f"${self.amount_off_cents / 100:.2f} off"
        return "Discount applied"

    def discount_cents(self, gross_cents: int) -> int:
        """Discount against a gross amount, never exceeding it"""
        if self.percent_off is not None:
            discount = (gross_cents * int(round(self.percent_off * 100)) + 5000) // 10000
        else:
            discount = self.amount_off_cents or 0
        return max(0, min(discount, gross_cents))


@dataclass
class ProcessorEvent:
    """Verified webhook event"""
    id: str
    type: str
    created: int
    data: Dict[str, Any]
    livemode: bool = False
