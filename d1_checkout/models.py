"""
D1 Checkout Models

Checkout data shapes shared by the session state machine, order assembly
and the HTTP layer. Money is integer cents everywhere in this module.
JSON field names are camelCase; Python attribute names are snake_case.
"""

import enum
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model accepting both camelCase and snake_case input"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutStep(enum.IntEnum):
    """Checkout steps in order"""

    CUSTOMER = 1
    SHIPPING = 2
    PAYMENT = 3
    REVIEW = 4


class PaymentStatus(str, enum.Enum):
    """Payment sub-state of a checkout session"""

    IDLE = "idle"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"


class Customer(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, pattern=r"^\+?[\d\s\-\(\)]+$", max_length=30)
    marketing_consent: bool = False

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("is required")
        return v

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Address(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    address1: str = Field(..., min_length=1, max_length=200)
    address2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=2, max_length=50)
    zip_code: str = Field(..., pattern=r"^\d{5}(-\d{4})?$")
    country: str = Field(default="US", min_length=2, max_length=2)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class LineItem(CamelModel):
    """One cart line; unit price in cents"""

    id: str = Field(..., min_length=1, max_length=200)
    name: str = Field(..., min_length=1, max_length=200)
    unit_price_cents: int = Field(..., ge=0)
    quantity: int = Field(..., gt=0, le=100)
    image: Optional[str] = None

    @property
    def total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class OrderSummary(CamelModel):
    """Pricing breakdown in cents"""

    subtotal: int = Field(..., ge=0)
    tax: int = Field(..., ge=0)
    shipping: int = Field(..., ge=0)
    discount: int = Field(default=0, ge=0)
    total: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_total(self):
        expected = self.subtotal + self.tax + self.shipping - self.discount
        if self.total != expected:
            raise ValueError(
                f"total {self.total} does not equal subtotal + tax + shipping - discount ({expected})"
            )
        return self

    @property
    def gross(self) -> int:
        return self.subtotal + self.tax + self.shipping


class PaymentInfo(CamelModel):
    """Payment selection; holds an opaque token only"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    payment_method: PaymentMethod = PaymentMethod.CARD
    token: Optional[str] = Field(None, max_length=500)
    billing_address: Optional[Address] = None


class Order(CamelModel):
    """Immutable record of what was purchased"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    order_number: str
    items: Tuple[LineItem, ...]
    customer: Customer
    shipping_address: Address
    billing_address: Optional[Address] = None
    summary: OrderSummary
    special_instructions: Optional[str] = Field(None, max_length=500)
    coupon_code: Optional[str] = None
    created_at: datetime
    status: str = "confirmed"
    processor: Optional[str] = None
    processor_reference: Optional[str] = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def with_reference(self, processor: str, reference: str) -> "Order":
        """Copy of this order linked to its processor record"""
        return self.model_copy(update={"processor": processor, "processor_reference": reference})

    def to_response(self) -> Dict[str, Any]:
        """Dollar-denominated representation for API responses"""
        from .pricing import to_dollars

        return {
            "id": self.order_number,
            "status": self.status,
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "price": to_dollars(item.unit_price_cents),
                    "quantity": item.quantity,
                    "image": item.image,
                }
                for item in self.items
            ],
            "customer": self.customer.model_dump(by_alias=True),
            "shippingAddress": self.shipping_address.model_dump(by_alias=True),
            "billingAddress": self.billing_address.model_dump(by_alias=True)
            if self.billing_address
            else None,
            "summary": {
                "subtotal": to_dollars(self.summary.subtotal),
                "tax": to_dollars(self.summary.tax),
                "shipping": to_dollars(self.summary.shipping),
                "discount": to_dollars(self.summary.discount),
                "total": to_dollars(self.summary.total),
            },
            "specialInstructions": self.special_instructions,
            "couponCode": self.coupon_code,
            "processor": self.processor,
            "processorReference": self.processor_reference,
            "createdAt": self.created_at.isoformat(),
        }
