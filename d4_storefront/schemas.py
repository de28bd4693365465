"""
Checkout API schemas

Request bodies carry dollar amounts, as the browser cart does; they are
converted to integer cents once, here, before reaching the domain.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from core.config import get_settings
from d1_checkout.models import Address, CamelModel, Customer, LineItem
from d1_checkout.pricing import to_cents

_METADATA_KEY_LIMIT = 40
_METADATA_VALUE_LIMIT = 500


class CartItemRequest(CamelModel):
    """Cart line as sent by the browser"""

    id: str = Field(..., min_length=1, max_length=200, description="Product or configured pack id")
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0, le=10000, description="Unit price in USD")
    quantity: int = Field(..., ge=1, le=100)
    image: Optional[str] = Field(None, max_length=500)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v):
        """Validate amount has maximum 2 decimal places"""
        if v.as_tuple().exponent < -2:
            raise ValueError("Amount cannot have more than 2 decimal places")
        return v

    def to_line_item(self) -> LineItem:
        return LineItem(
            id=self.id,
            name=self.name,
            unit_price_cents=to_cents(self.price),
            quantity=self.quantity,
            image=self.image,
        )


class SummaryRequest(CamelModel):
    """Client-computed summary; informational only"""

    subtotal: Decimal = Field(..., ge=0)
    tax: Decimal = Field(..., ge=0)
    shipping: Decimal = Field(..., ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(..., ge=0)

    def total_cents(self) -> int:
        return to_cents(self.total)


class _CartRequest(CamelModel):
    items: List[CartItemRequest] = Field(..., min_length=1, max_length=50)
    customer: Customer
    summary: Optional[SummaryRequest] = None
    promotion_code: Optional[str] = Field(None, max_length=100)
    coupon_code: Optional[str] = Field(None, max_length=100)
    special_instructions: Optional[str] = Field(None, max_length=500)

    def line_items(self) -> List[LineItem]:
        return [item.to_line_item() for item in self.items]

    def client_total_cents(self) -> Optional[int]:
        return self.summary.total_cents() if self.summary else None


class CreatePaymentIntentRequest(_CartRequest):
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_token: Optional[str] = Field(None, max_length=500, description="Opaque processor token")


class ConfirmPaymentRequest(_CartRequest):
    payment_intent_id: str = Field(..., min_length=3, max_length=255)
    shipping_address: Address
    billing_address: Optional[Address] = None

    @field_validator("payment_intent_id")
    @classmethod
    def validate_payment_intent_id(cls, v):
        if get_settings().payment_processor == "stripe" and not v.startswith("pi_"):
            raise ValueError("Invalid payment intent ID")
        return v


class CreateSubscriptionRequest(CamelModel):
    price_id: str = Field(..., pattern=r"^price_", max_length=255)
    customer: Customer
    shipping_address: Address
    promotion_code: Optional[str] = Field(None, max_length=100)
    trial_period_days: Optional[int] = Field(None, ge=1, le=730)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata")
    @classmethod
    def validate_metadata_keys(cls, v):
        """Validate metadata keys and values"""
        for key, value in v.items():
            if len(key) > _METADATA_KEY_LIMIT:
                raise ValueError(f'Metadata key "{key}" too long (max {_METADATA_KEY_LIMIT} chars)')
            if len(value) > _METADATA_VALUE_LIMIT:
                raise ValueError(f'Metadata value for "{key}" too long (max {_METADATA_VALUE_LIMIT} chars)')
        return v


class ConfirmSubscriptionRequest(CamelModel):
    subscription_id: str = Field(..., pattern=r"^sub_", max_length=255)
    customer_id: str = Field(..., pattern=r"^cus_", max_length=255)
    customer: Optional[Customer] = None
    shipping_address: Optional[Address] = None


class VerifyPromoRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=100)


class ValidateCouponRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=100)
    subtotal: Decimal = Field(..., ge=0, description="Merchandise subtotal in USD")


# Responses


class PaymentIntentResponse(CamelModel):
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: float
    currency: str
    status: str
    order_reference: str
    free_order: bool = False
    order: Optional[Dict[str, Any]] = None


class SubscriptionResponse(CamelModel):
    subscription_id: str
    customer_id: str
    client_secret: Optional[str] = None
    status: str
    amount_due: float
    promotion_applied: bool = False


class PromoResponse(CamelModel):
    valid: bool
    message: str
    discount: Optional[str] = None
    promo_id: Optional[str] = None


class CouponResponse(CamelModel):
    valid: bool
    discount: float = 0.0
    message: Optional[str] = None


class WebhookAckResponse(CamelModel):
    received: bool = True
    event_id: Optional[str] = None
    status: Optional[str] = None


class APIStatusResponse(BaseModel):
    status: str
    service: str
    version: str
    processor: str
    capabilities: List[str]
    supported_webhook_events: List[str] = Field(default_factory=list)

