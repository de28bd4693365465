"""
D1 Checkout - Checkout session state, pricing and order assembly
"""

from .catalog import Catalog, Product
from .coupons import CouponBook, validate_coupon
from .models import (
    Address,
    CheckoutStep,
    Customer,
    LineItem,
    Order,
    OrderSummary,
    PaymentInfo,
    PaymentMethod,
    PaymentStatus,
)
from .order import assemble_order, generate_order_number
from .pricing import PricingPolicy, format_usd, from_cents, to_cents, to_dollars
from .session import CheckoutSession

__all__ = [
    "Address",
    "Catalog",
    "CheckoutSession",
    "CheckoutStep",
    "CouponBook",
    "Customer",
    "LineItem",
    "Order",
    "OrderSummary",
    "PaymentInfo",
    "PaymentMethod",
    "PaymentStatus",
    "PricingPolicy",
    "Product",
    "assemble_order",
    "format_usd",
    "from_cents",
    "generate_order_number",
    "to_cents",
    "to_dollars",
    "validate_coupon",
]
