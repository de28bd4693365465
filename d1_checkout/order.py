"""
Order assembly

``assemble_order`` is pure given its clock and random source: the same
inputs, ``now`` and ``rng`` always produce the same Order.
"""
import random
import string
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from core.exceptions import ValidationError

from .models import Address, Customer, LineItem, Order, OrderSummary

_BASE36 = string.digits + string.ascii_uppercase


def generate_order_number(
    prefix: str = "RLV",
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Display order number: PREFIX-<last 6 digits of epoch ms>-<3 base36 chars>

    Not unique enough to key payments on; processor ids are the
    idempotency keys.
    """
    now = now or datetime.now(timezone.utc)
    rng = rng or random.SystemRandom()
    millis = str(int(now.timestamp() * 1000))[-6:]
    suffix = "".join(rng.choice(_BASE36) for _ in range(3))
    return f"{prefix}-{millis}-{suffix}"


def assemble_order(
    customer: Customer,
    shipping_address: Address,
    items: Iterable[LineItem],
    pricing: OrderSummary,
    special_instructions: Optional[str] = None,
    billing_address: Optional[Address] = None,
    coupon_code: Optional[str] = None,
    *,
    prefix: str = "RLV",
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> Order:
    """
    Build the canonical order

    The summary's subtotal must match the items and its total is
    recomputed from its components, so a client-computed total can never
    leak into an order.
    """
    items = tuple(items)
    if not items:
        raise ValidationError("At least one item is required", field="items")

    subtotal = sum(item.total_cents for item in items)
    if pricing.subtotal != subtotal:
        raise ValidationError(
            "Order subtotal does not match items",
            field="summary.subtotal",
            expected=subtotal,
            received=pricing.subtotal,
        )

    discount = max(0, min(pricing.discount, pricing.gross))
    summary = OrderSummary(
        subtotal=subtotal,
        tax=pricing.tax,
        shipping=pricing.shipping,
        discount=discount,
        total=pricing.gross - discount,
    )

    created_at = now or clock()
    instructions = special_instructions.strip() if special_instructions else None

    return Order(
        order_number=generate_order_number(prefix, created_at, rng),
        items=items,
        customer=customer,
        shipping_address=shipping_address,
        billing_address=billing_address,
        summary=summary,
        special_instructions=instructions or None,
        coupon_code=coupon_code.strip().upper() if coupon_code else None,
        created_at=created_at,
    )
