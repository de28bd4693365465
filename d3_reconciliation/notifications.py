"""Order-paid notifications."""
from typing import Any, Dict, Optional

from core.config import get_settings
from core.logging import get_logger
from d1_checkout.models import Order
from d1_checkout.pricing import format_usd

logger = get_logger(__name__, domain="d3")


def format_order_for_email(order: Order) -> str:
    """Plain-text customer confirmation for a paid order"""
    items = "\n".join(
        f"{item.name} (Qty: {item.quantity}) - {format_usd(item.unit_price_cents)}"
        for item in order.items
    )
    address = order.shipping_address
    street = address.address1 + (f"\n{address.address2}" if address.address2 else "")
    special = (
        f"\nSpecial Instructions:\n{order.special_instructions}\n"
        if order.special_instructions
        else ""
    )
    summary = order.summary

    lines = [
        f"Order Confirmation - {order.order_number}",
        "",
        f"Dear {order.customer.first_name},",
        "",
        "Thank you for your order! Your wellness shots are being prepared with care.",
        "",
        "Order Details:",
        items,
        "",
        "Shipping Address:",
        address.full_name,
        street,
        f"{address.city}, {address.state} {address.zip_code}",
        "",
        "Order Summary:",
        f"Items: {format_usd(summary.subtotal)}",
        f"Tax: {format_usd(summary.tax)}",
        f"Shipping: {format_usd(summary.shipping)}",
    ]
    if summary.discount:
        lines.append(f"Discount: -{format_usd(summary.discount)}")
    lines += [
        f"Total: {format_usd(summary.total)}",
        "",
        f"{special}Your order will be shipped within 1-2 business days.",
        "",
        "Thank you for choosing Revive Life Vitality!",
    ]
    return "\n".join(lines).strip()


class OrderNotifier:
    """
    Receives the single "order paid" effect

    The default implementation only logs; delivery integrations override
    ``notify_order_paid``.
    """

    def __init__(self, recipient: Optional[str] = None):
        self.recipient = recipient if recipient is not None else get_settings().notification_email

    def notify_order_paid(
        self, reference: str, source: str, order: Optional[Order] = None, details: Optional[Dict[str, Any]] = None
    ) -> None:
        extra = {"reference": reference, "source": source, "recipient": self.recipient}
        if order is not None:
            extra["order_id"] = order.order_number
            extra["customer_email"] = order.customer.email
            logger.info("Order confirmation prepared", extra=extra)
            logger.debug(format_order_for_email(order))
        else:
            extra.update(details or {})
            logger.info("Order paid without order snapshot", extra=extra)
