"""
Money conversion and order pricing

Dollars only exist at the HTTP boundary. ``to_cents`` is the single place
a dollar amount becomes integer cents, rounding half-up exactly once.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from .models import LineItem, OrderSummary

Amount = Union[Decimal, float, int, str]

_CENT = Decimal("0.01")
_ONE = Decimal("1")


def to_cents(amount: Amount) -> int:
    """
    Convert a dollar amount to integer cents

    Accepts Decimal, int, float or strings like "$4.99" / "1,204.50".
    Floats go through their shortest repr so 51.04 becomes 5104, not 5103.
    """
    if isinstance(amount, bool):
        raise TypeError("amount must be numeric")
    if isinstance(amount, str):
        cleaned = amount.strip().replace("$", "").replace(",", "")
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {amount!r}")
    elif isinstance(amount, float):
        value = Decimal(repr(amount))
    else:
        value = Decimal(amount)

    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int((value * 100).quantize(_ONE, rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def to_dollars(cents: int) -> float:
    """Dollar float for JSON responses"""
    return float(from_cents(cents))


def format_usd(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${from_cents(abs(cents)):,.2f}"


def percent_of(cents: int, rate: Decimal) -> int:
    return int((Decimal(cents) * rate).quantize(_ONE, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PricingPolicy:
    """Tax and shipping rules applied server-side"""

    tax_rate: Decimal = Decimal("0.08")
    flat_shipping_cents: int = 1000
    free_shipping_threshold_cents: Optional[int] = None

    @classmethod
    def from_settings(cls, settings) -> "PricingPolicy":
        return cls(
            tax_rate=Decimal(str(settings.tax_rate)),
            flat_shipping_cents=settings.flat_shipping_cents,
            free_shipping_threshold_cents=settings.free_shipping_threshold_cents,
        )

    def subtotal(self, items: Iterable[LineItem]) -> int:
        return sum(item.total_cents for item in items)

    def tax_for(self, subtotal_cents: int) -> int:
        # Flat rate regardless of destination
        return percent_of(subtotal_cents, self.tax_rate)

    def shipping_for(self, subtotal_cents: int) -> int:
        if (
            self.free_shipping_threshold_cents is not None
            and subtotal_cents >= self.free_shipping_threshold_cents
        ):
            return 0
        return self.flat_shipping_cents

    def price(self, items: Iterable[LineItem], discount_cents: int = 0) -> OrderSummary:
        """
        Price a list of items

        The discount is clamped to [0, subtotal + tax + shipping] so the
        total can never go negative.
        """
        subtotal = self.subtotal(items)
        tax = self.tax_for(subtotal)
        shipping = self.shipping_for(subtotal)
        gross = subtotal + tax + shipping
        discount = max(0, min(discount_cents, gross))
        return OrderSummary(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=gross - discount,
        )
