"""
Static coupon table

Coupons are applied to the merchandise subtotal. Codes are matched
case-insensitively and only while active.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from .pricing import format_usd, percent_of


@dataclass(frozen=True)
class Coupon:
    code: str
    kind: str  # "percent" or "amount"
    value: Decimal
    active: bool = True
    min_subtotal_cents: Optional[int] = None
    max_discount_cents: Optional[int] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    def is_live(self, now: Optional[datetime] = None) -> bool:
        if not self.active:
            return False
        now = now or datetime.now(timezone.utc)
        if self.starts_at and now < self.starts_at:
            return False
        if self.ends_at and now > self.ends_at:
            return False
        return True

    def discount_cents(self, subtotal_cents: int) -> int:
        if self.min_subtotal_cents and subtotal_cents < self.min_subtotal_cents:
            return 0
        if self.kind == "percent":
            discount = percent_of(subtotal_cents, self.value / 100)
        else:
            discount = int(self.value * 100)
        if self.max_discount_cents is not None:
            discount = min(discount, self.max_discount_cents)
        return max(0, min(discount, subtotal_cents))

    @property
    def description(self) -> str:
        if self.kind == "percent":
            return f"{self.value:g}% off"
        return f"{format_usd(int(self.value * 100))} off"


@dataclass(frozen=True)
class CouponResult:
    valid: bool
    discount_cents: int = 0
    message: Optional[str] = None
    coupon: Optional[Coupon] = None


DEFAULT_COUPONS = (
    Coupon(code="REVIVE10", kind="percent", value=Decimal("10")),
    Coupon(code="WELCOME5", kind="amount", value=Decimal("5"), min_subtotal_cents=3000),
)


class CouponBook:
    def __init__(self, coupons=DEFAULT_COUPONS):
        self._coupons: Dict[str, Coupon] = {c.code.upper(): c for c in coupons}

    def get(self, code: str, now: Optional[datetime] = None) -> Optional[Coupon]:
        coupon = self._coupons.get((code or "").strip().upper())
        if coupon is None or not coupon.is_live(now):
            return None
        return coupon

    def validate(self, code: str, subtotal_cents: int, now: Optional[datetime] = None) -> CouponResult:
        coupon = self.get(code, now)
        if coupon is None:
            return CouponResult(valid=False, message="Invalid or inactive code")

        discount = coupon.discount_cents(subtotal_cents)
        if discount <= 0:
            if coupon.min_subtotal_cents and subtotal_cents < coupon.min_subtotal_cents:
                return CouponResult(
                    valid=False,
                    message=f"Minimum subtotal of {format_usd(coupon.min_subtotal_cents)} required",
                )
            return CouponResult(valid=False, message="Code not applicable")

        return CouponResult(
            valid=True,
            discount_cents=discount,
            message=f"Valid! {coupon.description}",
            coupon=coupon,
        )


def validate_coupon(code: str, subtotal_cents: int) -> CouponResult:
    return CouponBook().validate(code, subtotal_cents)
