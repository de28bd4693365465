"""
Promotion code resolution

``resolve`` is best-effort: a failed lookup is logged, audited and treated
as "no discount", never as a failed checkout. ``verify`` backs the
verify-promo endpoint and reports lookup failures to the caller.
"""
from dataclasses import dataclass
from typing import Optional

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.logging import get_logger
from d0_gateway.base import PROMOTIONS, PaymentProcessor
from d0_gateway.exceptions import ProcessorAPIError
from d0_gateway.types import Promotion
from d1_checkout.coupons import CouponBook

from .errors import translate

logger = get_logger(__name__, domain="d2")


@dataclass
class PromotionLookup:
    """Result of a verify-promo call"""

    valid: bool
    message: str
    discount: Optional[str] = None
    promo_id: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"valid": self.valid, "message": self.message}
        if self.valid:
            body["discount"] = self.discount
            body["promoId"] = self.promo_id
        return body


class PromotionService:
    """Resolves codes through the processor, falling back to local coupons"""

    def __init__(
        self,
        processor: PaymentProcessor,
        coupons: Optional[CouponBook] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.processor = processor
        self.coupons = coupons or CouponBook()
        self.audit = audit or get_audit_logger()

    def _from_coupon_book(self, code: str) -> Optional[Promotion]:
        coupon = self.coupons.get(code)
        if coupon is None:
            return None
        if coupon.kind == "percent":
            return Promotion(id=f"coupon_{coupon.code}", code=coupon.code, percent_off=float(coupon.value))
        return Promotion(
            id=f"coupon_{coupon.code}",
            code=coupon.code,
            amount_off_cents=int(coupon.value * 100),
        )

    def _lookup(self, code: str) -> Optional[Promotion]:
        if self.processor.supports(PROMOTIONS):
            promotion = self.processor.find_promotion(code)
            if promotion is not None:
                return promotion
        return self._from_coupon_book(code)

    def resolve(self, code: Optional[str], context: Optional[dict] = None) -> Optional[Promotion]:
        """Look up a code, degrading to no discount on any lookup failure"""
        if not code or not code.strip():
            return None
        try:
            promotion = self._lookup(code)
        except Exception as e:
            error_code = e.code if isinstance(e, ProcessorAPIError) else type(e).__name__
            logger.warning(
                "Promotion lookup failed, continuing without discount",
                extra={"promotion_code": code, "error_code": error_code},
            )
            self.audit.emit(
                AuditEvent.PROMO_LOOKUP_FAILED,
                Severity.MEDIUM,
                promotion_code=code,
                error_code=error_code,
                **(context or {}),
            )
            return None

        if promotion is None:
            logger.info("Promotion code not found", extra={"promotion_code": code})
        return promotion

    def verify(self, code: str) -> PromotionLookup:
        """Check a code for display; lookup errors are surfaced"""
        try:
            promotion = self._lookup(code)
        except ProcessorAPIError as e:
            raise translate(e) from e

        if promotion is None:
            return PromotionLookup(valid=False, message="Promo code not found")
        if promotion.percent_off is None and promotion.amount_off_cents is None:
            return PromotionLookup(valid=False, message="Coupon configuration error")

        return PromotionLookup(
            valid=True,
            message=f"Valid! {promotion.description}",
            discount=promotion.description,
            promo_id=promotion.id,
        )
