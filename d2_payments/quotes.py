"""
Server-side order pricing

Both intent creation and confirmation price the cart here, from catalog
prices, so the amount charged and the amount verified always agree.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.logging import get_logger
from d0_gateway.types import Promotion
from d1_checkout.catalog import Catalog
from d1_checkout.coupons import CouponBook
from d1_checkout.models import LineItem, OrderSummary
from d1_checkout.pricing import PricingPolicy

from .promotions import PromotionService

logger = get_logger(__name__, domain="d2")


@dataclass
class Quote:
    items: List[LineItem]
    summary: OrderSummary
    promotion: Optional[Promotion] = None
    coupon_code: Optional[str] = None

    @property
    def discount_code(self) -> Optional[str]:
        if self.promotion:
            return self.promotion.code
        return self.coupon_code


class OrderPricer:
    def __init__(
        self,
        catalog: Catalog,
        pricing: PricingPolicy,
        promotions: PromotionService,
        coupons: Optional[CouponBook] = None,
    ):
        self.catalog = catalog
        self.pricing = pricing
        self.promotions = promotions
        self.coupons = coupons or CouponBook()

    def quote(
        self,
        items: Iterable[LineItem],
        promotion_code: Optional[str] = None,
        coupon_code: Optional[str] = None,
        client_total_cents: Optional[int] = None,
        context: Optional[dict] = None,
    ) -> Quote:
        """
        Price a cart from catalog prices

        A processor promotion takes precedence over a local coupon. Percent
        promotions apply to the gross amount so a 100% promotion makes the
        order free; coupons apply to the merchandise subtotal.
        """
        verified = self.catalog.verify_items(items)
        base = self.pricing.price(verified)

        promotion = self.promotions.resolve(promotion_code, context=context)
        applied_coupon = None
        discount = 0
        if promotion is not None:
            discount = promotion.discount_cents(base.gross)
        elif coupon_code:
            result = self.coupons.validate(coupon_code, base.subtotal)
            if result.valid:
                discount = result.discount_cents
                applied_coupon = result.coupon.code

        summary = self.pricing.price(verified, discount)

        if client_total_cents is not None and client_total_cents != summary.total:
            logger.warning(
                "Client summary differs from server pricing",
                extra={"client_total": client_total_cents, "server_total": summary.total},
            )

        return Quote(items=verified, summary=summary, promotion=promotion, coupon_code=applied_coupon)

    def reprice(
        self,
        items: Iterable[LineItem],
        discount_cents: int,
        discount_code: Optional[str] = None,
    ) -> Quote:
        """
        Price a cart against a discount fixed at intent creation

        Catalog prices are still verified; the promotion or coupon is not
        looked up again, so a promotion retired after the charge cannot
        change the total.
        """
        verified = self.catalog.verify_items(items)
        summary = self.pricing.price(verified, discount_cents)
        return Quote(items=verified, summary=summary, coupon_code=discount_code)
