"""
Dependency injection helpers for the checkout API

Services are cheap to build and are assembled per request around the
long-lived pieces: the cached processor client and the confirmation ledger.
Tests replace any of these through ``app.dependency_overrides``.
"""
from functools import lru_cache

from fastapi import Depends

from core.audit import AuditLogger, get_audit_logger
from core.config import get_settings
from d0_gateway.base import PaymentProcessor
from d0_gateway.factory import get_processor
from d1_checkout.catalog import Catalog
from d1_checkout.coupons import CouponBook
from d1_checkout.pricing import PricingPolicy
from d2_payments.intents import PaymentOrchestrator
from d2_payments.promotions import PromotionService
from d2_payments.quotes import OrderPricer
from d2_payments.subscriptions import SubscriptionOrchestrator
from d3_reconciliation.confirmation import ConfirmationService
from d3_reconciliation.ledger import ConfirmationLedger, create_ledger
from d3_reconciliation.webhooks import WebhookProcessor


def get_payment_processor() -> PaymentProcessor:
    """Get the configured payment processor"""
    return get_processor()


@lru_cache()
def get_ledger() -> ConfirmationLedger:
    """Get the process-wide confirmation ledger"""
    return create_ledger(get_settings())


def get_audit() -> AuditLogger:
    return get_audit_logger()


def get_coupon_book() -> CouponBook:
    return CouponBook()


def get_promotion_service(
    processor: PaymentProcessor = Depends(get_payment_processor),
    coupons: CouponBook = Depends(get_coupon_book),
    audit: AuditLogger = Depends(get_audit),
) -> PromotionService:
    return PromotionService(processor, coupons=coupons, audit=audit)


def get_order_pricer(
    promotions: PromotionService = Depends(get_promotion_service),
    coupons: CouponBook = Depends(get_coupon_book),
) -> OrderPricer:
    return OrderPricer(Catalog(), PricingPolicy.from_settings(get_settings()), promotions, coupons)


def get_confirmation_service(
    processor: PaymentProcessor = Depends(get_payment_processor),
    pricer: OrderPricer = Depends(get_order_pricer),
    ledger: ConfirmationLedger = Depends(get_ledger),
    audit: AuditLogger = Depends(get_audit),
) -> ConfirmationService:
    return ConfirmationService(processor, pricer, ledger=ledger, audit=audit)


def get_payment_orchestrator(
    processor: PaymentProcessor = Depends(get_payment_processor),
    pricer: OrderPricer = Depends(get_order_pricer),
    confirmations: ConfirmationService = Depends(get_confirmation_service),
    audit: AuditLogger = Depends(get_audit),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(processor, pricer, audit=audit, settle=confirmations.settle_payment)


def get_subscription_orchestrator(
    processor: PaymentProcessor = Depends(get_payment_processor),
    promotions: PromotionService = Depends(get_promotion_service),
    audit: AuditLogger = Depends(get_audit),
) -> SubscriptionOrchestrator:
    return SubscriptionOrchestrator(processor, promotions, audit=audit)


def get_webhook_processor(
    processor: PaymentProcessor = Depends(get_payment_processor),
    confirmations: ConfirmationService = Depends(get_confirmation_service),
    audit: AuditLogger = Depends(get_audit),
) -> WebhookProcessor:
    return WebhookProcessor(processor, confirmations, audit=audit)
