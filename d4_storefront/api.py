"""
Checkout API

REST endpoints for payment intents, subscriptions, promotion checks and
processor webhooks. Endpoints that call the processor are plain ``def``
so the blocking SDK calls run in the threadpool.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from core.audit import AuditEvent, AuditLogger, Severity
from core.config import get_settings
from core.exceptions import StorefrontError
from core.logging import get_logger
from d0_gateway.base import WEBHOOKS, PaymentProcessor
from d1_checkout.coupons import CouponBook
from d1_checkout.pricing import to_cents, to_dollars
from d2_payments.intents import PaymentOrchestrator
from d2_payments.promotions import PromotionService
from d2_payments.subscriptions import SubscriptionOrchestrator
from d3_reconciliation.confirmation import ConfirmationService
from d3_reconciliation.webhooks import WebhookEventType, WebhookProcessor

from .dependencies import (
    get_audit,
    get_confirmation_service,
    get_coupon_book,
    get_payment_orchestrator,
    get_payment_processor,
    get_promotion_service,
    get_subscription_orchestrator,
    get_webhook_processor,
)
from .schemas import (
    APIStatusResponse,
    ConfirmPaymentRequest,
    ConfirmSubscriptionRequest,
    CouponResponse,
    CreatePaymentIntentRequest,
    CreateSubscriptionRequest,
    PaymentIntentResponse,
    PromoResponse,
    SubscriptionResponse,
    ValidateCouponRequest,
    VerifyPromoRequest,
    WebhookAckResponse,
)

logger = get_logger(__name__, domain="d4")

router = APIRouter(prefix="/api/checkout", tags=["checkout"])

SIGNATURE_HEADER = "stripe-signature"


def _internal_error(message: str, error: str) -> StorefrontError:
    return StorefrontError(message, error_code="INTERNAL_ERROR", status_code=500, error=error)


@router.post(
    "/create-payment-intent",
    response_model=PaymentIntentResponse,
    summary="Create a payment intent",
)
def create_payment_intent(
    request: CreatePaymentIntentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> PaymentIntentResponse:
    """
    Price the cart server-side and start a payment

    Zero-total orders are confirmed immediately without a processor call.
    """
    try:
        result = orchestrator.create_payment_intent(
            request.line_items(),
            request.customer,
            shipping_address=request.shipping_address,
            billing_address=request.billing_address,
            promotion_code=request.promotion_code,
            coupon_code=request.coupon_code,
            special_instructions=request.special_instructions,
            payment_token=request.payment_token,
            client_total_cents=request.client_total_cents(),
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Unexpected error creating payment intent")
        raise _internal_error(
            "Unable to create payment session. Please try again.", "Failed to initialize payment"
        ) from e

    return PaymentIntentResponse(
        client_secret=result.client_secret,
        payment_intent_id=result.payment_intent_id,
        amount=to_dollars(result.amount_cents),
        currency=result.currency.upper(),
        status=result.status,
        order_reference=result.order_reference,
        free_order=result.free_order,
        order=result.order.to_response() if result.order else None,
    )


@router.post("/confirm-payment", summary="Confirm a completed payment")
def confirm_payment(
    request: ConfirmPaymentRequest,
    confirmations: ConfirmationService = Depends(get_confirmation_service),
    audit: AuditLogger = Depends(get_audit),
) -> Dict[str, Any]:
    """Verify the intent succeeded for the server-priced amount and return the order"""
    try:
        return confirmations.confirm_payment(
            request.payment_intent_id,
            request.line_items(),
            request.customer,
            request.shipping_address,
            billing_address=request.billing_address,
            promotion_code=request.promotion_code,
            coupon_code=request.coupon_code,
            special_instructions=request.special_instructions,
            client_total_cents=request.client_total_cents(),
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Unexpected error confirming payment")
        audit.emit(
            AuditEvent.PAYMENT_CONFIRMATION_ERROR,
            Severity.HIGH,
            payment_intent_id=request.payment_intent_id,
            error_code=type(e).__name__,
        )
        raise _internal_error(
            "Failed to confirm payment. Please contact support if you were charged.",
            "Internal server error",
        ) from e


@router.post(
    "/create-subscription",
    response_model=SubscriptionResponse,
    summary="Create a subscription",
)
def create_subscription(
    request: CreateSubscriptionRequest,
    orchestrator: SubscriptionOrchestrator = Depends(get_subscription_orchestrator),
) -> SubscriptionResponse:
    """Create an incomplete subscription and return the first invoice's client secret"""
    try:
        result = orchestrator.create_subscription(
            request.price_id,
            request.customer,
            request.shipping_address,
            promotion_code=request.promotion_code,
            trial_period_days=request.trial_period_days,
            metadata=request.metadata,
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Unexpected error creating subscription")
        raise _internal_error(
            "Unable to create subscription. Please try again.", "Failed to create subscription"
        ) from e

    return SubscriptionResponse(
        subscription_id=result.subscription_id,
        customer_id=result.customer_id,
        client_secret=result.client_secret,
        status=result.status,
        amount_due=to_dollars(result.amount_due_cents),
        promotion_applied=result.promotion_applied,
    )


@router.post("/confirm-subscription", summary="Confirm an activated subscription")
def confirm_subscription(
    request: ConfirmSubscriptionRequest,
    confirmations: ConfirmationService = Depends(get_confirmation_service),
    audit: AuditLogger = Depends(get_audit),
) -> Dict[str, Any]:
    """
    Confirm a subscription

    Returns 402 with ``status: incomplete`` while the first payment is
    still settling; clients poll until it resolves.
    """
    try:
        return confirmations.confirm_subscription(
            request.subscription_id,
            request.customer_id,
            customer=request.customer,
            shipping_address=request.shipping_address,
        )
    except StorefrontError:
        raise
    except Exception as e:
        logger.exception("Unexpected error confirming subscription")
        audit.emit(
            AuditEvent.SUBSCRIPTION_CONFIRMATION_ERROR,
            Severity.HIGH,
            subscription_id=request.subscription_id,
            error_code=type(e).__name__,
        )
        raise _internal_error(
            "Failed to confirm subscription. Please contact support if you were charged.",
            "Internal server error",
        ) from e


@router.post("/verify-promo", response_model=PromoResponse, summary="Check a promotion code")
def verify_promo(
    request: VerifyPromoRequest,
    promotions: PromotionService = Depends(get_promotion_service),
) -> PromoResponse:
    lookup = promotions.verify(request.code)
    return PromoResponse(**lookup.to_dict())


@router.post("/validate-coupon", response_model=CouponResponse, summary="Check a static coupon")
def validate_coupon(
    request: ValidateCouponRequest,
    coupons: CouponBook = Depends(get_coupon_book),
) -> CouponResponse:
    result = coupons.validate(request.code, to_cents(request.subtotal))
    return CouponResponse(
        valid=result.valid,
        discount=to_dollars(result.discount_cents),
        message=result.message,
    )


@router.post("/webhook", response_model=WebhookAckResponse, summary="Processor webhook endpoint")
async def processor_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAckResponse:
    """
    Processor webhook endpoint

    Verified against the raw body. Handler failures are still
    acknowledged; only signature failures are rejected.
    """
    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    result = await run_in_threadpool(processor.process_webhook, payload, signature)

    if not result["success"]:
        logger.error(
            "Webhook processing failed",
            extra={"event_id": result.get("event_id"), "event_type": result.get("event_type")},
        )
    return WebhookAckResponse(
        received=True, event_id=result.get("event_id"), status=result.get("status")
    )


@router.get("/status", response_model=APIStatusResponse, summary="Checkout service status")
def get_api_status(
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> APIStatusResponse:
    settings = get_settings()
    return APIStatusResponse(
        status="healthy",
        service="checkout",
        version=settings.app_version,
        processor=processor.name,
        capabilities=sorted(processor.capabilities),
        supported_webhook_events=[event.value for event in WebhookEventType]
        if processor.supports(WEBHOOKS)
        else [],
    )
