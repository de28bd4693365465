"""
Subscription orchestration

customer -> promotion (best-effort) -> incomplete subscription -> first
invoice. Once the subscription exists processor-side, any failure to
finish the invoice step is fatal and reported as a dangling subscription.
"""
import json
from dataclasses import dataclass
from typing import Dict, Optional

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.exceptions import StorefrontError, SubscriptionSetupError
from core.logging import get_logger
from d0_gateway.base import SUBSCRIPTIONS, PaymentProcessor
from d0_gateway.exceptions import CapabilityNotSupportedError
from d0_gateway.types import ProcessorSubscription, SubscriptionStatus
from d1_checkout.models import Address, Customer

from .errors import translate
from .promotions import PromotionService

logger = get_logger(__name__, domain="d2")


@dataclass
class SubscriptionResult:
    subscription_id: str
    customer_id: str
    client_secret: Optional[str]
    status: str
    amount_due_cents: int
    promotion_applied: bool = False


class SubscriptionOrchestrator:
    """Creates recurring billing through a processor with the subscription capability"""

    def __init__(
        self,
        processor: PaymentProcessor,
        promotions: PromotionService,
        audit: Optional[AuditLogger] = None,
    ):
        self.processor = processor
        self.promotions = promotions
        self.audit = audit or get_audit_logger()

    def create_subscription(
        self,
        price_id: str,
        customer: Customer,
        shipping_address: Address,
        promotion_code: Optional[str] = None,
        trial_period_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> SubscriptionResult:
        try:
            if not self.processor.supports(SUBSCRIPTIONS):
                raise CapabilityNotSupportedError(self.processor.name, SUBSCRIPTIONS)

            processor_customer = self.processor.find_or_create_customer(
                customer.email, customer.full_name, shipping_address.model_dump()
            )
            promotion = self.promotions.resolve(
                promotion_code,
                context={"customer_id": processor_customer.id, "price_id": price_id},
            )
            subscription = self.processor.create_subscription(
                processor_customer.id,
                price_id,
                promotion=promotion,
                trial_period_days=trial_period_days,
                metadata={
                    **(metadata or {}),
                    "customer_name": customer.full_name,
                    "shipping_address": json.dumps(shipping_address.model_dump(by_alias=True)),
                },
            )
        except StorefrontError as e:
            error = translate(e)
            self.audit.emit(
                AuditEvent.SUBSCRIPTION_CREATION_FAILED,
                Severity.MEDIUM,
                price_id=price_id,
                error_code=error.error_code,
                customer_email=customer.email,
            )
            if error is e:
                raise
            raise error from e

        result = self._finish_first_invoice(subscription, customer)
        result.promotion_applied = promotion is not None

        self.audit.emit(
            AuditEvent.SUBSCRIPTION_CREATED,
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            price_id=price_id,
            customer_email=customer.email,
            status=result.status,
            amount_due=result.amount_due_cents,
            promotion_code=promotion.code if promotion else None,
        )
        return result

    def _finish_first_invoice(
        self, subscription: ProcessorSubscription, customer: Customer
    ) -> SubscriptionResult:
        try:
            if not subscription.latest_invoice_id:
                raise SubscriptionSetupError(
                    "Subscription was created without an invoice", subscription.id
                )

            invoice = self.processor.retrieve_invoice(subscription.latest_invoice_id)

            if invoice.amount_due_cents == 0:
                if not invoice.paid:
                    invoice = self.processor.pay_invoice(invoice.id)
                status = (
                    subscription.status.value
                    if subscription.status == SubscriptionStatus.TRIALING
                    else SubscriptionStatus.ACTIVE.value
                )
                return SubscriptionResult(
                    subscription_id=subscription.id,
                    customer_id=subscription.customer_id,
                    client_secret=None,
                    status=status,
                    amount_due_cents=0,
                )

            client_secret = invoice.client_secret
            if not client_secret:
                intent = self.processor.create_invoice_payment_intent(
                    invoice,
                    subscription.customer_id,
                    metadata={"subscription_id": subscription.id},
                )
                client_secret = intent.client_secret
            if not client_secret:
                raise SubscriptionSetupError(
                    "Failed to create payment intent for subscription", subscription.id
                )

        except StorefrontError as e:
            logger.error(
                "Subscription left incomplete after creation",
                extra={"subscription_id": subscription.id, "error_code": e.error_code},
            )
            self.audit.emit(
                AuditEvent.SUBSCRIPTION_SETUP_INCOMPLETE,
                Severity.HIGH,
                subscription_id=subscription.id,
                customer_id=subscription.customer_id,
                customer_email=customer.email,
                error_code=e.error_code,
            )
            if isinstance(e, SubscriptionSetupError):
                raise
            raise SubscriptionSetupError(
                "Unable to create subscription. Please try again.", subscription.id
            ) from e

        return SubscriptionResult(
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            client_secret=client_secret,
            status=subscription.status.value,
            amount_due_cents=invoice.amount_due_cents,
        )
