"""
Payment and subscription confirmation

The browser confirms after the processor reports success; webhooks confirm
independently. Both paths meet in the ledger: a confirmation is recorded
once under its processor id, and the "order paid" effect runs once under
``paid:<reference>`` no matter which path gets there first.
"""
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.config import get_settings
from core.exceptions import (
    PaymentDeclined,
    PaymentPendingError,
    StorefrontError,
    ValidationError,
)
from core.logging import get_logger
from d0_gateway.base import SUBSCRIPTIONS, PaymentProcessor
from d0_gateway.exceptions import CapabilityNotSupportedError
from d0_gateway.types import (
    PaymentMethodSummary,
    ProcessorIntent,
    ProcessorSubscription,
    SubscriptionStatus,
)
from d1_checkout.models import Address, Customer, LineItem, Order
from d1_checkout.order import assemble_order, generate_order_number
from d1_checkout.pricing import to_dollars
from d2_payments.errors import message_for, translate
from d2_payments.quotes import OrderPricer, Quote

from .ledger import ConfirmationLedger, InMemoryConfirmationLedger
from .notifications import OrderNotifier

logger = get_logger(__name__, domain="d3")


def billing_interval(subscription: ProcessorSubscription) -> str:
    return f"{subscription.interval_count} {subscription.interval or 'week'}(s)"


class ConfirmationService:
    """Reconciles processor state into confirmed orders"""

    def __init__(
        self,
        processor: PaymentProcessor,
        pricer: OrderPricer,
        ledger: Optional[ConfirmationLedger] = None,
        audit: Optional[AuditLogger] = None,
        notifier: Optional[OrderNotifier] = None,
        settings=None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        rng: Optional[random.Random] = None,
    ):
        self.processor = processor
        self.pricer = pricer
        self.settings = settings or get_settings()
        self.ledger = ledger or InMemoryConfirmationLedger(self.settings.ledger_ttl_seconds)
        self.audit = audit or get_audit_logger()
        self.notifier = notifier or OrderNotifier()
        self.clock = clock
        self.rng = rng

    # One-time payments

    def confirm_payment(
        self,
        payment_intent_id: str,
        items: Iterable[LineItem],
        customer: Customer,
        shipping_address: Address,
        billing_address: Optional[Address] = None,
        promotion_code: Optional[str] = None,
        coupon_code: Optional[str] = None,
        special_instructions: Optional[str] = None,
        client_total_cents: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Confirm a one-time payment and return the order confirmation

        Confirming the same intent again returns the first result unchanged.
        """
        key = f"payment:{payment_intent_id}"
        existing = self.ledger.get(key)
        if existing is not None:
            logger.info("Payment already confirmed", extra={"payment_intent_id": payment_intent_id})
            return existing

        intent = self._retrieve_intent(payment_intent_id)

        if not intent.succeeded:
            self.audit.emit(
                AuditEvent.PAYMENT_FAILED,
                Severity.MEDIUM,
                payment_intent_id=intent.id,
                status=intent.status.value,
                error_code=intent.last_error_code,
                customer_email=customer.email,
            )
            raise PaymentDeclined(
                message_for(intent.last_error_code)
                if intent.last_error_code
                else "Payment was not successful",
                decline_code=intent.last_error_code,
                status=intent.status.value,
                error="Payment not completed",
            )

        quote = self._quote_for_intent(
            intent, items, customer, promotion_code, coupon_code, client_total_cents
        )
        if quote.summary.total != intent.amount_cents:
            self.audit.emit(
                AuditEvent.PAYMENT_AMOUNT_MISMATCH,
                Severity.HIGH,
                payment_intent_id=intent.id,
                expected=quote.summary.total,
                received=intent.amount_cents,
                customer_email=customer.email,
            )
            raise ValidationError(
                "Payment amount does not match order total",
                field="amount",
                expected=quote.summary.total,
                received=intent.amount_cents,
            )

        now = self.clock()
        order_number = intent.metadata.get("order_reference") or generate_order_number(
            self.settings.payment_order_prefix, now, self.rng
        )
        order = assemble_order(
            customer,
            shipping_address,
            quote.items,
            quote.summary,
            special_instructions=special_instructions,
            billing_address=billing_address,
            coupon_code=quote.discount_code,
            now=now,
            rng=self.rng,
        )
        order = order.model_copy(update={"order_number": order_number}).with_reference(
            self.processor.name, intent.id
        )

        payment_method = intent.payment_method or PaymentMethodSummary()
        response = {
            "success": True,
            "orderId": order.order_number,
            "paymentIntentId": intent.id,
            "amount": to_dollars(intent.amount_cents),
            "currency": intent.currency.upper(),
            "paymentMethod": payment_method.to_dict(),
            "order": order.to_response(),
        }

        claimed, stored = self.ledger.claim(key, response)
        if not claimed:
            logger.info("Lost confirmation race, returning stored result", extra={"payment_intent_id": intent.id})
            return stored

        self.audit.emit(
            AuditEvent.PAYMENT_COMPLETED,
            payment_intent_id=intent.id,
            order_id=order.order_number,
            amount=intent.amount_cents,
            currency=intent.currency.upper(),
            status=intent.status.value,
            payment_brand=payment_method.brand,
            last4=payment_method.last4,
            customer_email=customer.email,
            item_count=len(order.items),
        )
        self.settle_payment(intent.id, "confirmation", order=order)
        return response

    def _quote_for_intent(
        self,
        intent: ProcessorIntent,
        items: Iterable[LineItem],
        customer: Customer,
        promotion_code: Optional[str],
        coupon_code: Optional[str],
        client_total_cents: Optional[int],
    ) -> Quote:
        """Price the cart with the discount recorded on the intent when it was created"""
        recorded = intent.metadata.get("discount")
        if recorded is not None and recorded.isdigit():
            return self.pricer.reprice(
                items,
                int(recorded),
                intent.metadata.get("promotion_code") or intent.metadata.get("coupon_code"),
            )
        return self.pricer.quote(
            items,
            promotion_code=promotion_code,
            coupon_code=coupon_code,
            client_total_cents=client_total_cents,
            context={"customer_email": customer.email, "payment_intent_id": intent.id},
        )

    def _retrieve_intent(self, payment_intent_id: str) -> ProcessorIntent:
        try:
            return self.processor.confirm_intent(payment_intent_id)
        except StorefrontError as e:
            error = translate(e)
            logger.error(
                "Payment confirmation error",
                extra={"payment_intent_id": payment_intent_id, "error_code": error.error_code},
            )
            self.audit.emit(
                AuditEvent.PAYMENT_CONFIRMATION_ERROR,
                Severity.MEDIUM,
                payment_intent_id=payment_intent_id,
                error_code=error.error_code,
            )
            if error is e:
                raise
            raise error from e

    # Subscriptions

    def confirm_subscription(
        self,
        subscription_id: str,
        customer_id: str,
        customer: Optional[Customer] = None,
        shipping_address: Optional[Address] = None,
    ) -> Dict[str, Any]:
        """
        Confirm a subscription once its first payment has gone through

        ``incomplete`` means the first payment is still settling and the
        caller should poll again; any other inactive status is final.
        """
        key = f"subscription:{subscription_id}"
        existing = self.ledger.get(key)
        if existing is not None:
            self._check_owner(existing.get("customerId"), customer_id)
            return existing

        subscription = self._retrieve_subscription(subscription_id)
        customer_email = customer.email if customer else None

        self._check_owner(subscription.customer_id, customer_id)

        if not subscription.status.is_active:
            self.audit.emit(
                AuditEvent.SUBSCRIPTION_NOT_ACTIVE,
                Severity.MEDIUM,
                subscription_id=subscription.id,
                status=subscription.status.value,
                customer_email=customer_email,
            )
            if subscription.status == SubscriptionStatus.INCOMPLETE:
                raise PaymentPendingError(
                    "Subscription payment is still processing", status=subscription.status.value
                )
            raise PaymentDeclined(
                "Subscription payment was not successful",
                decline_code="SUBSCRIPTION_NOT_ACTIVE",
                status=subscription.status.value,
                error="Subscription not activated",
            )

        now = self.clock()
        order_id = generate_order_number(self.settings.subscription_order_prefix, now, self.rng)
        payment_method = subscription.payment_method or PaymentMethodSummary()
        amount_cents = subscription.amount_cents or 0
        currency = (subscription.currency or self.settings.currency).upper()
        period_end = (
            subscription.current_period_end.isoformat() if subscription.current_period_end else None
        )

        response = {
            "success": True,
            "orderId": order_id,
            "subscriptionId": subscription.id,
            "customerId": subscription.customer_id or customer_id,
            "status": subscription.status.value,
            "amount": to_dollars(amount_cents),
            "currency": currency,
            "billingInterval": billing_interval(subscription),
            "currentPeriodEnd": period_end,
            "paymentMethod": payment_method.to_dict(),
            "subscription": {
                "id": subscription.id,
                "status": subscription.status.value,
                "customer": customer.model_dump(by_alias=True) if customer else None,
                "shippingAddress": shipping_address.model_dump(by_alias=True)
                if shipping_address
                else None,
                "currentPeriodEnd": period_end,
            },
        }

        claimed, stored = self.ledger.claim(key, response)
        if not claimed:
            return stored

        self.audit.emit(
            AuditEvent.SUBSCRIPTION_ACTIVATED,
            subscription_id=subscription.id,
            customer_id=response["customerId"],
            order_id=order_id,
            amount=amount_cents,
            currency=currency,
            interval=response["billingInterval"],
            status=subscription.status.value,
            payment_brand=payment_method.brand,
            last4=payment_method.last4,
            customer_email=customer_email,
        )
        self.settle_payment(
            subscription.id,
            "subscription_confirmation",
            details={"order_id": order_id, "amount": amount_cents},
        )
        return response

    @staticmethod
    def _check_owner(owner_id: Optional[str], customer_id: str) -> None:
        if owner_id and owner_id != customer_id:
            raise ValidationError("Subscription does not belong to this customer", field="customerId")

    def _retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        try:
            if not self.processor.supports(SUBSCRIPTIONS):
                raise CapabilityNotSupportedError(self.processor.name, SUBSCRIPTIONS)
            return self.processor.retrieve_subscription(subscription_id)
        except StorefrontError as e:
            error = translate(e)
            logger.error(
                "Subscription confirmation error",
                extra={"subscription_id": subscription_id, "error_code": error.error_code},
            )
            self.audit.emit(
                AuditEvent.SUBSCRIPTION_CONFIRMATION_ERROR,
                Severity.MEDIUM,
                subscription_id=subscription_id,
                error_code=error.error_code,
            )
            if error is e:
                raise
            raise error from e

    # Settlement

    def settle_payment(
        self,
        reference: str,
        source: str,
        order: Optional[Order] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Run the "order paid" effect for a processor reference

        Returns False when the reference was already settled.
        """
        record = {
            "reference": reference,
            "source": source,
            "order_id": order.order_number if order else (details or {}).get("order_id"),
            "settled_at": self.clock().isoformat(),
        }
        claimed, stored = self.ledger.claim(f"paid:{reference}", record)
        if not claimed:
            logger.info(
                "Order already settled",
                extra={"reference": reference, "source": source, "settled_by": stored.get("source")},
            )
            return False

        self.audit.emit(
            AuditEvent.ORDER_PAID,
            reference=reference,
            source=source,
            order_id=record["order_id"],
            customer_email=order.customer.email if order else None,
            amount=order.summary.total if order else (details or {}).get("amount"),
        )
        self.notifier.notify_order_paid(reference, source, order=order, details=details)
        return True
