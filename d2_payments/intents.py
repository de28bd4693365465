"""
One-time payment orchestration

Prices the cart server-side, then either hands the browser a client secret
to finish the payment, charges synchronously for tokenize-and-charge
processors, or confirms a zero-total order without calling the processor.
"""
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.config import get_settings
from core.exceptions import PaymentDeclined, StorefrontError, ValidationError
from core.logging import get_logger
from d0_gateway.base import PaymentProcessor
from d0_gateway.types import IntentRequest, ProcessorIntent
from d1_checkout.models import Address, Customer, LineItem, Order
from d1_checkout.order import assemble_order, generate_order_number

from .errors import message_for, translate
from .quotes import OrderPricer, Quote

logger = get_logger(__name__, domain="d2")

# Processor metadata values are capped at 500 characters
_METADATA_VALUE_LIMIT = 500

SettleHook = Callable[[str, str, Order], Any]


@dataclass
class PaymentIntentResult:
    payment_intent_id: Optional[str]
    client_secret: Optional[str]
    amount_cents: int
    currency: str
    status: str
    order_reference: str
    free_order: bool = False
    order: Optional[Order] = None


def build_payment_metadata(
    quote: Quote,
    customer: Customer,
    order_reference: str,
    special_instructions: Optional[str] = None,
) -> Dict[str, str]:
    """Metadata echoed back on the intent for reconciliation"""
    summary = quote.summary
    metadata = {
        "order_type": "wellness_shots",
        "order_reference": order_reference,
        "item_count": str(len(quote.items)),
        "subtotal": str(summary.subtotal),
        "tax": str(summary.tax),
        "shipping_cost": str(summary.shipping),
        "discount": str(summary.discount),
        "total": str(summary.total),
        "customer_name": customer.full_name,
        "customer_email": customer.email,
    }
    if quote.promotion:
        metadata["promotion_code"] = quote.promotion.code
    if quote.coupon_code:
        metadata["coupon_code"] = quote.coupon_code
    if special_instructions:
        metadata["special_instructions"] = special_instructions[:_METADATA_VALUE_LIMIT]
    return metadata


class PaymentOrchestrator:
    """Creates one-time payments through the configured processor"""

    def __init__(
        self,
        processor: PaymentProcessor,
        pricer: OrderPricer,
        audit: Optional[AuditLogger] = None,
        settle: Optional[SettleHook] = None,
        settings=None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        rng: Optional[random.Random] = None,
    ):
        self.processor = processor
        self.pricer = pricer
        self.audit = audit or get_audit_logger()
        self.settle = settle
        self.settings = settings or get_settings()
        self.clock = clock
        self.rng = rng

    def create_payment_intent(
        self,
        items: Iterable[LineItem],
        customer: Customer,
        shipping_address: Optional[Address] = None,
        billing_address: Optional[Address] = None,
        promotion_code: Optional[str] = None,
        coupon_code: Optional[str] = None,
        special_instructions: Optional[str] = None,
        payment_token: Optional[str] = None,
        client_total_cents: Optional[int] = None,
    ) -> PaymentIntentResult:
        currency = self.settings.currency
        try:
            quote = self.pricer.quote(
                items,
                promotion_code=promotion_code,
                coupon_code=coupon_code,
                client_total_cents=client_total_cents,
                context={"customer_email": customer.email},
            )
            order_reference = generate_order_number(
                self.settings.order_number_prefix, self.clock(), self.rng
            )

            if quote.summary.total == 0:
                return self._confirm_free_order(
                    quote, customer, shipping_address, billing_address, special_instructions, order_reference
                )

            request = IntentRequest(
                amount_cents=quote.summary.total,
                currency=currency,
                customer_email=customer.email,
                customer_name=customer.full_name,
                payment_token=payment_token,
                description=f"Order for {len(quote.items)} item(s) - {customer.full_name}",
                metadata=build_payment_metadata(quote, customer, order_reference, special_instructions),
                shipping=shipping_address.model_dump() if shipping_address else None,
                idempotency_key=f"intent-{order_reference}",
            )

            if self.processor.synchronous_charge:
                return self._charge(
                    request, quote, customer, shipping_address, billing_address, special_instructions, order_reference
                )

            intent = self.processor.create_intent(request)

        except StorefrontError as e:
            error = translate(e)
            self._audit_failure(error, customer)
            if error is e:
                raise
            raise error from e

        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_CREATED,
            payment_intent_id=intent.id,
            processor=self.processor.name,
            amount=intent.amount_cents,
            currency=currency.upper(),
            customer_email=customer.email,
            item_count=len(quote.items),
            order_reference=order_reference,
        )
        return PaymentIntentResult(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=intent.amount_cents,
            currency=currency,
            status=intent.status.value,
            order_reference=order_reference,
        )

    def _audit_failure(self, error: StorefrontError, customer: Customer) -> None:
        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_FAILED,
            Severity.MEDIUM,
            processor=self.processor.name,
            error_code=error.error_code,
            http_status=error.status_code,
            customer_email=customer.email,
        )

    def _assemble(
        self,
        quote: Quote,
        customer: Customer,
        shipping_address: Address,
        billing_address: Optional[Address],
        special_instructions: Optional[str],
        order_reference: str,
    ) -> Order:
        order = assemble_order(
            customer,
            shipping_address,
            quote.items,
            quote.summary,
            special_instructions=special_instructions,
            billing_address=billing_address,
            coupon_code=quote.discount_code,
            now=self.clock(),
            rng=self.rng,
        )
        return order.model_copy(update={"order_number": order_reference})

    def _confirm_free_order(
        self,
        quote: Quote,
        customer: Customer,
        shipping_address: Optional[Address],
        billing_address: Optional[Address],
        special_instructions: Optional[str],
        order_reference: str,
    ) -> PaymentIntentResult:
        """Zero total: no processor call, but the same validation and audit trail"""
        if shipping_address is None:
            raise ValidationError("Shipping address is required", field="shippingAddress")

        order = self._assemble(
            quote, customer, shipping_address, billing_address, special_instructions, order_reference
        ).with_reference("none", order_reference)

        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_CREATED,
            processor="none",
            amount=0,
            currency=self.settings.currency.upper(),
            customer_email=customer.email,
            item_count=len(quote.items),
            order_reference=order_reference,
            free_order=True,
        )
        self.audit.emit(
            AuditEvent.FREE_ORDER_CONFIRMED,
            order_id=order.order_number,
            customer_email=customer.email,
            discount=quote.summary.discount,
            promotion_code=quote.discount_code,
        )
        logger.info("Free order confirmed", extra={"order_id": order.order_number})

        if self.settle:
            self.settle(f"free:{order_reference}", "free_order", order)

        return PaymentIntentResult(
            payment_intent_id=None,
            client_secret=None,
            amount_cents=0,
            currency=self.settings.currency,
            status="succeeded",
            order_reference=order_reference,
            free_order=True,
            order=order,
        )

    def _charge(
        self,
        request: IntentRequest,
        quote: Quote,
        customer: Customer,
        shipping_address: Optional[Address],
        billing_address: Optional[Address],
        special_instructions: Optional[str],
        order_reference: str,
    ) -> PaymentIntentResult:
        """Tokenize-and-charge flow for synchronous processors"""
        if not request.payment_token:
            raise ValidationError("Payment token is required", field="paymentToken")
        if shipping_address is None:
            raise ValidationError("Shipping address is required", field="shippingAddress")

        charge: ProcessorIntent = self.processor.create_intent(request)
        if not charge.succeeded:
            self.audit.emit(
                AuditEvent.PAYMENT_FAILED,
                Severity.MEDIUM,
                payment_intent_id=charge.id,
                processor=self.processor.name,
                status=charge.status.value,
                error_code=charge.last_error_code,
                customer_email=customer.email,
            )
            raise PaymentDeclined(
                message_for(charge.last_error_code),
                decline_code=charge.last_error_code,
                status=charge.status.value,
                error="Payment not completed",
            )

        order = self._assemble(
            quote, customer, shipping_address, billing_address, special_instructions, order_reference
        ).with_reference(self.processor.name, charge.id)

        try:
            self.processor.record_order(charge, order)
        except StorefrontError as e:
            # The charge already succeeded; the processor-side order is a mirror
            logger.error(
                "Failed to record order with processor",
                extra={"charge_id": charge.id, "error_code": e.error_code},
            )

        self.audit.emit(
            AuditEvent.PAYMENT_COMPLETED,
            payment_intent_id=charge.id,
            order_id=order.order_number,
            processor=self.processor.name,
            amount=charge.amount_cents,
            currency=charge.currency.upper(),
            payment_brand=charge.payment_method.brand if charge.payment_method else None,
            last4=charge.payment_method.last4 if charge.payment_method else None,
            customer_email=customer.email,
        )
        if self.settle:
            self.settle(charge.id, "charge", order)

        return PaymentIntentResult(
            payment_intent_id=charge.id,
            client_secret=None,
            amount_cents=charge.amount_cents,
            currency=charge.currency,
            status=charge.status.value,
            order_reference=order_reference,
            order=order,
        )
