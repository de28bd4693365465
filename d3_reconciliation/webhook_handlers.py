"""
Webhook event handlers

One handler class per processor object type. Handlers audit every event
they see; only successful payments and first subscription invoices feed
the "order paid" settlement.
"""
from typing import Any, Dict, Optional

from core.audit import AuditEvent, AuditLogger, Severity
from core.logging import get_logger

from .confirmation import ConfirmationService
from .webhooks import WebhookStatus, _id_of, extract_metadata_from_event

logger = get_logger(__name__, domain="d3")


class BaseWebhookHandler:
    """Base class for webhook event handlers"""

    def __init__(self, confirmations: ConfirmationService, audit: AuditLogger):
        self.confirmations = confirmations
        self.audit = audit

    def _object(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
        return event_data.get("object", {}) or {}

    def _currency(self, obj: Dict[str, Any]) -> Optional[str]:
        currency = obj.get("currency")
        return currency.upper() if currency else None

    def _completed(self, **data) -> Dict[str, Any]:
        return {"status": WebhookStatus.COMPLETED.value, "data": data}


class PaymentIntentHandler(BaseWebhookHandler):
    """Handler for payment intent events"""

    def _is_invoice_payment(self, intent: Dict[str, Any]) -> bool:
        metadata = intent.get("metadata") or {}
        return bool(intent.get("invoice") or metadata.get("invoice_id") or metadata.get("subscription_id"))

    def handle_payment_succeeded(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = self._object(event_data)
        intent_id = intent.get("id")
        metadata = extract_metadata_from_event(event_data)

        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_SUCCEEDED,
            event_id=event_id,
            payment_intent_id=intent_id,
            amount=intent.get("amount"),
            currency=self._currency(intent),
            customer_email=intent.get("receipt_email") or metadata.get("customer_email"),
            order_reference=metadata.get("order_reference"),
        )

        if self._is_invoice_payment(intent):
            # Settled through the invoice events under the subscription id
            return {
                "status": WebhookStatus.IGNORED.value,
                "reason": "Invoice payment",
                "data": {"payment_intent_id": intent_id},
            }

        settled = self.confirmations.settle_payment(
            intent_id,
            "webhook",
            details={
                "order_id": metadata.get("order_reference"),
                "amount": intent.get("amount"),
                "customer_email": intent.get("receipt_email") or metadata.get("customer_email"),
            },
        )
        return self._completed(payment_intent_id=intent_id, settled=settled)

    def handle_payment_failed(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = self._object(event_data)
        error = intent.get("last_payment_error") or {}
        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_FAILED,
            Severity.MEDIUM,
            event_id=event_id,
            payment_intent_id=intent.get("id"),
            amount=intent.get("amount"),
            currency=self._currency(intent),
            error_code=error.get("code"),
            decline_code=error.get("decline_code"),
        )
        return self._completed(payment_intent_id=intent.get("id"))

    def handle_payment_canceled(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = self._object(event_data)
        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_CANCELED,
            event_id=event_id,
            payment_intent_id=intent.get("id"),
            amount=intent.get("amount"),
            currency=self._currency(intent),
            cancellation_reason=intent.get("cancellation_reason"),
        )
        return self._completed(payment_intent_id=intent.get("id"))

    def handle_requires_action(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        intent = self._object(event_data)
        self.audit.emit(
            AuditEvent.PAYMENT_INTENT_REQUIRES_ACTION,
            event_id=event_id,
            payment_intent_id=intent.get("id"),
            amount=intent.get("amount"),
            currency=self._currency(intent),
        )
        return self._completed(payment_intent_id=intent.get("id"))


class ChargeHandler(BaseWebhookHandler):
    """Handler for charge refunds and disputes"""

    def handle_refunded(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        charge = self._object(event_data)
        refund_status = "full" if charge.get("refunded") else "partial"
        self.audit.emit(
            AuditEvent.CHARGE_REFUNDED,
            event_id=event_id,
            charge_id=charge.get("id"),
            payment_intent_id=_id_of(charge.get("payment_intent")),
            amount_refunded=charge.get("amount_refunded"),
            currency=self._currency(charge),
            refund_status=refund_status,
        )
        return self._completed(charge_id=charge.get("id"), refund_status=refund_status)

    def handle_dispute_created(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        dispute = self._object(event_data)
        logger.warning(
            "Payment dispute created",
            extra={"dispute_id": dispute.get("id"), "charge_id": _id_of(dispute.get("charge"))},
        )
        self.audit.emit(
            AuditEvent.DISPUTE_CREATED,
            Severity.HIGH,
            event_id=event_id,
            dispute_id=dispute.get("id"),
            charge_id=_id_of(dispute.get("charge")),
            amount=dispute.get("amount"),
            currency=self._currency(dispute),
            reason=dispute.get("reason"),
            status=dispute.get("status"),
        )
        return self._completed(dispute_id=dispute.get("id"))


class SubscriptionHandler(BaseWebhookHandler):
    """Handler for subscription lifecycle events"""

    _EVENTS = {
        "customer.subscription.created": (AuditEvent.SUBSCRIPTION_CREATED, Severity.LOW),
        "customer.subscription.updated": (AuditEvent.SUBSCRIPTION_UPDATED, Severity.LOW),
        "customer.subscription.deleted": (AuditEvent.SUBSCRIPTION_DELETED, Severity.MEDIUM),
    }

    def handle_subscription_event(
        self, event_type: str, event_data: Dict[str, Any], event_id: str
    ) -> Dict[str, Any]:
        subscription = self._object(event_data)
        items = (subscription.get("items") or {}).get("data") or []
        price = (items[0].get("price") or {}) if items else {}
        audit_event, severity = self._EVENTS[event_type]

        self.audit.emit(
            audit_event,
            severity,
            event_id=event_id,
            subscription_id=subscription.get("id"),
            customer_id=_id_of(subscription.get("customer")),
            status=subscription.get("status"),
            price_id=price.get("id"),
            cancel_at_period_end=subscription.get("cancel_at_period_end"),
            canceled_at=subscription.get("canceled_at"),
        )
        return self._completed(
            subscription_id=subscription.get("id"), status=subscription.get("status")
        )


class InvoiceHandler(BaseWebhookHandler):
    """Handler for subscription invoice events"""

    def _subscription_id(self, invoice: Dict[str, Any]) -> Optional[str]:
        subscription = _id_of(invoice.get("subscription"))
        if subscription:
            return subscription
        # Newer API versions nest the subscription under the invoice parent
        parent = invoice.get("parent") or {}
        details = parent.get("subscription_details") or {}
        return _id_of(details.get("subscription"))

    def handle_payment_succeeded(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        invoice = self._object(event_data)
        subscription_id = self._subscription_id(invoice)
        billing_reason = invoice.get("billing_reason")

        self.audit.emit(
            AuditEvent.INVOICE_PAYMENT_SUCCEEDED,
            event_id=event_id,
            invoice_id=invoice.get("id"),
            subscription_id=subscription_id,
            customer_id=_id_of(invoice.get("customer")),
            amount=invoice.get("amount_paid"),
            currency=self._currency(invoice),
            billing_reason=billing_reason,
        )

        # The first invoice settles under the subscription id, the same
        # reference subscription confirmation uses; renewals are new orders
        if billing_reason == "subscription_create" and subscription_id:
            reference = subscription_id
        else:
            reference = invoice.get("id")

        settled = self.confirmations.settle_payment(
            reference,
            "webhook",
            details={
                "amount": invoice.get("amount_paid"),
                "invoice_id": invoice.get("id"),
                "billing_reason": billing_reason,
            },
        )
        return self._completed(invoice_id=invoice.get("id"), reference=reference, settled=settled)

    def handle_payment_failed(self, event_data: Dict[str, Any], event_id: str) -> Dict[str, Any]:
        invoice = self._object(event_data)
        self.audit.emit(
            AuditEvent.INVOICE_PAYMENT_FAILED,
            Severity.MEDIUM,
            event_id=event_id,
            invoice_id=invoice.get("id"),
            subscription_id=self._subscription_id(invoice),
            customer_id=_id_of(invoice.get("customer")),
            amount=invoice.get("amount_due"),
            currency=self._currency(invoice),
            attempt_count=invoice.get("attempt_count"),
        )
        return self._completed(invoice_id=invoice.get("id"))
