"""
Processor webhook processing

Signature verification against the raw request body, event age and
duplicate checks, and routing to the event handlers. Deliveries are
at-least-once; the ledger claim on ``event:<id>`` makes handling
at-most-once per event id.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.config import get_settings
from core.exceptions import SecurityViolation, StorefrontError
from core.logging import get_logger
from d0_gateway.base import WEBHOOKS, PaymentProcessor
from d0_gateway.exceptions import CapabilityNotSupportedError, SignatureVerificationError
from d0_gateway.types import ProcessorEvent
from d2_payments.errors import translate

from .confirmation import ConfirmationService
from .ledger import ConfirmationLedger

logger = get_logger(__name__, domain="d3")


class WebhookEventType(Enum):
    """Processor webhook event types we handle"""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    PAYMENT_INTENT_REQUIRES_ACTION = "payment_intent.requires_action"
    CHARGE_REFUNDED = "charge.refunded"
    CHARGE_DISPUTE_CREATED = "charge.dispute.created"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class WebhookStatus(Enum):
    """Webhook processing status"""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


class WebhookProcessor:
    """Verifies, de-duplicates and dispatches processor webhook events"""

    def __init__(
        self,
        processor: PaymentProcessor,
        confirmations: ConfirmationService,
        ledger: Optional[ConfirmationLedger] = None,
        audit: Optional[AuditLogger] = None,
        max_event_age_hours: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.processor = processor
        self.confirmations = confirmations
        self.ledger = ledger or confirmations.ledger
        self.audit = audit or get_audit_logger()
        self.max_event_age_hours = (
            max_event_age_hours
            if max_event_age_hours is not None
            else get_settings().webhook_max_event_age_hours
        )
        self.clock = clock

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        """Verify the signature and parse the event"""
        try:
            if not self.processor.supports(WEBHOOKS):
                raise CapabilityNotSupportedError(self.processor.name, WEBHOOKS)
            return self.processor.construct_event(payload, signature)
        except SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed", extra={"reason": e.message})
            raise SecurityViolation(
                "Webhook signature verification failed", code="INVALID_SIGNATURE"
            ) from e
        except StorefrontError as e:
            error = translate(e)
            if error is e:
                raise
            raise error from e

    def is_event_too_old(self, event_timestamp: int) -> bool:
        """Check if event is too old to process"""
        event_time = datetime.fromtimestamp(event_timestamp, tz=timezone.utc)
        return self.clock() - event_time > timedelta(hours=self.max_event_age_hours)

    def process_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify and handle one webhook delivery

        ``payload`` must be the unmodified request body; re-serialized JSON
        never verifies. Handler failures are reported in the result, not
        raised, so the delivery is still acknowledged.
        """
        if not isinstance(payload, (bytes, bytearray)):
            raise TypeError("Webhook payload must be the raw request body bytes")

        event = self.construct_event(bytes(payload), signature)

        self.audit.emit(
            AuditEvent.WEBHOOK_RECEIVED,
            event_id=event.id,
            event_type=event.type,
            livemode=event.livemode,
        )

        if self.is_event_too_old(event.created):
            logger.warning("Event is too old, ignoring", extra={"event_id": event.id})
            return {
                "success": True,
                "event_id": event.id,
                "event_type": event.type,
                "status": WebhookStatus.IGNORED.value,
                "reason": "Event too old",
            }

        key = f"event:{event.id}"
        claimed, _ = self.ledger.claim(
            key,
            {
                "event_type": event.type,
                "status": WebhookStatus.PROCESSING.value,
                "received_at": self.clock().isoformat(),
            },
        )
        if not claimed:
            logger.info("Duplicate event detected", extra={"event_id": event.id})
            self.audit.emit(AuditEvent.WEBHOOK_DUPLICATE, event_id=event.id, event_type=event.type)
            return {
                "success": True,
                "event_id": event.id,
                "event_type": event.type,
                "status": WebhookStatus.IGNORED.value,
                "reason": "Duplicate event",
            }

        try:
            result = self._process_event(event)
        except Exception as e:
            # Let a redelivery or manual replay handle the event again
            self.ledger.release(key)
            logger.error(
                "Error processing webhook event",
                extra={"event_id": event.id, "event_type": event.type, "error": type(e).__name__},
                exc_info=True,
            )
            self.audit.emit(
                AuditEvent.WEBHOOK_HANDLER_FAILED,
                Severity.HIGH,
                event_id=event.id,
                event_type=event.type,
                error=type(e).__name__,
            )
            return {
                "success": False,
                "event_id": event.id,
                "event_type": event.type,
                "status": WebhookStatus.FAILED.value,
                "error": "Webhook handler failed",
            }

        return {
            "success": True,
            "event_id": event.id,
            "event_type": event.type,
            "status": result.get("status", WebhookStatus.COMPLETED.value),
            "data": result.get("data", {}),
            "reason": result.get("reason"),
        }

    def _process_event(self, event: ProcessorEvent) -> Dict[str, Any]:
        """Route an event to its handler"""
        from .webhook_handlers import (
            ChargeHandler,
            InvoiceHandler,
            PaymentIntentHandler,
            SubscriptionHandler,
        )

        event_type = event.type
        args = (self.confirmations, self.audit)

        if event_type == WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value:
            return PaymentIntentHandler(*args).handle_payment_succeeded(event.data, event.id)
        elif event_type == WebhookEventType.PAYMENT_INTENT_FAILED.value:
            return PaymentIntentHandler(*args).handle_payment_failed(event.data, event.id)
        elif event_type == WebhookEventType.PAYMENT_INTENT_CANCELED.value:
            return PaymentIntentHandler(*args).handle_payment_canceled(event.data, event.id)
        elif event_type == WebhookEventType.PAYMENT_INTENT_REQUIRES_ACTION.value:
            return PaymentIntentHandler(*args).handle_requires_action(event.data, event.id)
        elif event_type == WebhookEventType.CHARGE_REFUNDED.value:
            return ChargeHandler(*args).handle_refunded(event.data, event.id)
        elif event_type == WebhookEventType.CHARGE_DISPUTE_CREATED.value:
            return ChargeHandler(*args).handle_dispute_created(event.data, event.id)
        elif event_type in (
            WebhookEventType.SUBSCRIPTION_CREATED.value,
            WebhookEventType.SUBSCRIPTION_UPDATED.value,
            WebhookEventType.SUBSCRIPTION_DELETED.value,
        ):
            return SubscriptionHandler(*args).handle_subscription_event(event_type, event.data, event.id)
        elif event_type == WebhookEventType.INVOICE_PAYMENT_SUCCEEDED.value:
            return InvoiceHandler(*args).handle_payment_succeeded(event.data, event.id)
        elif event_type == WebhookEventType.INVOICE_PAYMENT_FAILED.value:
            return InvoiceHandler(*args).handle_payment_failed(event.data, event.id)

        logger.info("Unhandled event type", extra={"event_type": event_type})
        return {
            "status": WebhookStatus.IGNORED.value,
            "reason": f"Unhandled event type: {event_type}",
        }

    def get_supported_events(self) -> List[str]:
        """Get list of supported webhook event types"""
        return [event.value for event in WebhookEventType]


def extract_metadata_from_event(event_data: Dict[str, Any]) -> Dict[str, Any]:
    """Useful identifiers and metadata from an event object"""
    obj = event_data.get("object", {}) or {}
    metadata = dict(obj.get("metadata") or {})
    metadata.update(
        {
            "processor_id": obj.get("id"),
            "processor_object_type": obj.get("object"),
            "currency": obj.get("currency"),
            "customer": _id_of(obj.get("customer")),
            "payment_intent": _id_of(obj.get("payment_intent")),
        }
    )
    return {k: v for k, v in metadata.items() if v is not None}


def _id_of(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value
