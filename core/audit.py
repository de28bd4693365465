"""
Payment audit trail

Every payment lifecycle transition is emitted as a structured, append-only
log entry on the ``audit`` logger. Entries carry ids, amounts and statuses
only; card data never reaches this module.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from core.logging import get_logger


class AuditEvent(str, Enum):
    """Audit event names"""

    # One-time payments
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
    PAYMENT_INTENT_FAILED = "PAYMENT_INTENT_FAILED"
    FREE_ORDER_CONFIRMED = "FREE_ORDER_CONFIRMED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_AMOUNT_MISMATCH = "PAYMENT_AMOUNT_MISMATCH"
    PAYMENT_CONFIRMATION_ERROR = "PAYMENT_CONFIRMATION_ERROR"
    ORDER_PAID = "ORDER_PAID"

    # Subscriptions
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_CREATION_FAILED = "SUBSCRIPTION_CREATION_FAILED"
    SUBSCRIPTION_SETUP_INCOMPLETE = "SUBSCRIPTION_SETUP_INCOMPLETE"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SUBSCRIPTION_NOT_ACTIVE = "SUBSCRIPTION_NOT_ACTIVE"
    SUBSCRIPTION_CONFIRMATION_ERROR = "SUBSCRIPTION_CONFIRMATION_ERROR"
    PROMO_LOOKUP_FAILED = "PROMO_LOOKUP_FAILED"

    # Webhooks
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"
    WEBHOOK_DUPLICATE = "WEBHOOK_DUPLICATE"
    WEBHOOK_HANDLER_FAILED = "WEBHOOK_HANDLER_FAILED"
    PAYMENT_INTENT_SUCCEEDED = "PAYMENT_INTENT_SUCCEEDED"
    PAYMENT_INTENT_CANCELED = "PAYMENT_INTENT_CANCELED"
    PAYMENT_INTENT_REQUIRES_ACTION = "PAYMENT_INTENT_REQUIRES_ACTION"
    CHARGE_REFUNDED = "CHARGE_REFUNDED"
    DISPUTE_CREATED = "DISPUTE_CREATED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_DELETED = "SUBSCRIPTION_DELETED"
    INVOICE_PAYMENT_SUCCEEDED = "INVOICE_PAYMENT_SUCCEEDED"
    INVOICE_PAYMENT_FAILED = "INVOICE_PAYMENT_FAILED"

    # Ingress protection
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SECURITY_VIOLATION = "SECURITY_VIOLATION"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


_LEVELS = {
    Severity.LOW: "info",
    Severity.MEDIUM: "warning",
    Severity.HIGH: "error",
}

# Field names that must never be written to the audit trail
_FORBIDDEN_FIELDS = {"card_number", "cvc", "cvv", "exp_month", "exp_year", "client_secret"}

# LogRecord attributes cannot be passed through `extra`
_RESERVED_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class AuditLogger:
    """Emits audit entries and optionally keeps them in memory"""

    def __init__(self, keep_history: bool = False):
        self.logger = get_logger("audit", domain="audit")
        self.keep_history = keep_history
        self.history: List[Dict[str, Any]] = []

    def emit(
        self,
        event: AuditEvent,
        severity: Severity = Severity.LOW,
        message: Optional[str] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        """Write one audit entry and return it"""
        entry = {
            (f"audit_{key}" if key in _RESERVED_FIELDS else key): value
            for key, value in fields.items()
            if value is not None and key not in _FORBIDDEN_FIELDS
        }
        entry["audit_event"] = event.value
        entry["severity"] = severity.value

        log = getattr(self.logger, _LEVELS[severity])
        log(message or event.value, extra=entry)

        if self.keep_history:
            self.history.append(entry)
        return entry

    def events(self) -> List[str]:
        """Event names recorded so far (history mode only)"""
        return [entry["audit_event"] for entry in self.history]


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get the process-wide audit logger"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
