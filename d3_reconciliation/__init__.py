"""
D3 Reconciliation - Confirmation, polling and webhooks
"""

from .confirmation import ConfirmationService
from .ledger import (
    ConfirmationLedger,
    InMemoryConfirmationLedger,
    RedisConfirmationLedger,
    create_ledger,
)
from .notifications import OrderNotifier, format_order_for_email
from .polling import (
    BackoffPolicy,
    CheckResult,
    CheckStatus,
    HttpSubscriptionStatusChecker,
    PollOutcome,
    PollResult,
    SubscriptionActivationPoller,
)
from .webhooks import WebhookEventType, WebhookProcessor, WebhookStatus

__all__ = [
    "BackoffPolicy",
    "CheckResult",
    "CheckStatus",
    "ConfirmationLedger",
    "ConfirmationService",
    "HttpSubscriptionStatusChecker",
    "InMemoryConfirmationLedger",
    "OrderNotifier",
    "PollOutcome",
    "PollResult",
    "RedisConfirmationLedger",
    "SubscriptionActivationPoller",
    "WebhookEventType",
    "WebhookProcessor",
    "WebhookStatus",
    "create_ledger",
    "format_order_for_email",
]
