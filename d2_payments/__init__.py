"""
D2 Payments - Payment intent and subscription orchestration
"""

from .errors import message_for, translate
from .intents import PaymentIntentResult, PaymentOrchestrator, build_payment_metadata
from .promotions import PromotionLookup, PromotionService
from .quotes import OrderPricer, Quote
from .subscriptions import SubscriptionOrchestrator, SubscriptionResult

__all__ = [
    "OrderPricer",
    "PaymentIntentResult",
    "PaymentOrchestrator",
    "PromotionLookup",
    "PromotionService",
    "Quote",
    "SubscriptionOrchestrator",
    "SubscriptionResult",
    "build_payment_metadata",
    "message_for",
    "translate",
]
