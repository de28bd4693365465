"""
Payment processor capability interface

Every processor implements the one-time payment capability. Subscriptions
and signed webhooks are optional capabilities; callers check them with
``supports`` instead of branching on the processor name.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.config import get_settings
from core.logging import get_logger

from .exceptions import CapabilityNotSupportedError, ProcessorAPIError
from .types import (
    IntentRequest,
    ProcessorCustomer,
    ProcessorEvent,
    ProcessorIntent,
    ProcessorInvoice,
    ProcessorSubscription,
    Promotion,
)

SUBSCRIPTIONS = "subscriptions"
WEBHOOKS = "webhooks"
PROMOTIONS = "promotions"


class PaymentProcessor(ABC):
    """Abstract base class for payment processors"""

    name = "base"
    capabilities: frozenset = frozenset()

    # True when create_intent charges immediately instead of returning a client secret
    synchronous_charge = False

    def __init__(self, credentials: Optional[Dict[str, Any]] = None):
        self.settings = get_settings()
        self.credentials = credentials or self.settings.get_processor_credentials(self.name)
        self.logger = get_logger(f"gateway.{self.name}", domain="d0")

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    def _unsupported(self, capability: str):
        raise CapabilityNotSupportedError(self.name, capability)

    # One-time payments

    @abstractmethod
    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        """Create a payment intent, or charge directly for synchronous processors"""

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> ProcessorIntent:
        """Fetch the current state of an intent"""

    def confirm_intent(self, intent_id: str) -> ProcessorIntent:
        """Current confirmed state of an intent; the browser completes step-up auth"""
        return self.retrieve_intent(intent_id)

    @abstractmethod
    def map_error(self, error: Exception) -> ProcessorAPIError:
        """Normalize a processor SDK or HTTP error"""

    def record_order(self, intent: ProcessorIntent, order: Any) -> Optional[str]:
        """Mirror a paid order into the processor, when it keeps orders"""
        return None

    # Promotions

    def find_promotion(self, code: str) -> Optional[Promotion]:
        self._unsupported(PROMOTIONS)

    # Subscriptions

    def find_or_create_customer(
        self, email: str, name: str, shipping: Optional[Dict[str, Any]] = None
    ) -> ProcessorCustomer:
        self._unsupported(SUBSCRIPTIONS)

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        promotion: Optional[Promotion] = None,
        trial_period_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProcessorSubscription:
        self._unsupported(SUBSCRIPTIONS)

    def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        self._unsupported(SUBSCRIPTIONS)

    def retrieve_invoice(self, invoice_id: str) -> ProcessorInvoice:
        self._unsupported(SUBSCRIPTIONS)

    def pay_invoice(self, invoice_id: str) -> ProcessorInvoice:
        self._unsupported(SUBSCRIPTIONS)

    def create_invoice_payment_intent(
        self, invoice: ProcessorInvoice, customer_id: str, metadata: Optional[Dict[str, str]] = None
    ) -> ProcessorIntent:
        self._unsupported(SUBSCRIPTIONS)

    # Webhooks

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        self._unsupported(WEBHOOKS)
