"""
Test Helper Utilities

A scriptable in-memory payment processor and small helpers shared by the
checkout test suite.
"""
import hashlib
import hmac
import json
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI

from d0_gateway.base import PROMOTIONS, SUBSCRIPTIONS, WEBHOOKS, PaymentProcessor
from d0_gateway.exceptions import ProcessorAPIError, SignatureVerificationError
from d0_gateway.types import (
    IntentRequest,
    IntentStatus,
    PaymentMethodSummary,
    ProcessorCustomer,
    ProcessorEvent,
    ProcessorIntent,
    ProcessorInvoice,
    ProcessorSubscription,
    Promotion,
    SubscriptionStatus,
)

VALID_SIGNATURE = "t=1,v1=valid"


class FakeProcessor(PaymentProcessor):
    """
    Processor double that keeps intents, subscriptions and invoices in dicts.

    Set ``errors[operation]`` to make an operation raise.
    """

    name = "stripe"
    capabilities = frozenset({SUBSCRIPTIONS, WEBHOOKS, PROMOTIONS})

    def __init__(self, name: str = "stripe", capabilities=None, synchronous_charge: bool = False):
        self.name = name
        if capabilities is not None:
            self.capabilities = frozenset(capabilities)
        self.synchronous_charge = synchronous_charge
        super().__init__(credentials={"api_key": "sk_test_fake"})

        self.intents: Dict[str, ProcessorIntent] = {}
        self.requests: List[IntentRequest] = []
        self.promotions: Dict[str, Promotion] = {}
        self.subscriptions: Dict[str, ProcessorSubscription] = {}
        self.invoices: Dict[str, ProcessorInvoice] = {}
        self.recorded_orders: List[Any] = []
        self.errors: Dict[str, Exception] = {}
        self.first_invoice_cents = 5104
        self.first_invoice_secret: Optional[str] = "pi_invoice_secret"
        self.charge_status = IntentStatus.SUCCEEDED

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.errors:
            raise self.errors[operation]

    def map_error(self, error: Exception) -> ProcessorAPIError:
        if isinstance(error, ProcessorAPIError):
            return error
        return ProcessorAPIError(self.name, str(error), error_type="api_error")

    # One-time payments

    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        self._maybe_fail("create_intent")
        self.requests.append(request)
        intent_id = f"pi_test_{len(self.intents) + 1}"
        status = self.charge_status if self.synchronous_charge else IntentStatus.REQUIRES_PAYMENT_METHOD
        intent = ProcessorIntent(
            id=intent_id,
            status=status,
            amount_cents=request.amount_cents,
            currency=request.currency,
            client_secret=None if self.synchronous_charge else f"{intent_id}_secret_abc",
            payment_method=PaymentMethodSummary("visa", "4242") if self.synchronous_charge else None,
            last_error_code="card_declined" if status == IntentStatus.FAILED else None,
            metadata=dict(request.metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_intent(self, intent_id: str) -> ProcessorIntent:
        self._maybe_fail("retrieve_intent")
        if intent_id not in self.intents:
            raise ProcessorAPIError(
                self.name,
                f"No such payment_intent: '{intent_id}'",
                code="resource_missing",
                error_type="invalid_request_error",
                http_status=404,
            )
        return self.intents[intent_id]

    def add_intent(
        self,
        intent_id: str,
        amount_cents: int,
        status: IntentStatus = IntentStatus.SUCCEEDED,
        metadata: Optional[Dict[str, str]] = None,
        last_error_code: Optional[str] = None,
    ) -> ProcessorIntent:
        intent = ProcessorIntent(
            id=intent_id,
            status=status,
            amount_cents=amount_cents,
            currency="usd",
            client_secret=f"{intent_id}_secret_abc",
            payment_method=PaymentMethodSummary("visa", "4242"),
            last_error_code=last_error_code,
            metadata=metadata or {},
        )
        self.intents[intent_id] = intent
        return intent

    def record_order(self, intent: ProcessorIntent, order: Any) -> Optional[str]:
        self._maybe_fail("record_order")
        self.recorded_orders.append(order)
        return f"clover_order_{len(self.recorded_orders)}"

    # Promotions

    def find_promotion(self, code: str) -> Optional[Promotion]:
        self._maybe_fail("find_promotion")
        return self.promotions.get(code.strip().upper())

    # Subscriptions

    def find_or_create_customer(self, email, name, shipping=None) -> ProcessorCustomer:
        self._maybe_fail("find_or_create_customer")
        return ProcessorCustomer(id="cus_test_1", email=email, name=name)

    def create_subscription(
        self, customer_id, price_id, promotion=None, trial_period_days=None, metadata=None
    ) -> ProcessorSubscription:
        self._maybe_fail("create_subscription")
        invoice = ProcessorInvoice(
            id="in_test_1",
            amount_due_cents=self.first_invoice_cents,
            currency="usd",
            status="open",
            payment_intent_id="pi_invoice_1",
            client_secret=self.first_invoice_secret,
        )
        self.invoices[invoice.id] = invoice
        subscription = ProcessorSubscription(
            id="sub_test_1",
            status=SubscriptionStatus.TRIALING if trial_period_days else SubscriptionStatus.INCOMPLETE,
            customer_id=customer_id,
            latest_invoice_id=invoice.id,
            amount_cents=3800,
            currency="usd",
            interval="week",
            metadata=dict(metadata or {}),
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    def add_subscription(
        self,
        subscription_id: str = "sub_test_1",
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        customer_id: str = "cus_test_1",
    ) -> ProcessorSubscription:
        subscription = ProcessorSubscription(
            id=subscription_id,
            status=status,
            customer_id=customer_id,
            latest_invoice_id="in_test_1",
            current_period_end=datetime(2026, 11, 1, tzinfo=timezone.utc),
            amount_cents=3800,
            currency="usd",
            interval="week",
            payment_method=PaymentMethodSummary("visa", "4242"),
        )
        self.subscriptions[subscription_id] = subscription
        return subscription

    def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        self._maybe_fail("retrieve_subscription")
        return self.subscriptions[subscription_id]

    def retrieve_invoice(self, invoice_id: str) -> ProcessorInvoice:
        self._maybe_fail("retrieve_invoice")
        return self.invoices[invoice_id]

    def pay_invoice(self, invoice_id: str) -> ProcessorInvoice:
        self._maybe_fail("pay_invoice")
        invoice = self.invoices[invoice_id]
        invoice.paid = True
        invoice.status = "paid"
        return invoice

    def create_invoice_payment_intent(self, invoice, customer_id, metadata=None) -> ProcessorIntent:
        self._maybe_fail("create_invoice_payment_intent")
        return self.add_intent(
            f"pi_for_{invoice.id}",
            invoice.amount_due_cents,
            status=IntentStatus.REQUIRES_PAYMENT_METHOD,
            metadata={**(metadata or {}), "invoice_id": invoice.id},
        )

    # Webhooks

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        self._maybe_fail("construct_event")
        if signature != VALID_SIGNATURE:
            raise SignatureVerificationError(self.name, "Invalid signature")
        event = json.loads(payload)
        return ProcessorEvent(
            id=event["id"],
            type=event["type"],
            created=event.get("created", int(time.time())),
            data=event.get("data", {}),
            livemode=event.get("livemode", False),
        )


def webhook_payload(event_id: str, event_type: str, obj: Dict[str, Any], created: Optional[int] = None) -> bytes:
    """Raw webhook body as the processor would send it"""
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created if created is not None else int(time.time()),
            "data": {"object": obj},
            "livemode": False,
        }
    ).encode()


def stripe_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for a payload signed with secret"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@contextmanager
def override_fastapi_dependency(app: FastAPI, dependency: Callable, mock_value: Any):
    """
    Context manager to override a FastAPI dependency and clean up after.

    Usage:
        with override_fastapi_dependency(app, get_payment_processor, processor):
            response = client.get("/api/checkout/status")
    """
    app.dependency_overrides[dependency] = lambda: mock_value
    try:
        yield mock_value
    finally:
        app.dependency_overrides.pop(dependency, None)
