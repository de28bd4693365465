"""
Shared fixtures for the checkout test suite
"""
import os
import random
import sys

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Settings are read at import time, so the test environment goes first
os.environ["ENVIRONMENT"] = "test"
os.environ["TESTING"] = "true"
os.environ["PAYMENT_PROCESSOR"] = "stripe"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["LEDGER_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "text"

import pytest

from core.audit import AuditLogger
from core.config import get_settings
from d1_checkout.catalog import Catalog
from d1_checkout.coupons import CouponBook
from d1_checkout.models import Address, Customer, LineItem
from d1_checkout.pricing import PricingPolicy
from d2_payments.intents import PaymentOrchestrator
from d2_payments.promotions import PromotionService
from d2_payments.quotes import OrderPricer
from d2_payments.subscriptions import SubscriptionOrchestrator
from d3_reconciliation.confirmation import ConfirmationService
from d3_reconciliation.ledger import InMemoryConfirmationLedger
from d3_reconciliation.webhooks import WebhookProcessor
from tests.helpers import FakeProcessor


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def audit():
    """Audit logger that keeps every entry for assertions"""
    return AuditLogger(keep_history=True)


@pytest.fixture
def ledger():
    return InMemoryConfirmationLedger()


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def customer():
    return Customer(first_name="Ada", last_name="Lovelace", email="ada@example.com", phone="555-123-4567")


@pytest.fixture
def shipping_address():
    return Address(
        first_name="Ada",
        last_name="Lovelace",
        address1="12 Analytical Way",
        city="Austin",
        state="TX",
        zip_code="78701",
    )


@pytest.fixture
def items():
    """One Revive Club pack: $38.00 subtotal"""
    return [LineItem(id="revive-club", name="Revive Club", unit_price_cents=3800, quantity=1)]


@pytest.fixture
def promotions(processor, audit):
    return PromotionService(processor, coupons=CouponBook(), audit=audit)


@pytest.fixture
def pricer(promotions):
    return OrderPricer(Catalog(), PricingPolicy(), promotions, CouponBook())


@pytest.fixture
def confirmations(processor, pricer, ledger, audit):
    return ConfirmationService(processor, pricer, ledger=ledger, audit=audit, rng=random.Random(7))


@pytest.fixture
def payment_orchestrator(processor, pricer, confirmations, audit):
    return PaymentOrchestrator(
        processor, pricer, audit=audit, settle=confirmations.settle_payment, rng=random.Random(7)
    )


@pytest.fixture
def subscription_orchestrator(processor, promotions, audit):
    return SubscriptionOrchestrator(processor, promotions, audit=audit)


@pytest.fixture
def webhook_processor(processor, confirmations, audit):
    return WebhookProcessor(processor, confirmations, audit=audit)


@pytest.fixture
def customer_payload():
    return {"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com"}


@pytest.fixture
def address_payload():
    return {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "address1": "12 Analytical Way",
        "city": "Austin",
        "state": "TX",
        "zipCode": "78701",
    }


@pytest.fixture
def cart_payload(customer_payload, address_payload):
    """Browser cart body for create-payment-intent"""
    return {
        "items": [{"id": "revive-club", "name": "Revive Club", "price": 38.00, "quantity": 1}],
        "customer": customer_payload,
        "shippingAddress": address_payload,
        "summary": {"subtotal": 38.00, "tax": 3.04, "shipping": 10.00, "discount": 0, "total": 51.04},
    }
