"""
Tests for webhook verification, de-duplication and dispatch
"""
import time
from unittest.mock import patch

import pytest

from core.exceptions import ConfigurationError, SecurityViolation
from d3_reconciliation.webhooks import (
    WebhookEventType,
    WebhookProcessor,
    WebhookStatus,
    extract_metadata_from_event,
)
from tests.helpers import VALID_SIGNATURE, FakeProcessor, webhook_payload


def intent_succeeded(intent_id="pi_hook", amount=5104, **extra):
    obj = {
        "id": intent_id,
        "object": "payment_intent",
        "amount": amount,
        "currency": "usd",
        "metadata": {"order_reference": "ORDER-123456-ABC", "customer_email": "ada@example.com"},
    }
    obj.update(extra)
    return obj


class TestSignatureAndParsing:
    def test_bad_signature_is_rejected(self, webhook_processor, audit):
        payload = webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded())

        with pytest.raises(SecurityViolation) as exc_info:
            webhook_processor.process_webhook(payload, "t=1,v1=forged")

        assert exc_info.value.error_code == "INVALID_SIGNATURE"
        assert exc_info.value.status_code == 400
        assert audit.events() == []

    def test_parsed_json_is_refused(self, webhook_processor):
        with pytest.raises(TypeError):
            webhook_processor.process_webhook({"id": "evt_1"}, VALID_SIGNATURE)

    def test_processor_without_webhooks(self, confirmations, audit):
        clover = FakeProcessor(name="clover", capabilities=set())
        webhooks = WebhookProcessor(clover, confirmations, audit=audit)

        with pytest.raises(ConfigurationError) as exc_info:
            webhooks.process_webhook(b"{}", VALID_SIGNATURE)

        assert exc_info.value.status_code == 503


class TestDelivery:
    def test_payment_succeeded_settles_order(self, webhook_processor, audit):
        payload = webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded())

        result = webhook_processor.process_webhook(payload, VALID_SIGNATURE)

        assert result["success"] is True
        assert result["event_id"] == "evt_1"
        assert result["status"] == WebhookStatus.COMPLETED.value
        assert result["data"] == {"payment_intent_id": "pi_hook", "settled": True}
        assert audit.events() == ["WEBHOOK_RECEIVED", "PAYMENT_INTENT_SUCCEEDED", "ORDER_PAID"]

        paid = audit.history[-1]
        assert paid["reference"] == "pi_hook"
        assert paid["order_id"] == "ORDER-123456-ABC"

    def test_duplicate_event_is_ignored(self, webhook_processor, audit):
        payload = webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded())

        webhook_processor.process_webhook(payload, VALID_SIGNATURE)
        result = webhook_processor.process_webhook(payload, VALID_SIGNATURE)

        assert result["status"] == WebhookStatus.IGNORED.value
        assert result["reason"] == "Duplicate event"
        assert audit.events().count("ORDER_PAID") == 1
        assert "WEBHOOK_DUPLICATE" in audit.events()

    def test_different_events_for_same_intent_settle_once(self, webhook_processor, audit):
        for event_id in ("evt_1", "evt_2"):
            webhook_processor.process_webhook(
                webhook_payload(event_id, "payment_intent.succeeded", intent_succeeded()), VALID_SIGNATURE
            )

        assert audit.events().count("ORDER_PAID") == 1

    def test_old_event_is_ignored(self, webhook_processor, audit):
        two_days_ago = int(time.time()) - 48 * 3600
        payload = webhook_payload("evt_old", "payment_intent.succeeded", intent_succeeded(), created=two_days_ago)

        result = webhook_processor.process_webhook(payload, VALID_SIGNATURE)

        assert result["status"] == WebhookStatus.IGNORED.value
        assert result["reason"] == "Event too old"
        assert "ORDER_PAID" not in audit.events()

    def test_handler_failure_releases_claim(self, webhook_processor, ledger, audit):
        payload = webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded())

        with patch.object(webhook_processor.confirmations, "settle_payment", side_effect=RuntimeError("boom")):
            result = webhook_processor.process_webhook(payload, VALID_SIGNATURE)

        assert result["success"] is False
        assert result["status"] == WebhookStatus.FAILED.value
        assert "boom" not in result["error"]
        assert ledger.get("event:evt_1") is None
        assert "WEBHOOK_HANDLER_FAILED" in audit.events()

        retried = webhook_processor.process_webhook(payload, VALID_SIGNATURE)
        assert retried["status"] == WebhookStatus.COMPLETED.value
        assert audit.events().count("ORDER_PAID") == 1

    def test_unhandled_event_type(self, webhook_processor):
        result = webhook_processor.process_webhook(
            webhook_payload("evt_1", "customer.created", {"id": "cus_1"}), VALID_SIGNATURE
        )

        assert result["success"] is True
        assert result["status"] == WebhookStatus.IGNORED.value
        assert result["reason"] == "Unhandled event type: customer.created"

    def test_supported_events(self, webhook_processor):
        assert webhook_processor.get_supported_events() == [event.value for event in WebhookEventType]


class TestWebhookAndClientRace:
    def test_webhook_first_then_client_confirmation(
        self, webhook_processor, confirmations, processor, items, customer, shipping_address, audit
    ):
        processor.add_intent("pi_hook", 5104, metadata={"order_reference": "ORDER-123456-ABC"})

        webhook_processor.process_webhook(
            webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded()), VALID_SIGNATURE
        )
        result = confirmations.confirm_payment("pi_hook", items, customer, shipping_address)

        assert result["orderId"] == "ORDER-123456-ABC"
        assert audit.events().count("ORDER_PAID") == 1

    def test_client_confirmation_then_webhook(
        self, webhook_processor, confirmations, processor, items, customer, shipping_address, audit
    ):
        processor.add_intent("pi_hook", 5104)

        confirmations.confirm_payment("pi_hook", items, customer, shipping_address)
        result = webhook_processor.process_webhook(
            webhook_payload("evt_1", "payment_intent.succeeded", intent_succeeded()), VALID_SIGNATURE
        )

        assert result["data"]["settled"] is False
        assert audit.events().count("ORDER_PAID") == 1


class TestPaymentIntentEvents:
    def test_invoice_payment_intent_is_not_settled(self, webhook_processor, audit):
        obj = intent_succeeded("pi_invoice_1", metadata={"subscription_id": "sub_test_1", "invoice_id": "in_test_1"})

        result = webhook_processor.process_webhook(
            webhook_payload("evt_1", "payment_intent.succeeded", obj), VALID_SIGNATURE
        )

        assert result["status"] == WebhookStatus.IGNORED.value
        assert result["reason"] == "Invoice payment"
        assert "ORDER_PAID" not in audit.events()

    def test_payment_failed(self, webhook_processor, audit):
        obj = {
            "id": "pi_1",
            "amount": 5104,
            "currency": "usd",
            "last_payment_error": {"code": "card_declined", "decline_code": "insufficient_funds"},
        }

        webhook_processor.process_webhook(
            webhook_payload("evt_1", "payment_intent.payment_failed", obj), VALID_SIGNATURE
        )

        entry = audit.history[-1]
        assert entry["audit_event"] == "PAYMENT_INTENT_FAILED"
        assert entry["decline_code"] == "insufficient_funds"
        assert entry["currency"] == "USD"

    @pytest.mark.parametrize(
        "event_type,audit_event",
        [
            ("payment_intent.canceled", "PAYMENT_INTENT_CANCELED"),
            ("payment_intent.requires_action", "PAYMENT_INTENT_REQUIRES_ACTION"),
        ],
    )
    def test_other_intent_events_are_audited(self, webhook_processor, audit, event_type, audit_event):
        webhook_processor.process_webhook(
            webhook_payload("evt_1", event_type, {"id": "pi_1", "amount": 5104, "currency": "usd"}),
            VALID_SIGNATURE,
        )
        assert audit.events()[-1] == audit_event


class TestChargeEvents:
    def test_full_refund(self, webhook_processor, audit):
        obj = {"id": "ch_1", "payment_intent": "pi_1", "amount_refunded": 5104, "refunded": True, "currency": "usd"}

        result = webhook_processor.process_webhook(webhook_payload("evt_1", "charge.refunded", obj), VALID_SIGNATURE)

        assert result["data"] == {"charge_id": "ch_1", "refund_status": "full"}
        assert audit.history[-1]["payment_intent_id"] == "pi_1"

    def test_partial_refund(self, webhook_processor):
        obj = {"id": "ch_1", "amount_refunded": 1000, "refunded": False, "currency": "usd"}

        result = webhook_processor.process_webhook(webhook_payload("evt_1", "charge.refunded", obj), VALID_SIGNATURE)

        assert result["data"]["refund_status"] == "partial"

    def test_dispute_is_high_severity(self, webhook_processor, audit):
        obj = {"id": "dp_1", "charge": {"id": "ch_1"}, "amount": 5104, "reason": "fraudulent", "status": "needs_response"}

        webhook_processor.process_webhook(webhook_payload("evt_1", "charge.dispute.created", obj), VALID_SIGNATURE)

        entry = audit.history[-1]
        assert entry["audit_event"] == "DISPUTE_CREATED"
        assert entry["severity"] == "HIGH"
        assert entry["charge_id"] == "ch_1"


class TestSubscriptionAndInvoiceEvents:
    def test_subscription_deleted(self, webhook_processor, audit):
        obj = {
            "id": "sub_test_1",
            "customer": "cus_test_1",
            "status": "canceled",
            "items": {"data": [{"price": {"id": "price_weekly"}}]},
        }

        result = webhook_processor.process_webhook(
            webhook_payload("evt_1", "customer.subscription.deleted", obj), VALID_SIGNATURE
        )

        assert result["data"] == {"subscription_id": "sub_test_1", "status": "canceled"}
        entry = audit.history[-1]
        assert entry["audit_event"] == "SUBSCRIPTION_DELETED"
        assert entry["price_id"] == "price_weekly"

    def test_first_invoice_settles_under_subscription(self, webhook_processor, confirmations, processor, audit):
        obj = {
            "id": "in_test_1",
            "subscription": "sub_test_1",
            "customer": "cus_test_1",
            "amount_paid": 5104,
            "currency": "usd",
            "billing_reason": "subscription_create",
        }

        result = webhook_processor.process_webhook(
            webhook_payload("evt_1", "invoice.payment_succeeded", obj), VALID_SIGNATURE
        )
        assert result["data"]["reference"] == "sub_test_1"

        processor.add_subscription()
        confirmations.confirm_subscription("sub_test_1", "cus_test_1")
        assert audit.events().count("ORDER_PAID") == 1

    def test_renewal_settles_under_invoice(self, webhook_processor):
        obj = {
            "id": "in_test_2",
            "parent": {"subscription_details": {"subscription": "sub_test_1"}},
            "amount_paid": 3800,
            "currency": "usd",
            "billing_reason": "subscription_cycle",
        }

        result = webhook_processor.process_webhook(
            webhook_payload("evt_2", "invoice.payment_succeeded", obj), VALID_SIGNATURE
        )

        assert result["data"] == {"invoice_id": "in_test_2", "reference": "in_test_2", "settled": True}

    def test_invoice_payment_failed(self, webhook_processor, audit):
        obj = {"id": "in_test_1", "subscription": "sub_test_1", "amount_due": 5104, "attempt_count": 2}

        webhook_processor.process_webhook(webhook_payload("evt_1", "invoice.payment_failed", obj), VALID_SIGNATURE)

        entry = audit.history[-1]
        assert entry["audit_event"] == "INVOICE_PAYMENT_FAILED"
        assert entry["attempt_count"] == 2


class TestExtractMetadata:
    def test_flattens_identifiers(self):
        data = {
            "object": {
                "id": "pi_1",
                "object": "payment_intent",
                "currency": "usd",
                "customer": {"id": "cus_1"},
                "metadata": {"order_reference": "ORDER-1"},
            }
        }

        assert extract_metadata_from_event(data) == {
            "order_reference": "ORDER-1",
            "processor_id": "pi_1",
            "processor_object_type": "payment_intent",
            "currency": "usd",
            "customer": "cus_1",
        }
