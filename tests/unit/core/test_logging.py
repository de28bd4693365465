"""
Tests for structured logging
"""
import json
import logging

from core.logging import (
    REDACTED,
    CustomJsonFormatter,
    LoggerAdapter,
    SecretRedactionFilter,
    build_formatter,
    get_logger,
    redact,
)


class TestLoggerAdapter:
    def test_context_is_merged_into_extra(self, caplog):
        logger = get_logger("tests.logging", domain="d2", processor="stripe")
        with caplog.at_level(logging.INFO, logger="tests.logging"):
            logger.info("Intent created", extra={"payment_intent_id": "pi_1"})

        record = caplog.records[-1]
        assert record.domain == "d2"
        assert record.processor == "stripe"
        assert record.payment_intent_id == "pi_1"

    def test_with_context_returns_new_adapter(self):
        logger = get_logger("tests.logging", domain="d3")
        bound = logger.with_context(event_id="evt_1")

        assert isinstance(bound, LoggerAdapter)
        assert bound.extra == {"domain": "d3", "event_id": "evt_1"}
        assert logger.extra == {"domain": "d3"}


class TestJsonFormatter:
    def test_json_output_carries_service_fields(self):
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", timestamp=True)
        record = logging.LogRecord("checkout", logging.WARNING, __file__, 1, "Rate limit exceeded", None, None)
        record.client_id = "10.0.0.1"

        data = json.loads(formatter.format(record))
        assert data["event"] == "Rate limit exceeded"
        assert data["level"] == "WARNING"
        assert data["logger"] == "checkout"
        assert data["client_id"] == "10.0.0.1"
        assert "environment" in data
        assert "message" not in data


class TestSecretRedaction:
    def _record(self, msg, **attrs):
        record = logging.LogRecord("checkout", logging.INFO, __file__, 1, msg, None, None)
        for key, value in attrs.items():
            setattr(record, key, value)
        return record

    def test_secret_fields_are_masked(self):
        record = self._record("Intent created", client_secret="pi_1_secret_abc", payment_intent_id="pi_1")

        assert SecretRedactionFilter().filter(record) is True
        assert record.client_secret == REDACTED
        assert record.payment_intent_id == "pi_1"

    def test_secret_shapes_in_messages_are_masked(self):
        record = self._record("Retrying with key sk_live_abcdef123456 for pi_9_secret_xyz")

        SecretRedactionFilter().filter(record)

        assert "sk_live_abcdef123456" not in record.msg
        assert "pi_9_secret_xyz" not in record.msg
        assert record.msg.count(REDACTED) == 2

    def test_plain_ids_are_kept(self):
        assert redact("Payment pi_123 confirmed for sub_456") == "Payment pi_123 confirmed for sub_456"

    def test_text_formatter(self):
        formatter = build_formatter("text")
        assert not isinstance(formatter, CustomJsonFormatter)
        assert isinstance(build_formatter("json"), CustomJsonFormatter)
