"""
Tests for processor error translation
"""
import pytest

from core.exceptions import (
    ConfigurationError,
    PaymentDeclined,
    ProcessorError,
    ProcessorTransientError,
    ValidationError,
)
from d0_gateway.exceptions import CapabilityNotSupportedError, ProcessorAPIError
from d2_payments.errors import DEFAULT_MESSAGE, message_for, translate


def api_error(**kwargs):
    return ProcessorAPIError("stripe", "raw message with acct_1Secret", **kwargs)


class TestMessageTable:
    def test_known_code(self):
        assert message_for("insufficient_funds").startswith("Insufficient funds")

    def test_unknown_code_falls_back(self):
        assert message_for("something_new") == DEFAULT_MESSAGE
        assert message_for(None) == DEFAULT_MESSAGE


class TestTranslate:
    def test_card_decline(self):
        error = translate(
            api_error(code="card_declined", decline_code="insufficient_funds", error_type="card_error", http_status=402),
            status="requires_payment_method",
        )
        assert isinstance(error, PaymentDeclined)
        assert error.status_code == 402
        assert error.error_code == "insufficient_funds"
        assert error.to_dict()["status"] == "requires_payment_method"
        assert "acct_1Secret" not in str(error.to_dict())

    def test_rate_limit(self):
        error = translate(api_error(code="rate_limit", error_type="rate_limit", http_status=429))
        assert isinstance(error, ProcessorTransientError)
        assert error.status_code == 429

    def test_connection_error(self):
        error = translate(api_error(error_type="api_connection_error"))
        assert isinstance(error, ProcessorTransientError)
        assert error.status_code == 503

    def test_server_error_is_transient(self):
        assert isinstance(translate(api_error(error_type="api_error", http_status=502)), ProcessorTransientError)

    def test_authentication_error_is_configuration(self):
        error = translate(api_error(error_type="authentication_error", http_status=401))
        assert isinstance(error, ConfigurationError)
        assert error.status_code == 503

    def test_invalid_request(self):
        error = translate(api_error(code="parameter_invalid_integer", error_type="invalid_request_error", http_status=400))
        assert isinstance(error, ValidationError)
        assert error.status_code == 400

    def test_unmapped_error(self):
        error = translate(api_error(code="weird", error_type="api_error", http_status=400))
        assert isinstance(error, ProcessorError)
        assert error.message == DEFAULT_MESSAGE

    def test_missing_capability(self):
        error = translate(CapabilityNotSupportedError("clover", "subscriptions"))
        assert isinstance(error, ConfigurationError)

    def test_domain_errors_pass_through(self):
        original = ValidationError("bad", field="email")
        assert translate(original) is original

    @pytest.mark.parametrize("error", [RuntimeError("boom"), KeyError("id")])
    def test_foreign_errors_become_processor_errors(self, error):
        assert isinstance(translate(error), ProcessorError)
