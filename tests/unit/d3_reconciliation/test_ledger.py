"""
Tests for the confirmation ledger backends
"""
import json
from unittest.mock import Mock

from core.config import Settings
from d3_reconciliation.ledger import (
    InMemoryConfirmationLedger,
    RedisConfirmationLedger,
    create_ledger,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryLedger:
    def test_first_claim_wins(self):
        ledger = InMemoryConfirmationLedger()

        claimed, stored = ledger.claim("payment:pi_1", {"orderNumber": "RLV-1"})
        assert claimed
        assert stored == {"orderNumber": "RLV-1"}

        claimed, stored = ledger.claim("payment:pi_1", {"orderNumber": "RLV-2"})
        assert not claimed
        assert stored == {"orderNumber": "RLV-1"}
        assert ledger.get("payment:pi_1") == {"orderNumber": "RLV-1"}

    def test_release_allows_retry(self):
        ledger = InMemoryConfirmationLedger()
        ledger.claim("event:evt_1", {"status": "processing"})

        ledger.release("event:evt_1")

        assert ledger.get("event:evt_1") is None
        claimed, _ = ledger.claim("event:evt_1", {"status": "processing"})
        assert claimed

    def test_entries_expire(self):
        clock = FakeClock()
        ledger = InMemoryConfirmationLedger(ttl_seconds=60, clock=clock)
        ledger.claim("paid:pi_1", {"source": "webhook"})

        clock.now += 59
        assert ledger.get("paid:pi_1") == {"source": "webhook"}

        clock.now += 1
        assert ledger.get("paid:pi_1") is None
        claimed, _ = ledger.claim("paid:pi_1", {"source": "client_confirm"})
        assert claimed

    def test_clear(self):
        ledger = InMemoryConfirmationLedger()
        ledger.claim("a", {"x": 1})
        ledger.clear()
        assert ledger.get("a") is None


class TestRedisLedger:
    def _ledger(self, client):
        return RedisConfirmationLedger(ttl_seconds=300, redis_client=client, key_prefix="test")

    def test_claim_uses_set_nx(self):
        client = Mock()
        client.set.return_value = True

        claimed, stored = self._ledger(client).claim("payment:pi_1", {"orderNumber": "RLV-1"})

        assert claimed
        assert stored == {"orderNumber": "RLV-1"}
        client.set.assert_called_once_with(
            "test:payment:pi_1", json.dumps({"orderNumber": "RLV-1"}), nx=True, ex=300
        )

    def test_losing_claim_returns_existing_value(self):
        client = Mock()
        client.set.return_value = None
        client.get.return_value = json.dumps({"orderNumber": "RLV-1"})

        claimed, stored = self._ledger(client).claim("payment:pi_1", {"orderNumber": "RLV-2"})

        assert not claimed
        assert stored == {"orderNumber": "RLV-1"}

    def test_claim_retries_when_key_expired_in_between(self):
        client = Mock()
        client.set.side_effect = [None, True]
        client.get.return_value = None

        claimed, _ = self._ledger(client).claim("paid:pi_1", {"source": "webhook"})

        assert claimed
        assert client.set.call_count == 2

    def test_get_and_release(self):
        client = Mock()
        client.get.return_value = None
        ledger = self._ledger(client)

        assert ledger.get("event:evt_1") is None
        ledger.release("event:evt_1")

        client.delete.assert_called_once_with("test:event:evt_1")


class TestCreateLedger:
    def test_memory_backend(self):
        ledger = create_ledger(Settings(ledger_backend="memory", ledger_ttl_seconds=120))
        assert isinstance(ledger, InMemoryConfirmationLedger)
        assert ledger.ttl_seconds == 120

    def test_redis_backend(self):
        ledger = create_ledger(Settings(ledger_backend="redis", redis_url="redis://cache:6379/2"))
        assert isinstance(ledger, RedisConfirmationLedger)
        assert ledger.redis_url == "redis://cache:6379/2"
