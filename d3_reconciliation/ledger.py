"""
Confirmation ledger

Keyed record of what has already been confirmed, settled or processed.
``claim`` is set-if-absent: exactly one caller wins a key, every other
caller gets the stored value back. Keys are namespaced by the caller:

    payment:<intent id>        confirmed one-time payment
    subscription:<sub id>      confirmed subscription
    paid:<reference>           "order paid" side effects ran
    event:<event id>           webhook event handled
"""
import json
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis

from core.config import get_settings
from core.logging import get_logger

logger = get_logger(__name__, domain="d3")


class ConfirmationLedger(ABC):
    """Idempotency store shared by client confirmation and webhooks"""

    backend = "base"

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Stored value for key, if any"""

    @abstractmethod
    def claim(self, key: str, value: Dict[str, Any]) -> Tuple[bool, Dict[str, Any]]:
        """
        Store value unless the key exists

        Returns (claimed, stored) where stored is the value now held for
        the key: ours when claimed, the earlier writer's otherwise.
        """

    @abstractmethod
    def release(self, key: str) -> None:
        """Forget a key so the work can be retried"""


class InMemoryConfirmationLedger(ConfirmationLedger):
    """Process-local ledger; lost on restart"""

    backend = "memory"

    def __init__(self, ttl_seconds: int = 7 * 24 * 3600, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> Optional[Dict[str, Any]]:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if now >= expires_at:
            del self._entries[key]
            return None
        return value

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._live(key, self._clock())

    def claim(self, key: str, value: Dict[str, Any]) -> Tuple[bool, Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            existing = self._live(key, now)
            if existing is not None:
                return False, existing
            self._entries[key] = (value, now + self.ttl_seconds)
            return True, value

    def release(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisConfirmationLedger(ConfirmationLedger):
    """Ledger shared across instances using SET NX EX"""

    backend = "redis"

    def __init__(
        self,
        ttl_seconds: int = 7 * 24 * 3600,
        redis_url: Optional[str] = None,
        redis_client: Optional[redis.Redis] = None,
        key_prefix: str = "checkout:ledger",
    ):
        super().__init__(ttl_seconds)
        self.redis_url = redis_url or get_settings().redis_url
        self.key_prefix = key_prefix
        self._redis = redis_client

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._client().get(self._key(key))
        return json.loads(raw) if raw else None

    def claim(self, key: str, value: Dict[str, Any]) -> Tuple[bool, Dict[str, Any]]:
        client = self._client()
        full_key = self._key(key)
        if client.set(full_key, json.dumps(value, default=str), nx=True, ex=self.ttl_seconds):
            return True, value

        raw = client.get(full_key)
        if raw is None:
            # Expired between SET and GET; try once more
            if client.set(full_key, json.dumps(value, default=str), nx=True, ex=self.ttl_seconds):
                return True, value
            raw = client.get(full_key)
        return False, json.loads(raw) if raw else value

    def release(self, key: str) -> None:
        self._client().delete(self._key(key))


def create_ledger(settings=None) -> ConfirmationLedger:
    """Build the ledger selected by settings"""
    settings = settings or get_settings()
    if settings.ledger_backend == "redis":
        logger.info("Using Redis confirmation ledger")
        return RedisConfirmationLedger(settings.ledger_ttl_seconds, redis_url=settings.redis_url)
    return InMemoryConfirmationLedger(settings.ledger_ttl_seconds)
