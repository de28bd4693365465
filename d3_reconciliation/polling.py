"""
Subscription activation polling

After the browser completes the first subscription payment, the processor
may take a few seconds to move the subscription from ``incomplete`` to
``active``. The poller re-checks with exponential backoff, bounded by both
an attempt count and a wall-clock budget, and reports a typed outcome.
"""
import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from core.config import get_settings
from core.exceptions import PaymentDeclined, ReconciliationTimeout
from core.logging import get_logger

logger = get_logger(__name__, domain="d3")

TIMEOUT_MESSAGE = (
    "Subscription activation is taking longer than expected. "
    "Please check your email for confirmation."
)


class BackoffPolicy(BaseModel):
    """Exponential backoff between status checks"""

    base_delay_seconds: float = Field(default=1.0, gt=0)
    multiplier: float = Field(default=1.5, ge=1)
    max_attempts: int = Field(default=10, ge=1)
    max_duration_seconds: float = Field(default=60.0, gt=0)

    @classmethod
    def from_settings(cls, settings=None) -> "BackoffPolicy":
        settings = settings or get_settings()
        return cls(
            base_delay_seconds=settings.poll_base_delay_seconds,
            multiplier=settings.poll_multiplier,
            max_attempts=settings.poll_max_attempts,
            max_duration_seconds=settings.poll_max_duration_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Wait after the given 1-based attempt"""
        return self.base_delay_seconds * self.multiplier ** (attempt - 1)

    def delays(self) -> List[float]:
        """Waits between consecutive attempts"""
        return [self.delay_for(n) for n in range(1, self.max_attempts)]


class CheckStatus(str, enum.Enum):
    ACTIVATED = "activated"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class CheckResult:
    status: CheckStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None


class PollOutcome(str, enum.Enum):
    ACTIVATED = "activated"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int
    elapsed_seconds: float
    payload: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None

    def raise_for_outcome(self) -> "PollResult":
        """Raise for anything but activation"""
        if self.outcome == PollOutcome.TIMED_OUT:
            raise ReconciliationTimeout(
                self.message or TIMEOUT_MESSAGE,
                attempts=self.attempts,
                status=self.payload.get("status"),
            )
        if self.outcome == PollOutcome.FAILED:
            raise PaymentDeclined(
                self.message or "Failed to activate subscription",
                decline_code="SUBSCRIPTION_NOT_ACTIVE",
                status=self.payload.get("status"),
                error="Subscription not activated",
            )
        return self


StatusCheck = Callable[[], Awaitable[CheckResult]]


class SubscriptionActivationPoller:
    """Polls a status check until it settles or the budget runs out"""

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or BackoffPolicy.from_settings()
        self._sleep = sleep
        self._clock = clock

    async def poll(self, check: StatusCheck) -> PollResult:
        started = self._clock()
        last = CheckResult(CheckStatus.PENDING)

        for attempt in range(1, self.policy.max_attempts + 1):
            last = await check()
            elapsed = self._clock() - started

            if last.status == CheckStatus.ACTIVATED:
                logger.info("Subscription activated", extra={"attempts": attempt})
                return PollResult(PollOutcome.ACTIVATED, attempt, elapsed, last.payload, last.message)
            if last.status == CheckStatus.FAILED:
                logger.warning("Subscription activation failed", extra={"attempts": attempt})
                return PollResult(PollOutcome.FAILED, attempt, elapsed, last.payload, last.message)

            if attempt == self.policy.max_attempts:
                break
            delay = self.policy.delay_for(attempt)
            if elapsed + delay > self.policy.max_duration_seconds:
                break
            await self._sleep(delay)

        elapsed = self._clock() - started
        logger.warning(
            "Subscription activation timed out",
            extra={"attempts": attempt, "elapsed_seconds": round(elapsed, 3)},
        )
        return PollResult(PollOutcome.TIMED_OUT, attempt, elapsed, last.payload, TIMEOUT_MESSAGE)

    def start(self, check: StatusCheck) -> "asyncio.Task[PollResult]":
        """Run the poll as a task; cancel the task to stop polling"""
        return asyncio.get_running_loop().create_task(self.poll(check))


class HttpSubscriptionStatusChecker:
    """Status check that calls the confirm-subscription endpoint"""

    def __init__(
        self,
        subscription_id: str,
        customer_id: str,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        path: str = "/api/checkout/confirm-subscription",
    ):
        settings = get_settings()
        self.subscription_id = subscription_id
        self.customer_id = customer_id
        self.url = f"{(base_url or settings.base_url).rstrip('/')}{path}"
        self.timeout = timeout or settings.request_timeout
        self._client = client

    async def __call__(self) -> CheckResult:
        body = {"subscriptionId": self.subscription_id, "customerId": self.customer_id}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=body, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=body)
        except httpx.TransportError as e:
            logger.warning(
                "Error polling subscription",
                extra={"subscription_id": self.subscription_id, "error": type(e).__name__},
            )
            return CheckResult(CheckStatus.PENDING)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            return CheckResult(CheckStatus.ACTIVATED, data, "Subscription activated!")
        if response.status_code == 402 and data.get("status") == "incomplete":
            return CheckResult(CheckStatus.PENDING, data)
        return CheckResult(
            CheckStatus.FAILED, data, data.get("message") or "Failed to activate subscription"
        )
