"""
Tests for subscription activation polling
"""
import asyncio
import json

import httpx
import pytest

from core.exceptions import PaymentDeclined, ReconciliationTimeout
from d3_reconciliation.polling import (
    BackoffPolicy,
    CheckResult,
    CheckStatus,
    HttpSubscriptionStatusChecker,
    PollOutcome,
    PollResult,
    SubscriptionActivationPoller,
)


class FakeTime:
    """Clock and sleep that advance together without waiting"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def scripted(*statuses):
    """Status check returning the given statuses, then repeating the last"""
    calls = []

    async def check():
        index = min(len(calls), len(statuses) - 1)
        calls.append(index)
        return CheckResult(statuses[index], {"status": statuses[index].value})

    check.calls = calls
    return check


def make_poller(fake_time, **policy):
    return SubscriptionActivationPoller(BackoffPolicy(**policy), sleep=fake_time.sleep, clock=fake_time.clock)


class TestBackoffPolicy:
    def test_exponential_delays(self):
        policy = BackoffPolicy(base_delay_seconds=1.0, multiplier=1.5, max_attempts=4)
        assert policy.delays() == [1.0, 1.5, 2.25]

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy(multiplier=0.5)
        with pytest.raises(ValueError):
            BackoffPolicy(max_attempts=0)

    def test_from_settings(self, settings):
        policy = BackoffPolicy.from_settings(settings)
        assert policy.base_delay_seconds == settings.poll_base_delay_seconds
        assert policy.max_attempts == settings.poll_max_attempts


class TestSubscriptionActivationPoller:
    @pytest.mark.asyncio
    async def test_activation_after_pending(self):
        fake_time = FakeTime()
        check = scripted(CheckStatus.PENDING, CheckStatus.PENDING, CheckStatus.ACTIVATED)

        result = await make_poller(fake_time).poll(check)

        assert result.outcome == PollOutcome.ACTIVATED
        assert result.attempts == 3
        assert fake_time.sleeps == [1.0, 1.5]
        assert result.payload == {"status": "activated"}

    @pytest.mark.asyncio
    async def test_failure_stops_immediately(self):
        fake_time = FakeTime()

        result = await make_poller(fake_time).poll(scripted(CheckStatus.FAILED))

        assert result.outcome == PollOutcome.FAILED
        assert result.attempts == 1
        assert fake_time.sleeps == []

    @pytest.mark.asyncio
    async def test_times_out_after_max_attempts(self):
        fake_time = FakeTime()
        check = scripted(CheckStatus.PENDING)

        result = await make_poller(fake_time, max_attempts=4, max_duration_seconds=600).poll(check)

        assert result.outcome == PollOutcome.TIMED_OUT
        assert result.attempts == 4
        assert len(check.calls) == 4
        assert fake_time.sleeps == [1.0, 1.5, 2.25]

    @pytest.mark.asyncio
    async def test_wall_clock_budget_cuts_polling_short(self):
        fake_time = FakeTime()
        check = scripted(CheckStatus.PENDING)

        result = await make_poller(fake_time, max_attempts=10, max_duration_seconds=3).poll(check)

        # 1.0 + 1.5 = 2.5 elapsed; the next 2.25s wait would pass the budget
        assert result.outcome == PollOutcome.TIMED_OUT
        assert result.attempts == 3
        assert fake_time.sleeps == [1.0, 1.5]

    @pytest.mark.asyncio
    async def test_started_poll_can_be_cancelled(self):
        async def never_settles():
            return CheckResult(CheckStatus.PENDING)

        poller = SubscriptionActivationPoller(BackoffPolicy(base_delay_seconds=30))
        task = poller.start(never_settles)
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestPollResult:
    def test_activated_passes_through(self):
        result = PollResult(PollOutcome.ACTIVATED, 1, 0.0)
        assert result.raise_for_outcome() is result

    def test_timeout_raises_pending(self):
        with pytest.raises(ReconciliationTimeout) as exc_info:
            PollResult(PollOutcome.TIMED_OUT, 10, 60.0, {"status": "incomplete"}).raise_for_outcome()

        assert exc_info.value.status_code == 202
        assert exc_info.value.details == {"attempts": 10, "status": "incomplete"}

    def test_failure_raises_declined(self):
        with pytest.raises(PaymentDeclined) as exc_info:
            PollResult(PollOutcome.FAILED, 2, 1.0, {"status": "canceled"}, "Card declined").raise_for_outcome()

        assert exc_info.value.message == "Card declined"
        assert exc_info.value.status == "canceled"


def checker_with(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSubscriptionStatusChecker("sub_test_1", "cus_test_1", base_url="http://shop.test/", client=client)


class TestHttpSubscriptionStatusChecker:
    @pytest.mark.asyncio
    async def test_success_is_activation(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"success": True, "orderId": "SUB-1"})

        result = await checker_with(handler)()

        assert result.status == CheckStatus.ACTIVATED
        assert result.payload["orderId"] == "SUB-1"
        assert seen["url"] == "http://shop.test/api/checkout/confirm-subscription"
        assert json.loads(seen["body"])["subscriptionId"] == "sub_test_1"

    @pytest.mark.asyncio
    async def test_incomplete_is_pending(self):
        result = await checker_with(lambda request: httpx.Response(402, json={"status": "incomplete"}))()
        assert result.status == CheckStatus.PENDING

    @pytest.mark.asyncio
    async def test_other_error_is_failure(self):
        result = await checker_with(
            lambda request: httpx.Response(402, json={"status": "canceled", "message": "Subscription payment was not successful"})
        )()

        assert result.status == CheckStatus.FAILED
        assert result.message == "Subscription payment was not successful"

    @pytest.mark.asyncio
    async def test_non_json_error_is_failure(self):
        result = await checker_with(lambda request: httpx.Response(500, text="oops"))()

        assert result.status == CheckStatus.FAILED
        assert result.message == "Failed to activate subscription"

    @pytest.mark.asyncio
    async def test_transport_error_keeps_polling(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = await checker_with(handler)()
        assert result.status == CheckStatus.PENDING
