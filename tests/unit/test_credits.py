from datetime import timedelta

import pytest

from storefront_assistant.billing.credits import CreditGate
from storefront_assistant.config import CreditConfig
from storefront_assistant.store.base import CreditAccount
from storefront_assistant.store.memory import InMemoryCreditStore
from storefront_assistant.types import RequestType, UsageEvent, utc_now

TENANT = "demo.myshopify.com"


class _BrokenCreditStore(InMemoryCreditStore):
    async def get_account(self, tenant):
        raise ConnectionError("database unreachable")

    async def append_usage(self, event):
        raise ConnectionError("database unreachable")


def _event(credits: float, successful: bool, message: str | None = "hi") -> UsageEvent:
    return UsageEvent(
        tenant=TENANT,
        request_type=RequestType.AI_CHAT,
        credits_used=credits,
        was_successful=successful,
        response_time_ms=12.0,
        user_message=message,
    )


async def test_new_tenant_gets_free_plan(credit_store) -> None:
    gate = CreditGate(credit_store)

    result = await gate.check(TENANT)

    account = await credit_store.get_account(TENANT)
    assert result.can_process_request
    assert result.reason == "New merchant - assigned to free plan"
    assert account.plan_name == "Free"
    assert account.remaining_credits == CreditConfig().free_plan_monthly_credits
    assert account.period_end > account.period_start


async def test_exhausted_credits_close_the_gate(credit_store) -> None:
    await credit_store.save_account(
        CreditAccount(
            tenant=TENANT,
            plan_name="Free",
            monthly_credits=100,
            remaining_credits=0,
            period_end=utc_now() + timedelta(days=3),
        )
    )

    result = await CreditGate(credit_store).check(TENANT)

    assert not result.can_process_request
    assert result.should_handoff
    assert result.remaining_credits == 0
    assert result.reason == "Credits exhausted for current billing period"


async def test_merchant_disabled_ai_closes_the_gate(credit_store) -> None:
    await credit_store.save_account(
        CreditAccount(
            tenant=TENANT,
            plan_name="Pro",
            monthly_credits=100,
            remaining_credits=40,
            ai_enabled=False,
        )
    )

    result = await CreditGate(credit_store).check(TENANT)

    assert not result.can_process_request
    assert result.should_handoff
    assert result.reason == "AI manually disabled by merchant"
    assert result.remaining_credits == 40


async def test_expired_period_resets_allowance(credit_store) -> None:
    await credit_store.save_account(
        CreditAccount(
            tenant=TENANT,
            plan_name="Pro",
            monthly_credits=500,
            remaining_credits=0,
            period_start=utc_now() - timedelta(days=40),
            period_end=utc_now() - timedelta(days=10),
            total_requests=321,
        )
    )

    result = await CreditGate(credit_store).check(TENANT)

    account = await credit_store.get_account(TENANT)
    assert result.can_process_request
    assert result.remaining_credits == 500
    assert account.total_requests == 0
    assert account.period_end > utc_now()


async def test_store_failure_fails_closed() -> None:
    result = await CreditGate(_BrokenCreditStore()).check(TENANT)

    assert not result.can_process_request
    assert result.should_handoff
    assert result.reason == "Credit check failed"


async def test_only_successful_usage_is_debited(credit_store) -> None:
    gate = CreditGate(credit_store)
    await gate.check(TENANT)

    await gate.record_usage(_event(3, successful=True))
    await gate.record_usage(_event(5, successful=False))

    account = await credit_store.get_account(TENANT)
    assert len(credit_store.usage) == 2
    assert account.remaining_credits == CreditConfig().free_plan_monthly_credits - 3
    assert account.total_requests == 1


async def test_usage_message_is_truncated(credit_store) -> None:
    gate = CreditGate(credit_store)

    await gate.record_usage(_event(1, successful=False, message="x" * 250))

    assert credit_store.usage[0].user_message == "x" * 100


async def test_usage_recording_failure_is_not_raised() -> None:
    await CreditGate(_BrokenCreditStore()).record_usage(_event(1, successful=True))


@pytest.mark.parametrize(
    ("tokens", "expected"),
    [(0, 1), (450, 1), (1000, 1), (1001, 2), (4200, 5)],
)
def test_ai_credits_round_up_with_minimum(tokens, expected) -> None:
    assert CreditGate(InMemoryCreditStore()).ai_credits(tokens) == expected
