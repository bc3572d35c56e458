"""Per-tenant credit gate and usage accounting."""

from __future__ import annotations

import math
from datetime import timedelta

from storefront_assistant.config import CreditConfig
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.store.base import CreditAccount, CreditStore
from storefront_assistant.types import CreditCheckResult, UsageEvent, utc_now

logger = get_logger(__name__)


class CreditGate:
    """Answers "may this tenant spend on a turn right now?".

    The balance is read from the store on every call. Nothing is cached
    between turns, so a top-up or exhaustion takes effect on the next turn.
    """

    def __init__(self, store: CreditStore, config: CreditConfig | None = None) -> None:
        self.store = store
        self.config = config or CreditConfig()

    async def check(self, tenant: str) -> CreditCheckResult:
        try:
            account = await self.store.get_account(tenant)
            if account is None:
                account = self._free_account(tenant)
                await self.store.save_account(account)
                logger.info("Assigned %s plan to new tenant %s", account.plan_name, tenant)
                return CreditCheckResult(
                    can_process_request=True,
                    remaining_credits=account.remaining_credits,
                    reason="New merchant - assigned to free plan",
                )

            now = utc_now()
            if account.period_end is not None and now > account.period_end:
                account.remaining_credits = account.monthly_credits
                account.total_requests = 0
                account.period_start = now
                account.period_end = now + timedelta(days=self.config.billing_period_days)
                await self.store.save_account(account)
                logger.info("Billing period reset for %s", tenant)
        except Exception:
            logger.exception("Credit check failed for %s", tenant)
            return CreditCheckResult(
                can_process_request=False,
                remaining_credits=0,
                reason="Credit check failed",
                should_handoff=True,
            )

        return self._evaluate(account)

    async def record_usage(self, event: UsageEvent) -> None:
        """Append a usage event; only successful events consume credits."""
        if event.user_message is not None:
            event.user_message = event.user_message[:100]
        try:
            await self.store.append_usage(event)
            if event.was_successful:
                await self.store.debit(event.tenant, event.credits_used)
        except Exception:
            logger.exception("Failed to record usage for %s", event.tenant)

    def ai_credits(self, tokens: int) -> float:
        return max(
            self.config.minimum_ai_credits,
            math.ceil(tokens / self.config.tokens_per_credit),
        )

    def _free_account(self, tenant: str) -> CreditAccount:
        now = utc_now()
        return CreditAccount(
            tenant=tenant,
            plan_name=self.config.free_plan_name,
            monthly_credits=self.config.free_plan_monthly_credits,
            remaining_credits=self.config.free_plan_monthly_credits,
            period_start=now,
            period_end=now + timedelta(days=self.config.billing_period_days),
        )

    @staticmethod
    def _evaluate(account: CreditAccount) -> CreditCheckResult:
        if not account.ai_enabled:
            return CreditCheckResult(
                can_process_request=False,
                remaining_credits=account.remaining_credits,
                reason="AI manually disabled by merchant",
                should_handoff=True,
            )
        if account.remaining_credits <= 0:
            return CreditCheckResult(
                can_process_request=False,
                remaining_credits=0,
                reason="Credits exhausted for current billing period",
                should_handoff=True,
            )
        return CreditCheckResult(
            can_process_request=True,
            remaining_credits=account.remaining_credits,
        )
